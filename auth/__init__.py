"""
auth — principals, sessions and the authorization gate's HTTP side.

Provides:
  • Signed session tokens (Bearer header or cookie)
  • Password hashing (bcrypt)
  • Login / logout / me / change-password API routes
  • ``require(policy)`` FastAPI dependency
"""
