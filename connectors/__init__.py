"""
connectors — OAuth integration with the FreshBooks accounting API.

Provides:
  • OAuth2 auth-URL generation
  • Callback handling (code → token exchange + account lookup)
  • Token refresh and revocation
  • Fernet encryption of token bundles at rest
  • Resource calls (projects, invoices, clients)
"""
