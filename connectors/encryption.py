"""
Token encryption — encrypt / decrypt FreshBooks token bundles at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The encryption key is loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

If no key is configured, encryption is **disabled** and bundles are stored
as plaintext JSON (with a startup warning).  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from config.settings import config
from utils.schemas import TokenBundle

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _init_fernet() -> None:
    """Lazy-initialise the Fernet cipher once."""
    global _fernet, _initialised
    _initialised = True

    key = config.token_encryption_key
    if not key:
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — FreshBooks tokens will be stored as plaintext."
        )
        return

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
        logger.info("Token encryption enabled (Fernet/AES-128-CBC)")
    except ValueError as exc:
        logger.error("Failed to initialise Fernet with provided key: %s", exc)
        _fernet = None


def is_encryption_enabled() -> bool:
    if not _initialised:
        _init_fernet()
    return _fernet is not None


def encrypt_bundle(bundle: TokenBundle) -> str:
    """Serialize and (if enabled) encrypt a bundle for the sessions table."""
    plaintext = bundle.model_dump_json()
    if not is_encryption_enabled():
        return plaintext
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt_bundle(stored: Optional[str]) -> Optional[TokenBundle]:
    """
    Inverse of ``encrypt_bundle``.

    Returns None for empty columns and for values that can no longer be read
    (key rotated, corrupted row); such a session simply looks disconnected.
    """
    if not stored:
        return None
    plaintext = stored
    if is_encryption_enabled():
        try:
            plaintext = _fernet.decrypt(stored.encode()).decode()
        except InvalidToken:
            logger.warning("Stored token bundle could not be decrypted; treating as disconnected")
            return None
    try:
        return TokenBundle.model_validate_json(plaintext)
    except ValidationError:
        logger.warning("Stored token bundle is unreadable; treating as disconnected")
        return None
