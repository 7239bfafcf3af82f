# Overview: Symmetric encryption for integration credentials stored in company settings.

"""
Credentials (processor access tokens, API keys) are stored encrypted with
Fernet. The Fernet key is derived from the ENCRYPTION_KEY passphrase with
PBKDF2-HMAC-SHA256, so rotating the passphrase invalidates every stored
credential.

Empty values are stored as-is. Values that do not look like Fernet tokens
are treated as plaintext so hand-seeded test data still works.
"""

from __future__ import annotations

import base64
import logging
import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from flask import current_app, has_app_context

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

KEY_DERIVATION_SALT = b"repairdesk-credentials"
KEY_DERIVATION_ITERATIONS = 100_000
FERNET_TOKEN_PREFIX = "gAAAAA"


def _passphrase() -> str:
    value = None
    if has_app_context():
        value = current_app.config.get("ENCRYPTION_KEY")
    value = value or os.environ.get("ENCRYPTION_KEY")
    if not value:
        raise ConfigurationError("ENCRYPTION_KEY is required to store integration credentials")
    return value


@lru_cache(maxsize=4)
def _fernet_for(passphrase: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=KEY_DERIVATION_SALT,
        iterations=KEY_DERIVATION_ITERATIONS,
    )
    key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))
    return Fernet(key)


def encrypt(plaintext: str) -> str:
    if not plaintext:
        raise ValueError("Cannot encrypt empty string")
    return _fernet_for(_passphrase()).encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(token: str) -> str:
    if not token:
        raise ValueError("Cannot decrypt empty string")
    return _fernet_for(_passphrase()).decrypt(token.encode("ascii")).decode("utf-8")


def looks_encrypted(value: str) -> bool:
    return value.startswith(FERNET_TOKEN_PREFIX)


def encrypt_credentials(credentials: dict[str, str | None]) -> dict[str, str]:
    """Encrypt every non-empty value; None values are dropped."""
    encrypted: dict[str, str] = {}
    for key, value in credentials.items():
        if value is None:
            continue
        if value.strip() == "":
            encrypted[key] = ""
        else:
            encrypted[key] = encrypt(value)
    return encrypted


def decrypt_credentials(encrypted: dict[str, str | None]) -> dict[str, str]:
    """
    Decrypt a credentials mapping.

    A value that looks encrypted but fails to decrypt is skipped (and
    logged) rather than failing the whole bundle.
    """
    decrypted: dict[str, str] = {}
    for key, value in (encrypted or {}).items():
        if value is None:
            continue
        if value == "":
            decrypted[key] = ""
        elif looks_encrypted(value):
            try:
                decrypted[key] = decrypt(value)
            except InvalidToken:
                logger.warning("Failed to decrypt credential %s, skipping", key)
        else:
            decrypted[key] = value
    return decrypted


def mask(value: str | None) -> str:
    """Display form of a secret: last four characters only."""
    if not value:
        return ""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]
