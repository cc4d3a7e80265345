"""Encryption of repository credentials at rest.

Credentials are stored as ``{"fernet": token}``, the Fernet encryption of the
JSON-encoded credential fields. The key is derived from the
``credentials_key`` setting, or ``secret_key`` when that is unset.

Rows written before encryption was introduced hold the plain fields and are
read as they are; they are encrypted the next time they are written.
"""

import base64
import json
from functools import lru_cache
from typing import Any, Dict

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator

from pkgbroker.core.config import get_settings
from pkgbroker.core.errors import CredentialDecryptionError

ENCRYPTED_FIELD = "fernet"
KEY_SALT = b"pkgbroker-repository-credentials"
KEY_ITERATIONS = 100_000


def is_encrypted(stored: Any) -> bool:
    return isinstance(stored, dict) and set(stored) == {ENCRYPTED_FIELD}


class CredentialCipher:
    """Encrypts and decrypts credential dicts with a Fernet key derived from a passphrase."""

    def __init__(self, key: str):
        if not key:
            raise ValueError("An encryption key is required")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KEY_SALT,
            iterations=KEY_ITERATIONS,
        )
        self._fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))

    def encrypt(self, credentials: Dict[str, Any]) -> Dict[str, str]:
        token = self._fernet.encrypt(json.dumps(credentials, sort_keys=True).encode())
        return {ENCRYPTED_FIELD: token.decode()}

    def decrypt(self, stored: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return the plain credential fields.

        Raises:
            CredentialDecryptionError: If the token was written with another key
        """
        if not is_encrypted(stored):
            return dict(stored)
        try:
            plain = self._fernet.decrypt(stored[ENCRYPTED_FIELD].encode())
        except InvalidToken:
            raise CredentialDecryptionError(
                "Repository credentials cannot be decrypted with the configured key"
            )
        return json.loads(plain)


@lru_cache(maxsize=8)
def _cipher_for(key: str) -> CredentialCipher:
    return CredentialCipher(key)


def get_credential_cipher() -> CredentialCipher:
    settings = get_settings()
    return _cipher_for(settings.credentials_key or settings.secret_key)


class EncryptedCredentials(TypeDecorator):
    """JSON column whose content is encrypted on write and decrypted on load."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if not value:
            return {}
        if is_encrypted(value):
            return value
        return get_credential_cipher().encrypt(value)

    def process_result_value(self, value, dialect):
        if not value:
            return {}
        return get_credential_cipher().decrypt(value)
