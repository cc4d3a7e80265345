"""Credential handling for package-tool tokens and admin sessions.

Package-tool tokens are high-entropy secrets stored only as SHA-256 hashes.
Composer presents them through ``auth.json`` as HTTP Basic credentials
(username ``token``, password = the token); Bearer is accepted as well.

Admin sessions are signed JWTs issued by the dashboard login flow. A session
is only valid while its ``jti`` is registered in the key-value store, which
lets the login flow revoke it before the JWT expires.
"""

import base64
import binascii
import hashlib
import json
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from pkgbroker.core.config import Settings
from pkgbroker.core.kv import KeyValueStore
from pkgbroker.db.models.token import Token, TokenPermission

TOKEN_PREFIX = "pkb_"
SESSION_KEY_PREFIX = "session:"


@dataclass
class PresentedCredential:
    scheme: str  # basic, bearer
    secret: str
    username: Optional[str] = None


@dataclass
class AdminSession:
    subject: str
    jti: str
    expires_at: datetime


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token() -> tuple[str, str]:
    """Generate a new package-tool token.

    Returns:
        (full_token, token_hash) tuple. Only the hash is stored.
    """
    full_token = f"{TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
    return full_token, hash_token(full_token)


def parse_authorization(header: Optional[str]) -> Optional[PresentedCredential]:
    """Parse an ``Authorization`` header into a credential.

    Basic credentials carry the secret in the password part. Malformed
    headers yield None.
    """
    if not header:
        return None

    scheme, _, value = header.partition(" ")
    scheme = scheme.lower()
    value = value.strip()
    if not value:
        return None

    if scheme == "bearer":
        return PresentedCredential(scheme="bearer", secret=value)

    if scheme == "basic":
        try:
            decoded = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None
        username, sep, password = decoded.partition(":")
        if not sep or not password:
            return None
        return PresentedCredential(scheme="basic", secret=password, username=username)

    return None


def verify_token(raw_token: str, db: Session) -> Optional[Token]:
    """Verify a package-tool token and return the Token row if valid.

    Args:
        raw_token: The token as presented by the client
        db: Database session

    Returns:
        Token if it exists, has not expired and grants at least readonly
        access; None otherwise
    """
    token = db.query(Token).filter(Token.token_hash == hash_token(raw_token)).first()
    if not token:
        return None

    if token.expires_at and token.expires_at < datetime.utcnow():
        return None

    if token.permission not in (TokenPermission.READONLY.value, TokenPermission.WRITE.value):
        return None

    token.last_used_at = datetime.utcnow()
    db.commit()

    return token


async def create_admin_session(
    subject: str,
    store: KeyValueStore,
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a session JWT and register it in the key-value store."""
    expires_delta = expires_delta or timedelta(minutes=settings.session_expire_minutes)
    expire = datetime.utcnow() + expires_delta
    jti = str(uuid.uuid4())

    to_encode = {
        "sub": subject,
        "exp": expire,
        "jti": jti,
        "type": "session",
    }
    token = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    await store.put(
        SESSION_KEY_PREFIX + jti,
        json.dumps({"sub": subject}),
        int(expires_delta.total_seconds()),
    )
    return token


async def verify_admin_session(
    token: str,
    store: KeyValueStore,
    settings: Settings,
) -> Optional[AdminSession]:
    """Decode a session JWT. Returns the session if valid and not revoked."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    jti = payload.get("jti")
    if subject is None or jti is None or payload.get("type") != "session":
        return None

    if await store.get(SESSION_KEY_PREFIX + jti) is None:
        return None

    return AdminSession(
        subject=subject,
        jti=jti,
        expires_at=datetime.utcfromtimestamp(payload["exp"]),
    )


async def revoke_admin_session(jti: str, store: KeyValueStore) -> None:
    await store.delete(SESSION_KEY_PREFIX + jti)
