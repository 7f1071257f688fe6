"""
Security utilities: Fernet encryption for calendar credentials, JWT handling.
"""

import json

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone

from calendar_hub.config import get_settings


# ── Fernet Encryption (for calendar credentials) ────────
def _get_fernet() -> Fernet:
    """Get Fernet instance from config secret key."""
    settings = get_settings()
    return Fernet(settings.ENCRYPTION_SECRET_KEY.encode())


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a string value using Fernet symmetric encryption."""
    f = _get_fernet()
    return f.encrypt(plaintext.encode())


def decrypt_value(ciphertext: bytes) -> str:
    """Decrypt a Fernet-encrypted value back to string.

    Raises:
        InvalidToken: If the secret key is wrong or data is corrupted.
    """
    f = _get_fernet()
    return f.decrypt(ciphertext).decode()


def seal_secret(payload: dict) -> str:
    """Encrypt a credential dict into an ASCII-safe token for a text column."""
    return encrypt_value(json.dumps(payload, separators=(",", ":"))).decode("utf-8")


def open_secret(token: str) -> dict | None:
    """Decrypt a token written by seal_secret. Returns None if it can't be read."""
    try:
        return json.loads(decrypt_value(token.encode("utf-8")))
    except (InvalidToken, ValueError):
        return None


# ── JWT Token ────────────────────────────────────────────
def create_access_token(user_id: str, expires_minutes: int = 60) -> str:
    """Create a JWT access token (tokens are normally issued by the identity service)."""
    settings = get_settings()

    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT token. Returns payload or None if invalid."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        return payload
    except JWTError:
        return None
