"""
Credential utilities

Credential storage and comparison. Secrets are kept as plaintext by default
to match existing databases; the bcrypt scheme is opt-in via
auth.password_scheme and verification accepts both forms.
"""

import base64
import hashlib
import secrets

from passlib.context import CryptContext

PLAINTEXT = "plaintext"
BCRYPT = "bcrypt"
PASSWORD_SCHEMES = (PLAINTEXT, BCRYPT)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _prepare_password(password: str) -> str:
    """Pre-hash password if longer than bcrypt's 72-byte limit."""
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > 72:
        # SHA-256 hash and base64 encode to stay under 72 bytes
        return base64.b64encode(hashlib.sha256(password_bytes).digest()).decode("ascii")
    return password


def hash_password(password: str, scheme: str = PLAINTEXT) -> str:
    """Produce the stored form of a password under the given scheme."""
    if scheme not in PASSWORD_SCHEMES:
        raise ValueError(f"Unknown password scheme: {scheme}")
    if scheme == BCRYPT:
        return pwd_context.hash(_prepare_password(password))
    return password


def verify_password(plain_password: str, stored_password: str) -> bool:
    """Verify a password against its stored form, hashed or plaintext."""
    if not plain_password or not stored_password:
        return False
    if pwd_context.identify(stored_password, required=False):
        return pwd_context.verify(_prepare_password(plain_password), stored_password)
    return secrets.compare_digest(
        plain_password.encode("utf-8"), stored_password.encode("utf-8")
    )
