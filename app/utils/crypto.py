"""
Crypto utilities: bcrypt password hashing and invitation/voter tokens.
"""

import hashlib
import secrets

import bcrypt


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its bcrypt hash."""
    if not password_hash:
        return False
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        password_hash.encode("utf-8"),
    )


def generate_token(nbytes: int = 32) -> str:
    """URL-safe random token (invitations, session ids)."""
    return secrets.token_urlsafe(nbytes)


def hash_ip(ip_address: str) -> str:
    """SHA-256 of an IP address; raw addresses are never stored."""
    return hashlib.sha256((ip_address or "unknown").encode("utf-8")).hexdigest()
