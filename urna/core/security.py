"""
Password hashing, JWT tokens and vote receipt tokens.

Operator passwords are hashed with Argon2id. Access tokens are HS256 JWTs
carrying the operator id in ``sub``.
"""

from datetime import UTC, datetime, timedelta
import secrets
from typing import Any

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from jose import JWTError, jwt

from urna.core.config import settings
from urna.core.logging_config import get_logger

logger = get_logger(__name__)

ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,  # KiB
    parallelism=4,
    hash_len=32,
    salt_len=16,
    type=Type.ID,
)

# Hash used when the login email does not exist, so verification time is constant
DUMMY_PASSWORD_HASH = ph.hash("urna-dummy-password")


def hash_password(password: str) -> str:
    """Hash an operator password using Argon2id."""
    return ph.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its Argon2 hash.

    Returns:
        True if password matches, False otherwise
    """
    try:
        ph.verify(hashed_password, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False

    if ph.check_needs_rehash(hashed_password):
        logger.info("Password hash uses outdated parameters and should be rehashed")
    return True


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode; ``sub`` should hold the operator id
        expires_delta: Optional lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES
    """
    to_encode = data.copy()
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and verify a JWT access token, returning None when invalid."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def generate_verification_hash() -> str:
    """Random 128-bit receipt token for a cast vote, hex encoded."""
    return secrets.token_hex(16)
