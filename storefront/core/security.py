"""Password hashing and one-time code utilities."""

import hmac
import secrets

import bcrypt

_BCRYPT_ROUNDS = 12
# bcrypt only reads the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72


def _password_bytes(raw_password: str) -> bytes:
    return raw_password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(raw_password: str, rounds: int = _BCRYPT_ROUNDS) -> str:
    """Hash a password using bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_password_bytes(raw_password), salt).decode("utf-8")


def verify_password(raw_password: str, stored_hash: str | None) -> bool:
    """Verify a raw password against its stored hash. Missing hash never matches."""
    if not stored_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(raw_password), stored_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_numeric_code(length: int = 6) -> str:
    """Random numeric code that never starts with zero."""
    first = str(secrets.randbelow(9) + 1)
    rest = "".join(str(secrets.randbelow(10)) for _ in range(length - 1))
    return first + rest


def codes_match(expected: str, submitted: str) -> bool:
    """Constant-time comparison of two codes."""
    return hmac.compare_digest(expected.encode("utf-8"), submitted.encode("utf-8"))
