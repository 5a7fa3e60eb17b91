"""
Password hashing helpers.

bcrypt only looks at the first 72 bytes of a password; longer UTF-8 input is
truncated here explicitly because recent bcrypt releases reject it outright.
"""

import bcrypt

_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = 12) -> str:
    """Return the bcrypt hash of ``password`` as a str."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
