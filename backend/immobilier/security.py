from __future__ import annotations

import secrets

import bcrypt

from immobilier.config import bcrypt_rounds


def hash_password(password: str) -> str:
    # bcrypt stores algorithm + cost + salt in the resulting hash string.
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=bcrypt_rounds())
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )
    except ValueError:
        # Invalid hash format.
        return False


def new_session_token() -> str:
    return secrets.token_urlsafe(32)
