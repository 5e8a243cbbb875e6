"""
Identity helpers: password hashing, signed session tokens and the roster seed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt
from passlib.context import CryptContext

from labhub.db import DbClient, UserRecord
from labhub.enums import Role
from labhub.errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Seeded once into an empty user table; the database is the roster afterwards.
DEFAULT_ROSTER: tuple[dict, ...] = (
    {"id": "1", "name": "Samayank", "password": "Goel", "role": Role.ADMIN},
    {"id": "2", "name": "Sarthak", "password": "Luhadia", "role": Role.IMAGING},
    {"id": "3", "name": "Daksh", "password": "Singla", "role": Role.GENOMICS},
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Not a hash passlib recognises.
        return False


def issue_token(user_id: str, secret: str, ttl_seconds: int) -> str:
    """Return an HS256 JWT whose `sub` is `user_id`, expiring after `ttl_seconds`."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def verify_token(token: str, secret: str) -> str:
    """Return the user id carried by `token`, or raise AuthError."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[TOKEN_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Session token expired")
    except jwt.InvalidTokenError as exc:
        raise AuthError(f"Invalid session token: {exc}")
    return payload["sub"]


def authenticate(db: DbClient, name: str, password: str) -> UserRecord:
    user = db.get_user_by_name(name)
    if not user or not verify_password(password, user.password_hash):
        raise AuthError("Invalid credentials")
    if not user.is_active:
        raise AuthError("Inactive user")
    return user


def resolve_identity(
    db: DbClient,
    user_id: Optional[str],
    token: Optional[str] = None,
    secret: Optional[str] = None,
) -> UserRecord:
    """
    Resolve the identity claimed in a connection handshake.

    With a secret configured, the token is authoritative and must match any
    explicitly claimed user_id. Without one, the claimed user_id is trusted.
    """
    if secret:
        if not token:
            raise AuthError("Session token required")
        token_user_id = verify_token(token, secret)
        if user_id and user_id != token_user_id:
            raise AuthError("Token does not match claimed user")
        user_id = token_user_id
    if not user_id:
        raise AuthError("Missing user id")
    user = db.get_user(user_id)
    if not user or not user.is_active:
        raise AuthError(f"Unknown or inactive user {user_id}")
    return user


def seed_roster(db: DbClient, roster: Iterable[dict] = DEFAULT_ROSTER) -> int:
    """Insert `roster` when the user table is empty. Returns users added."""
    if db.count_users():
        return 0
    added = 0
    for entry in roster:
        db.add_user(
            UserRecord(
                user_id=entry["id"],
                name=entry["name"],
                role=Role(entry.get("role", Role.IMAGING)),
                email=entry.get("email"),
                password_hash=hash_password(entry["password"]),
            )
        )
        added += 1
    logger.info("Seeded %d users into an empty roster", added)
    return added
