"""
Server-side session store.

A session row binds an opaque cookie token to a user id plus a projection of
the user captured at login. Lifetime is fixed at creation and never extended.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from immobilier.config import session_ttl_hours
from immobilier.models import User, UserSession
from immobilier.security import new_session_token

logger = logging.getLogger(__name__)


def _as_utc(value: dt.datetime) -> dt.datetime:
    # sqlite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def user_projection(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "phone": u.phone,
        "role": u.role,
    }


def create_session(db: Session, user: User, *, now: dt.datetime | None = None) -> UserSession:
    now = now or dt.datetime.now(dt.timezone.utc)
    s = UserSession(
        token=new_session_token(),
        user_id=user.id,
        user_json=json.dumps(user_projection(user)),
        created_at=now,
        expires_at=now + dt.timedelta(hours=session_ttl_hours()),
    )
    db.add(s)
    db.flush()
    return s


def get_live_session(db: Session, token: str | None, *, now: dt.datetime | None = None) -> UserSession | None:
    """
    Returns the session for `token`, or None when unknown or expired.
    Expired rows are removed on sight.
    """
    token = (token or "").strip()
    if not token:
        return None
    s = db.execute(select(UserSession).where(UserSession.token == token)).scalar_one_or_none()
    if not s:
        return None
    now = now or dt.datetime.now(dt.timezone.utc)
    if _as_utc(s.expires_at) <= now:
        db.delete(s)
        db.flush()
        return None
    return s


def session_user(s: UserSession) -> dict[str, Any]:
    try:
        return json.loads(s.user_json or "{}")
    except ValueError:
        return {}


def destroy_session(db: Session, token: str | None) -> bool:
    token = (token or "").strip()
    if not token:
        return False
    res = db.execute(delete(UserSession).where(UserSession.token == token))
    return bool(res.rowcount)


def destroy_user_sessions(db: Session, user_id: int) -> int:
    res = db.execute(delete(UserSession).where(UserSession.user_id == int(user_id)))
    return int(res.rowcount or 0)


def purge_expired_sessions(db: Session, *, now: dt.datetime | None = None) -> int:
    now = now or dt.datetime.now(dt.timezone.utc)
    res = db.execute(delete(UserSession).where(UserSession.expires_at <= now))
    n = int(res.rowcount or 0)
    if n:
        logger.info("Purged %s expired sessions", n)
    return n
