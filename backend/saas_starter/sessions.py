# saas_starter/sessions.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request, Response
from sqlalchemy import delete, select
from sqlalchemy.orm import Session as DbSession

from .config import is_production, session_expiry_hours
from .models import STATUS_DEACTIVATED, Session, utcnow
from .tokens import generate_session_token, get_token_expiry, is_token_expired

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        max_age=session_expiry_hours() * 3600,
        httponly=True,
        secure=is_production(),
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")


def create_session(
    db: DbSession,
    response: Response,
    user_id: int,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    token = generate_session_token()
    db.add(
        Session(
            user_id=user_id,
            token=token,
            expires_at=get_token_expiry(session_expiry_hours()),
            ip_address=ip_address,
            user_agent=user_agent,
        )
    )
    db.commit()

    _set_session_cookie(response, token)
    return token


def get_session(db: DbSession, token: Optional[str]) -> Optional[Session]:
    """
    Resolve a cookie token to a live session.
    Expired sessions and sessions of deactivated users are deleted on sight.
    """
    if not token:
        return None

    sess = db.scalar(select(Session).where(Session.token == token))
    if not sess:
        return None

    if is_token_expired(sess.expires_at) or sess.user.status == STATUS_DEACTIVATED:
        db.delete(sess)
        db.commit()
        return None

    return sess


def destroy_session(db: DbSession, token: str) -> None:
    # Session may already be gone; deleting by filter is a no-op then
    db.execute(delete(Session).where(Session.token == token))
    db.commit()


def destroy_current_session(db: DbSession, request: Request, response: Response) -> None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        destroy_session(db, token)
    clear_session_cookie(response)


def destroy_all_user_sessions(db: DbSession, user_id: int) -> int:
    result = db.execute(delete(Session).where(Session.user_id == user_id))
    db.commit()
    return result.rowcount or 0


def get_user_sessions(db: DbSession, user_id: int) -> list[Session]:
    stmt = (
        select(Session)
        .where(Session.user_id == user_id, Session.expires_at > utcnow())
        .order_by(Session.created_at.desc(), Session.id.desc())
    )
    return list(db.scalars(stmt).all())


def extend_session(db: DbSession, token: str, response: Optional[Response] = None) -> Optional[Session]:
    sess = db.scalar(select(Session).where(Session.token == token))
    if not sess:
        return None

    sess.expires_at = get_token_expiry(session_expiry_hours())
    db.commit()

    if response is not None:
        _set_session_cookie(response, token)
    return sess


def cleanup_expired_sessions(db: DbSession) -> int:
    result = db.execute(delete(Session).where(Session.expires_at < utcnow()))
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("Removed %s expired sessions", count)
    return count
