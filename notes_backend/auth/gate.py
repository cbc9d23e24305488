"""
Request-pipeline stages that resolve the caller's identity from the session cookie.

Used as FastAPI dependencies. Raising from a dependency ends the request
before the route body runs; on success the account is published on
``request.state.user`` / ``request.state.user_id`` for everything downstream.
"""
from typing import Optional

import structlog
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from notes_backend.auth.sessions import HttpSession, SessionStore
from notes_backend.db.db import get_db, transaction
from notes_backend.db.models import User
from notes_backend.errors import AccountDisabled, Forbidden, PersistenceError, Unauthorized

logger = structlog.get_logger(__name__)


def get_store(request: Request) -> SessionStore:
    return request.app.state.session_store


# PUBLIC_INTERFACE
def get_session(request: Request) -> HttpSession:
    """The request's session under the configured cookie name."""
    return get_store(request).get(request, request.app.state.settings.session_cookie_name)


def _resolve_user(request: Request, db: Session) -> User:
    session = get_session(request)
    user_id = session.user_id
    if not user_id:
        raise Unauthorized("Not authenticated")

    # Committed right away so handlers can open their own (locked) transactions.
    try:
        with transaction(db):
            user = db.get(User, user_id)
    except PersistenceError:
        logger.warning("session_user_load_failed", user_id=user_id, exc_info=True)
        raise Unauthorized("Not authenticated") from None
    if user is None:
        logger.info("session_user_missing", user_id=user_id)
        raise Unauthorized("User not found")
    if not user.is_active:
        raise AccountDisabled()
    return user


def _publish(request: Request, user: User) -> None:
    request.state.user = user
    request.state.user_id = user.id


# PUBLIC_INTERFACE
def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    """401 without a valid session or account, 403 for a disabled account."""
    user = _resolve_user(request, db)
    _publish(request, user)
    return user


# PUBLIC_INTERFACE
def optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """Like require_user, but an anonymous caller simply gets None."""
    try:
        user = _resolve_user(request, db)
    except (Unauthorized, Forbidden):
        return None
    _publish(request, user)
    return user


# PUBLIC_INTERFACE
def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user


# PUBLIC_INTERFACE
def current_user(request: Request) -> User:
    """The identity published by require_user/optional_user for this request."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise Unauthorized("Not authenticated")
    return user
