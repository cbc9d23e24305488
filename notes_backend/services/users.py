"""Account registration, login and profile maintenance."""
from typing import Optional

import structlog
from passlib.context import CryptContext
from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from notes_backend.auth.passwords import burn_verify, get_password_hash, verify_password
from notes_backend.db.db import transaction
from notes_backend.db.models import User
from notes_backend.errors import (
    AccountDisabled,
    DuplicateEmail,
    DuplicateUsername,
    InvalidCredentials,
    NotFoundError,
    ValidationError,
)
from notes_backend.utils import now

logger = structlog.get_logger(__name__)


def _normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _username_taken(db: Session, username: str, exclude_id: Optional[int] = None) -> bool:
    query = select(User.id).where(User.username == username)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    return db.scalar(query) is not None


def _email_taken(db: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    return db.scalar(query) is not None


# PUBLIC_INTERFACE
def register(db: Session, pwd_context: CryptContext, username: str, password: str, email: str) -> User:
    """
    Create an account. The first account ever created becomes administrator;
    every later one is a regular account.

    The admin check and the insert share one write-locked transaction, so
    concurrent first registrations cannot both see "no admin yet".
    """
    username = (username or "").strip()
    email = _normalize_email(email)
    if not username or not email or not (password or "").strip():
        raise ValidationError("Username, password and email are required")

    password_hash = get_password_hash(pwd_context, password)

    with transaction(db, lock=True):
        if _username_taken(db, username):
            raise DuplicateUsername()
        if _email_taken(db, email):
            raise DuplicateEmail()

        has_admin = db.scalar(select(exists().where(User.is_admin.is_(True))))
        timestamp = now()
        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            is_active=True,
            is_admin=not has_admin,
            created_at=timestamp,
            updated_at=timestamp,
        )
        db.add(user)
        db.flush()

    logger.info("user_registered", user_id=user.id, is_admin=user.is_admin)
    return user


# PUBLIC_INTERFACE
def login(db: Session, pwd_context: CryptContext, email: str, password: str) -> User:
    """
    Check credentials. Unknown email and wrong password fail the same way;
    a disabled account is only reported once the password has been proven.
    """
    normalized = _normalize_email(email)
    with transaction(db):
        user = db.scalar(select(User).where(User.email == normalized))

    if user is None:
        burn_verify(pwd_context)
        raise InvalidCredentials()
    if not verify_password(pwd_context, password or "", user.password_hash):
        raise InvalidCredentials()
    if not user.is_active:
        raise AccountDisabled()

    logger.info("user_logged_in", user_id=user.id)
    return user


# PUBLIC_INTERFACE
def get_user(db: Session, user_id: int) -> User:
    with transaction(db):
        user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


# PUBLIC_INTERFACE
def update_profile(db: Session, user_id: int, username: Optional[str] = None, email: Optional[str] = None) -> User:
    """Change username and/or email; None leaves a field untouched."""
    if username is not None:
        username = username.strip()
        if not username:
            raise ValidationError("Username cannot be empty")
    if email is not None:
        email = _normalize_email(email)
        if not email:
            raise ValidationError("Email cannot be empty")

    with transaction(db, lock=True):
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if username is not None and username != user.username:
            if _username_taken(db, username, exclude_id=user_id):
                raise DuplicateUsername()
            user.username = username
        if email is not None and email != user.email:
            if _email_taken(db, email, exclude_id=user_id):
                raise DuplicateEmail()
            user.email = email
        user.updated_at = now()

    logger.info("user_profile_updated", user_id=user_id)
    return user


# PUBLIC_INTERFACE
def change_password(db: Session, pwd_context: CryptContext, user_id: int, new_password: str) -> None:
    if not (new_password or "").strip():
        raise ValidationError("Password required")

    password_hash = get_password_hash(pwd_context, new_password)
    with transaction(db):
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        user.password_hash = password_hash
        user.updated_at = now()

    logger.info("user_password_changed", user_id=user_id)


# PUBLIC_INTERFACE
def disable_user(db: Session, user_id: int) -> User:
    """Mark an account inactive. Callers revoke its sessions."""
    with transaction(db):
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        user.is_active = False
        user.updated_at = now()

    logger.info("user_disabled", user_id=user_id)
    return user
