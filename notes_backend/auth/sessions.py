"""
Database-backed cookie sessions.

The cookie only carries the signed session id; the attribute bag, owner and
expiry live in the ``sessions`` table. A session that cannot be resolved for
any reason (no cookie, bad signature, unknown or expired record, database
trouble) is replaced by a fresh anonymous one instead of failing the request.
"""
import asyncio
import json
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from notes_backend.auth.codec import CredentialCodec
from notes_backend.config import SEVEN_DAYS
from notes_backend.db.db import transaction
from notes_backend.db.models import SessionRecord
from notes_backend.errors import PersistenceError, TamperedOrInvalid
from notes_backend.utils import now

logger = structlog.get_logger(__name__)

USER_ID_KEY = "user_id"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def owner_of(values: Dict[str, Any]) -> int:
    """Account id stored in an attribute bag, 0 when anonymous."""
    user_id = values.get(USER_ID_KEY)
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 0:
        return 0
    return user_id


# PUBLIC_INTERFACE
@dataclass
class CookieOptions:
    """Cookie attributes. A negative max_age means "delete this session"."""
    path: str = "/"
    max_age: int = SEVEN_DAYS
    http_only: bool = True
    secure: bool = False
    same_site: str = "lax"


# PUBLIC_INTERFACE
class HttpSession:
    """A session as seen by one request: id, attribute bag and cookie options."""

    def __init__(self, store: "SessionStore", name: str, options: CookieOptions) -> None:
        self.store = store
        self.name = name
        self.id = ""
        self.values: Dict[str, Any] = {}
        self.options = options
        self.is_new = True

    @property
    def user_id(self) -> int:
        return owner_of(self.values)

    def save(self, request: Request, response: Response) -> None:
        self.store.save(request, response, self)

    def rotate(self) -> None:
        """Drop the current id (and its record); the next save mints a new one."""
        self.store.rotate(self)

    def invalidate(self) -> None:
        """Mark for deletion; the next save removes the record and the cookie."""
        self.values.clear()
        self.options.max_age = -1


# PUBLIC_INTERFACE
class SessionStore:
    """
    Persists sessions in the ``sessions`` table.

    Each operation runs in its own short transaction on its own database
    session, so session bookkeeping never mixes with a handler's unit of work.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        codec: CredentialCodec,
        options: Optional[CookieOptions] = None,
        clock: Callable[[], datetime] = now,
    ) -> None:
        self.session_factory = session_factory
        self.codec = codec
        self.options = options or CookieOptions()
        self.clock = clock

    def get(self, request: Request, name: str) -> HttpSession:
        """Session for ``name``, created at most once per request."""
        registry = getattr(request.state, "sessions", None)
        if registry is None:
            registry = {}
            request.state.sessions = registry
        if name not in registry:
            registry[name] = self.new(request, name)
        return registry[name]

    def new(self, request: Request, name: str) -> HttpSession:
        session = HttpSession(self, name, replace(self.options))
        cookie = request.cookies.get(name)
        if not cookie:
            return session

        try:
            session_id = self.codec.decode(name, cookie)
        except TamperedOrInvalid:
            logger.info("session_cookie_rejected", cookie_name=name)
            return session

        try:
            values = self._load(session_id)
        except PersistenceError:
            logger.warning("session_load_failed", cookie_name=name, exc_info=True)
            return session
        if values is None:
            return session

        session.id = session_id
        session.values = values
        session.is_new = False
        return session

    def _load(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db, transaction(db):
            record = db.get(SessionRecord, session_id)
            if record is None or record.is_expired(self.clock()):
                return None
            data = record.data

        if not data:
            return {}
        try:
            values = json.loads(data)
        except ValueError:
            logger.warning("session_data_corrupt")
            return None
        return values if isinstance(values, dict) else None

    def save(self, request: Request, response: Response, session: HttpSession) -> None:
        if session.options.max_age < 0:
            if session.id:
                with self.session_factory() as db, transaction(db):
                    db.execute(delete(SessionRecord).where(SessionRecord.session_id == session.id))
            self._set_cookie(response, session, "")
            return

        if not session.id:
            session.id = secrets.token_urlsafe(32)

        data = json.dumps(session.values)
        owner = owner_of(session.values)
        timestamp = self.clock()
        expires_at = timestamp + timedelta(seconds=session.options.max_age)

        # Check-then-write is not atomic: concurrent saves of one id are last-write-wins.
        with self.session_factory() as db, transaction(db):
            record = db.get(SessionRecord, session.id)
            if record is None:
                db.add(SessionRecord(
                    session_id=session.id,
                    user_id=owner,
                    data=data,
                    expires_at=expires_at,
                    created_at=timestamp,
                    updated_at=timestamp,
                ))
            else:
                record.data = data
                record.expires_at = expires_at
                record.updated_at = timestamp
                if owner > 0:
                    record.user_id = owner

        self._set_cookie(response, session, self.codec.encode(session.name, session.id))
        session.is_new = False

    def rotate(self, session: HttpSession) -> None:
        """Detach the session from its id. Values are kept; the old record is deleted."""
        if session.id:
            with self.session_factory() as db, transaction(db):
                db.execute(delete(SessionRecord).where(SessionRecord.session_id == session.id))
        session.id = ""
        session.is_new = True

    def _set_cookie(self, response: Response, session: HttpSession, value: str) -> None:
        options = session.options
        if options.max_age < 0:
            response.set_cookie(
                session.name,
                "",
                max_age=0,
                expires=_EPOCH,
                path=options.path,
                secure=options.secure,
                httponly=options.http_only,
                samesite=options.same_site,
            )
            return
        response.set_cookie(
            session.name,
            value,
            max_age=options.max_age,
            path=options.path,
            secure=options.secure,
            httponly=options.http_only,
            samesite=options.same_site,
        )

    def revoke_user(self, user_id: int) -> int:
        """Delete every session owned by an account. Returns the number removed."""
        with self.session_factory() as db, transaction(db):
            result = db.execute(delete(SessionRecord).where(SessionRecord.user_id == user_id))
        logger.info("sessions_revoked", user_id=user_id, count=result.rowcount)
        return result.rowcount

    def delete_expired(self) -> int:
        with self.session_factory() as db, transaction(db):
            result = db.execute(delete(SessionRecord).where(SessionRecord.expires_at <= self.clock()))
        return result.rowcount


# PUBLIC_INTERFACE
class SessionReaper:
    """Periodically removes expired session rows, outside of request handling."""

    def __init__(self, store: SessionStore, interval: float) -> None:
        self.store = store
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("session_reaper_started", interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("session_reaper_stopped")

    async def sweep(self) -> int:
        try:
            removed = await run_in_threadpool(self.store.delete_expired)
        except PersistenceError:
            logger.warning("session_reap_failed", exc_info=True)
            return 0
        if removed:
            logger.info("expired_sessions_removed", count=removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep()
