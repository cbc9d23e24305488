from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notes_backend.api.core import (
    ErrorResponse,
    NoteCreate, NoteRead, NoteUpdate, PositionUpdate,
    PasswordChange, UserCreate, UserLogin, UserRead, UserUpdate, WhoAmI,
)
from notes_backend.auth.codec import CredentialCodec
from notes_backend.auth.gate import current_user, get_session, optional_user, require_admin, require_user
from notes_backend.auth.passwords import create_password_context
from notes_backend.auth.sessions import USER_ID_KEY, CookieOptions, SessionReaper, SessionStore
from notes_backend.config import Settings
from notes_backend.db.db import create_db_engine, create_session_factory, get_db
from notes_backend.db.migrations import migrate
from notes_backend.db.models import NoteStatus, User
from notes_backend.errors import Forbidden, PersistenceError, UserError, ValidationError
from notes_backend.logging import setup_logging
from notes_backend.services import notes, users
from notes_backend.utils import now

logger = structlog.get_logger(__name__)

openapi_tags = [
    {"name": "users", "description": "Registration, login and account management"},
    {"name": "notes", "description": "Create, organise, trash and restore notes"},
    {"name": "health", "description": "Service status"},
]

error_responses = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
}

router = APIRouter(prefix="/api/v1", responses=error_responses)


def _ensure_self_or_admin(request: Request, user_id: int) -> User:
    user = current_user(request)
    if user.id != user_id and not user.is_admin:
        raise Forbidden("Cannot access another user's account")
    return user


# --- User Endpoints ---

# PUBLIC_INTERFACE
@router.post("/users/register", response_model=UserRead, status_code=201, tags=["users"], summary="Register a new user")
def register_user(payload: UserCreate, request: Request, db: Session = Depends(get_db)):
    """Register a new user. The very first account becomes administrator."""
    return users.register(db, request.app.state.pwd_context, payload.username, payload.password, payload.email)

# PUBLIC_INTERFACE
@router.post("/users/login", response_model=UserRead, tags=["users"], summary="Log in with email and password")
def login(payload: UserLogin, request: Request, response: Response, db: Session = Depends(get_db)):
    """Check credentials and attach the account to a freshly minted session id."""
    user = users.login(db, request.app.state.pwd_context, payload.email, payload.password)
    session = get_session(request)
    # an id that existed before authentication may have been planted
    session.rotate()
    session.values[USER_ID_KEY] = user.id
    session.save(request, response)
    return user

# PUBLIC_INTERFACE
@router.post("/users/logout", status_code=204, tags=["users"], summary="Log out")
def logout(request: Request, response: Response):
    """Delete the server-side session and tell the client to drop the cookie."""
    session = get_session(request)
    session.invalidate()
    session.save(request, response)
    return None

# PUBLIC_INTERFACE
@router.get("/users/me", response_model=UserRead, tags=["users"], summary="Get current user info")
def read_current_user(user: User = Depends(require_user)):
    return user

# PUBLIC_INTERFACE
@router.get("/whoami", response_model=WhoAmI, tags=["users"], summary="Identity of the caller, if any")
def whoami(user: Optional[User] = Depends(optional_user)):
    """Works for anonymous callers too."""
    return WhoAmI(authenticated=user is not None, user=UserRead.model_validate(user) if user else None)

# PUBLIC_INTERFACE
@router.get("/users/{user_id}", response_model=UserRead, tags=["users"], summary="Get a user")
def read_user(user_id: int, request: Request, db: Session = Depends(get_db), _: User = Depends(require_user)):
    """Users can read their own account; administrators can read any."""
    _ensure_self_or_admin(request, user_id)
    return users.get_user(db, user_id)

# PUBLIC_INTERFACE
@router.put("/users/{user_id}", response_model=UserRead, tags=["users"], summary="Update a profile")
def update_user(user_id: int, payload: UserUpdate, request: Request,
                db: Session = Depends(get_db), _: User = Depends(require_user)):
    _ensure_self_or_admin(request, user_id)
    return users.update_profile(db, user_id, username=payload.username, email=payload.email)

# PUBLIC_INTERFACE
@router.put("/users/{user_id}/password", status_code=204, tags=["users"], summary="Change a password")
def change_user_password(user_id: int, payload: PasswordChange, request: Request, response: Response,
                         db: Session = Depends(get_db), _: User = Depends(require_user)):
    """Change the password and sign the account out everywhere except here."""
    actor = _ensure_self_or_admin(request, user_id)
    users.change_password(db, request.app.state.pwd_context, user_id, payload.new_password)
    request.app.state.session_store.revoke_user(user_id)
    if actor.id == user_id:
        get_session(request).save(request, response)
    return None

# PUBLIC_INTERFACE
@router.put("/users/{user_id}/disable", response_model=UserRead, tags=["users"], summary="Disable an account")
def disable_user(user_id: int, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """Administrators only. The account's sessions are revoked immediately."""
    if admin.id == user_id:
        raise ValidationError("Cannot disable your own account")
    user = users.disable_user(db, user_id)
    request.app.state.session_store.revoke_user(user_id)
    return user

# --- Notes Endpoints ---

# PUBLIC_INTERFACE
@router.post("/notes", response_model=NoteRead, status_code=201, tags=["notes"], summary="Create a new note")
def create_user_note(note: NoteCreate, db: Session = Depends(get_db), user: User = Depends(require_user)):
    """Create note belonging to authenticated user."""
    return notes.create_note(
        db, user.id, note.title,
        content=note.content, parent_id=note.parent_id, icon=note.icon,
        is_favorite=note.is_favorite, position=note.position,
    )

# PUBLIC_INTERFACE
@router.get("/notes", response_model=List[NoteRead], tags=["notes"], summary="List my notes")
def list_user_notes(
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
    status: NoteStatus = NoteStatus.NORMAL,
    parent_id: Optional[str] = Query(None, description='Note id, or "null"/"0" for root notes'),
    favorite: bool = False,
):
    """
    List notes. ?favorite=true lists favorites, ?parent_id= lists the children
    of a note (or the roots), otherwise every note with the given status.
    """
    if favorite:
        return notes.list_favorites(db, user.id)
    if parent_id is not None:
        if parent_id in ("null", "0", ""):
            return notes.list_children(db, user.id, None, status)
        try:
            parent = int(parent_id)
        except ValueError:
            raise ValidationError("Invalid parent_id") from None
        return notes.list_children(db, user.id, parent, status)
    return notes.list_notes(db, user.id, status)

# PUBLIC_INTERFACE
@router.get("/notes/{note_id}", response_model=NoteRead, tags=["notes"], summary="Get specific note")
def get_user_note(note_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    """Get a single note by ID (must be owned by the current user)."""
    return notes.get_note(db, user.id, note_id)

# PUBLIC_INTERFACE
@router.put("/notes/{note_id}", response_model=NoteRead, tags=["notes"], summary="Update a note")
def update_user_note(note_id: int, note: NoteUpdate, db: Session = Depends(get_db), user: User = Depends(require_user)):
    """Edit an existing note (must belong to user). Only the fields sent are changed."""
    return notes.update_note(db, user.id, note_id, note.model_dump(exclude_unset=True))

# PUBLIC_INTERFACE
@router.delete("/notes/{note_id}", status_code=204, tags=["notes"], summary="Delete a note")
def delete_user_note(note_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    """Remove one of your notes permanently."""
    notes.delete_note(db, user.id, note_id)
    return None

# PUBLIC_INTERFACE
@router.put("/notes/{note_id}/trash", response_model=NoteRead, tags=["notes"], summary="Move a note to the trash")
def trash_user_note(note_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    return notes.trash_note(db, user.id, note_id)

# PUBLIC_INTERFACE
@router.put("/notes/{note_id}/restore", response_model=NoteRead, tags=["notes"], summary="Restore a trashed note")
def restore_user_note(note_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    return notes.restore_note(db, user.id, note_id)

# PUBLIC_INTERFACE
@router.put("/notes/{note_id}/favorite", response_model=NoteRead, tags=["notes"], summary="Toggle favorite")
def toggle_user_note_favorite(note_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    return notes.toggle_favorite(db, user.id, note_id)

# PUBLIC_INTERFACE
@router.put("/notes/{note_id}/position", response_model=NoteRead, tags=["notes"], summary="Reorder a note")
def update_user_note_position(note_id: int, payload: PositionUpdate,
                              db: Session = Depends(get_db), user: User = Depends(require_user)):
    return notes.update_position(db, user.id, note_id, payload.position)


# --- Error handlers ---

def create_json_error_response(status_code: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "type": error_type})


async def user_error_handler(_: Request, exc: UserError) -> JSONResponse:
    """Every UserError subclass carries its own status code."""
    return create_json_error_response(exc.status_code, str(exc), exc.error_type)


async def request_validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies and parameters are reported like any other ValidationError."""
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:])
        problems.append(f"{field}: {error['msg']}" if field else error["msg"])
    return create_json_error_response(400, "; ".join(problems) or "Invalid request", "validation_error")


async def persistence_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("persistence_error", path=request.url.path, exc_info=exc)
    return create_json_error_response(500, "A database error occurred.", "persistence_error")


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unexpected_error", path=request.url.path, exc_info=exc)
    return create_json_error_response(500, "An unexpected error occurred.", "internal_server_error")


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None, clock: Callable[[], datetime] = now) -> FastAPI:
    """
    Build the application and wire its collaborators explicitly onto app.state.
    Run with: uvicorn notes_backend.api.main:create_app --factory
    """
    settings = settings or Settings.from_env()
    setup_logging(settings.debug)

    engine = create_db_engine(settings)
    session_factory = create_session_factory(engine)
    if settings.session_secret_keys:
        codec = CredentialCodec(settings.session_secret_keys)
    else:
        logger.info("session_key_generated")
        codec = CredentialCodec.generate()
    store = SessionStore(
        session_factory,
        codec,
        CookieOptions(max_age=settings.session_max_age, secure=settings.session_secure_cookie),
        clock=clock,
    )
    reaper = SessionReaper(store, settings.session_reap_interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        migrate(engine)
        await reaper.start()
        try:
            yield
        finally:
            await reaper.stop()
            engine.dispose()

    app = FastAPI(
        title="Notes Backend API",
        description="Notes tree per user, with cookie sessions stored server-side.",
        version="1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.session_store = store
    app.state.session_reaper = reaper
    app.state.pwd_context = create_password_context(settings.password_rounds)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/", tags=["health"])
    def health_check():
        """Health check root."""
        return {"message": "Healthy"}

    app.include_router(router)

    app.add_exception_handler(UserError, user_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)
    app.add_exception_handler(SQLAlchemyError, persistence_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app
