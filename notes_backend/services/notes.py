"""Note tree operations. Every write checks ownership and parent integrity first."""
from typing import Any, List, Mapping, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from notes_backend.db.db import transaction
from notes_backend.db.models import Note, NoteStatus
from notes_backend.errors import InvalidParent, NotFoundError, NoteUnauthorized, ValidationError
from notes_backend.utils import now

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = frozenset({"title", "content", "icon", "is_favorite", "position", "status", "parent_id"})


def _ordered(query):
    return query.order_by(Note.position.asc(), Note.created_at.desc(), Note.id.asc())


def _status_value(status: Any) -> str:
    try:
        return NoteStatus(status).value
    except ValueError:
        raise ValidationError(f"Invalid note status: {status!r}") from None


# PUBLIC_INTERFACE
def check_parent(db: Session, user_id: int, parent_id: Optional[int], note_id: Optional[int] = None) -> Optional[Note]:
    """
    Hierarchy guard for create (note_id None) and update.

    1. the parent must exist                 -> InvalidParent
    2. the parent must belong to user_id     -> NoteUnauthorized
    3. on update, a note is not its own parent -> InvalidParent
    4. on update, the note must not be an ancestor of its new parent -> InvalidParent
    """
    if parent_id is None:
        return None

    parent = db.get(Note, parent_id)
    if parent is None:
        raise InvalidParent()
    if parent.user_id != user_id:
        raise NoteUnauthorized()
    if note_id is None:
        return parent
    if parent_id == note_id:
        raise InvalidParent("A note cannot be its own parent")

    seen = {parent.id}
    current = parent
    while current.parent_id is not None:
        if current.parent_id == note_id:
            raise InvalidParent("A note cannot be moved under its own descendant")
        if current.parent_id in seen:
            # already looping without us; not ours to repair here
            break
        seen.add(current.parent_id)
        current = db.get(Note, current.parent_id)
        if current is None:
            break
    return parent


def _owned_note(db: Session, user_id: int, note_id: int) -> Note:
    note = db.get(Note, note_id)
    if note is None:
        raise NotFoundError("Note not found")
    if note.user_id != user_id:
        raise NoteUnauthorized()
    return note


# PUBLIC_INTERFACE
def get_note(db: Session, user_id: int, note_id: int) -> Note:
    """Get a single note owned by user. Trashed notes are still returned."""
    with transaction(db):
        return _owned_note(db, user_id, note_id)


# PUBLIC_INTERFACE
def list_notes(db: Session, user_id: int, status: Any = NoteStatus.NORMAL) -> List[Note]:
    """All notes of the user with the given status, sibling order first."""
    query = select(Note).where(Note.user_id == user_id, Note.status == _status_value(status))
    with transaction(db):
        return list(db.scalars(_ordered(query)))


# PUBLIC_INTERFACE
def list_children(db: Session, user_id: int, parent_id: Optional[int], status: Any = NoteStatus.NORMAL) -> List[Note]:
    """Direct children of parent_id, or the root notes when parent_id is None."""
    query = select(Note).where(Note.user_id == user_id, Note.status == _status_value(status))
    with transaction(db):
        if parent_id is None:
            query = query.where(Note.parent_id.is_(None))
        else:
            check_parent(db, user_id, parent_id)
            query = query.where(Note.parent_id == parent_id)
        return list(db.scalars(_ordered(query)))


# PUBLIC_INTERFACE
def list_favorites(db: Session, user_id: int) -> List[Note]:
    query = select(Note).where(
        Note.user_id == user_id,
        Note.is_favorite.is_(True),
        Note.status == NoteStatus.NORMAL.value,
    )
    with transaction(db):
        return list(db.scalars(_ordered(query)))


# PUBLIC_INTERFACE
def create_note(
    db: Session,
    user_id: int,
    title: str,
    content: str = "",
    parent_id: Optional[int] = None,
    icon: Optional[str] = None,
    is_favorite: bool = False,
    position: int = 0,
) -> Note:
    """Create a note for user_id, optionally under one of the user's notes."""
    if not (title or "").strip():
        raise ValidationError("Title is required")

    with transaction(db):
        check_parent(db, user_id, parent_id)
        timestamp = now()
        note = Note(
            user_id=user_id,
            parent_id=parent_id,
            title=title,
            content=content or "",
            icon=icon,
            is_favorite=is_favorite,
            position=position,
            status=NoteStatus.NORMAL.value,
            created_at=timestamp,
            updated_at=timestamp,
        )
        db.add(note)
        db.flush()

    logger.info("note_created", note_id=note.id, user_id=user_id, parent_id=parent_id)
    return note


# PUBLIC_INTERFACE
def update_note(db: Session, user_id: int, note_id: int, changes: Mapping[str, Any]) -> Note:
    """
    Apply a partial update. Keys absent from ``changes`` stay as they are;
    ``parent_id: None`` moves the note to the root. The owner never changes.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Title is required")

    with transaction(db):
        # Ownership is re-read inside the transaction that performs the write.
        note = _owned_note(db, user_id, note_id)
        if "parent_id" in changes:
            check_parent(db, user_id, changes["parent_id"], note_id=note.id)
            note.parent_id = changes["parent_id"]
        if "status" in changes:
            note.status = _status_value(changes["status"])
        for field in ("title", "content", "icon", "is_favorite", "position"):
            if field in changes:
                value = changes[field]
                if value is None and field in ("is_favorite", "position"):
                    raise ValidationError(f"{field} cannot be null")
                if field == "content" and value is None:
                    value = ""
                setattr(note, field, value)
        note.updated_at = now()

    logger.info("note_updated", note_id=note_id, fields=sorted(changes))
    return note


def _set_status(db: Session, user_id: int, note_id: int, status: NoteStatus) -> Note:
    with transaction(db):
        note = _owned_note(db, user_id, note_id)
        note.status = status.value
        note.updated_at = now()
    return note


# PUBLIC_INTERFACE
def trash_note(db: Session, user_id: int, note_id: int) -> Note:
    note = _set_status(db, user_id, note_id, NoteStatus.TRASHED)
    logger.info("note_trashed", note_id=note_id)
    return note


# PUBLIC_INTERFACE
def restore_note(db: Session, user_id: int, note_id: int) -> Note:
    note = _set_status(db, user_id, note_id, NoteStatus.NORMAL)
    logger.info("note_restored", note_id=note_id)
    return note


# PUBLIC_INTERFACE
def delete_note(db: Session, user_id: int, note_id: int) -> None:
    """Remove a note for good. Its children become root notes."""
    with transaction(db):
        note = _owned_note(db, user_id, note_id)
        # also updates children already loaded in this session
        db.execute(update(Note).where(Note.parent_id == note.id).values(parent_id=None))
        db.delete(note)
    logger.info("note_deleted", note_id=note_id)


# PUBLIC_INTERFACE
def toggle_favorite(db: Session, user_id: int, note_id: int) -> Note:
    with transaction(db):
        note = _owned_note(db, user_id, note_id)
        note.is_favorite = not note.is_favorite
        note.updated_at = now()
    return note


# PUBLIC_INTERFACE
def update_position(db: Session, user_id: int, note_id: int, position: int) -> Note:
    with transaction(db):
        note = _owned_note(db, user_id, note_id)
        note.position = position
        note.updated_at = now()
    return note
