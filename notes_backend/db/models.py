import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

from notes_backend.utils import as_utc, now

Base = declarative_base()


class NoteStatus(str, enum.Enum):
    NORMAL = "normal"
    TRASHED = "trashed"


# PUBLIC_INTERFACE
class User(Base):
    """
    Database model for a user account.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=now, nullable=False)
    updated_at = Column(DateTime, default=now, onupdate=now, nullable=False)

    notes = relationship("Note", back_populates="owner", cascade="all, delete-orphan")


# PUBLIC_INTERFACE
class Note(Base):
    """
    Database model for a note. Notes form a forest per owner through parent_id.
    """
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    parent_id = Column(Integer, ForeignKey("notes.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    icon = Column(String, nullable=True)
    is_favorite = Column(Boolean, default=False, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    status = Column(String, default=NoteStatus.NORMAL.value, nullable=False)
    created_at = Column(DateTime, default=now, nullable=False)
    updated_at = Column(DateTime, default=now, onupdate=now, nullable=False)

    owner = relationship("User", back_populates="notes")

    @property
    def is_trashed(self) -> bool:
        return self.status == NoteStatus.TRASHED.value


# PUBLIC_INTERFACE
class SessionRecord(Base):
    """
    Persisted server-side session. ``data`` holds the JSON-serialized attribute bag.
    """
    __tablename__ = "sessions"

    session_id = Column(String, primary_key=True)
    user_id = Column(Integer, nullable=True, default=0, index=True)
    data = Column(Text, nullable=False, default="")
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=now, nullable=False)
    updated_at = Column(DateTime, default=now, onupdate=now, nullable=False)

    def is_expired(self, at: datetime) -> bool:
        return as_utc(self.expires_at) <= as_utc(at)
