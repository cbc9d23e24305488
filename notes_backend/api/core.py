import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from notes_backend.db.models import NoteStatus

# ==== Pydantic Schemas ====

# PUBLIC_INTERFACE
class UserCreate(BaseModel):
    """Schema for user registration input."""
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)

# PUBLIC_INTERFACE
class UserLogin(BaseModel):
    """Schema for login input."""
    email: EmailStr
    password: str

# PUBLIC_INTERFACE
class UserRead(BaseModel):
    """Schema for returning user info (without password)."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: EmailStr
    is_active: bool
    is_admin: bool
    created_at: datetime.datetime

# PUBLIC_INTERFACE
class UserUpdate(BaseModel):
    """Profile changes; omitted fields stay unchanged."""
    username: Optional[str] = None
    email: Optional[EmailStr] = None

# PUBLIC_INTERFACE
class PasswordChange(BaseModel):
    new_password: str = Field(..., min_length=6)

# PUBLIC_INTERFACE
class WhoAmI(BaseModel):
    authenticated: bool
    user: Optional[UserRead] = None

# PUBLIC_INTERFACE
class NoteCreate(BaseModel):
    """Input schema for creating a note."""
    title: str = Field(..., min_length=1)
    content: str = ""
    parent_id: Optional[int] = None
    icon: Optional[str] = None
    is_favorite: bool = False
    position: int = 0

# PUBLIC_INTERFACE
class NoteUpdate(BaseModel):
    """
    Input schema for updating a note. Only fields present in the request body
    are applied; an explicit "parent_id": null moves the note to the root.
    """
    title: Optional[str] = None
    content: Optional[str] = None
    parent_id: Optional[int] = None
    icon: Optional[str] = None
    is_favorite: Optional[bool] = None
    position: Optional[int] = None
    status: Optional[NoteStatus] = None

# PUBLIC_INTERFACE
class PositionUpdate(BaseModel):
    position: int

# PUBLIC_INTERFACE
class NoteRead(BaseModel):
    """Returned data for a note."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    parent_id: Optional[int]
    title: str
    content: str
    icon: Optional[str]
    is_favorite: bool
    position: int
    status: NoteStatus
    created_at: datetime.datetime
    updated_at: datetime.datetime

# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """Standard error response format."""
    message: str
    type: str
