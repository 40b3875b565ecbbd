from datetime import datetime
from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from companion_api.core.clock import utc_naive_now


class Role(str, Enum):
    CLIENT = "client"
    COMPANION = "companion"
    ADMIN = "admin"


class UserBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: str | None = None


class User(UserBase, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_naive_now)


class UserRole(SQLModel, table=True):
    """A user may hold several roles; providers are users with an active companion role."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    role: str = Field(max_length=20, index=True)
    is_active: bool = True
