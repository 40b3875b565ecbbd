from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from companion_api.core.clock import utc_naive_now


class AuditAction(str, Enum):
    TEMPLATE_REPLACED = "TEMPLATE_REPLACED"
    UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"


class AvailabilityAuditLog(SQLModel, table=True):
    """Append-only; rows are never updated or deleted by the application."""

    __tablename__ = "availability_audit_log"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(index=True)
    action: str = Field(max_length=50, index=True)
    old_data: Any | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    new_data: Any | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    actor_id: int | None = Field(default=None, index=True)
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utc_naive_now, index=True)
