from datetime import datetime

from sqlmodel import Field, SQLModel


class RateLimitHit(SQLModel, table=True):
    __tablename__ = "rate_limit_hits"
    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(max_length=100, index=True)
    created_at: datetime = Field(index=True)
