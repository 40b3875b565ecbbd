from sqlmodel import Field, SQLModel


class ServiceCategory(SQLModel, table=True):
    __tablename__ = "service_categories"
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, max_length=100)
    description: str | None = None
    base_price: float  # hourly rate
    is_active: bool = Field(default=True, index=True)
