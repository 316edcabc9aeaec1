from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class Sale(SQLModel, table=True):
    """SQLModel table representation of a completed sale.

    Attributes
    ----------
    id : int | None
        Primary key, auto-incrementing integer.
    total_amount : float
        Amount charged for the sale.
    payment_method : str | None
        How the sale was paid.
    created_at : datetime
        When the sale was completed (UTC).
    """

    id: int | None = Field(default=None, primary_key=True)
    total_amount: float = Field(default=0.0)
    payment_method: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=UTC), index=True
    )
