from datetime import date

from sqlmodel import Field, SQLModel


class Product(SQLModel, table=True):
    """SQLModel table representation of a catalog product.

    Attributes
    ----------
    id : int | None
        Primary key, auto-incrementing integer.
    name : str
        Display name.
    stock : int
        Units in stock.
    reorder_level : int | None
        Reorder threshold, the configured default applies when unset.
    expiry_date : date | None
        Expiry date of the stocked batch.
    category : str | None
        Product category.
    is_active : bool
        Whether the product is still sold.
    """

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    stock: int = Field(default=0, index=True)
    reorder_level: int | None = Field(default=None)
    expiry_date: date | None = Field(default=None, index=True)
    category: str | None = Field(default=None)
    is_active: bool = Field(default=True, index=True)
