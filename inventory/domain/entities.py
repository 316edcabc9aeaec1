from datetime import date

from pydantic import dataclasses


@dataclasses.dataclass(frozen=True)
class ProductSnapshot:
    """Read-only view of a product as seen by the stock and expiry scans.

    Attributes
    ----------
    id : int
        Product identifier.
    name : str
        Display name.
    stock : int
        Units currently in stock.
    reorder_level : int | None, optional
        Stock level at which the product should be reordered.
    expiry_date : date | None, optional
        Expiry date of the stocked batch.
    category : str | None, optional
        Product category.
    """

    id: int
    name: str
    stock: int
    reorder_level: int | None = None
    expiry_date: date | None = None
    category: str | None = None
