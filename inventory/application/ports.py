from abc import ABC, abstractmethod
from datetime import date
from typing import List

from ..domain.entities import ProductSnapshot


class InventorySource(ABC):
    """Abstract read interface over the product catalog."""

    @abstractmethod
    async def get_stocked_products(self) -> List[ProductSnapshot]:
        """Active products with at least one unit in stock."""
        pass

    @abstractmethod
    async def get_expiring_products(
        self, today: date, within_days: int
    ) -> List[ProductSnapshot]:
        """Stocked products expiring between `today` and `today + within_days`.

        Parameters
        ----------
        today : date
            First day of the window; already expired products are excluded.
        within_days : int
            Length of the window in days, inclusive.

        Returns
        -------
        List[ProductSnapshot]
            Products ordered by expiry date.
        """
        pass
