from abc import ABC, abstractmethod
from datetime import date

from ..domain.entities import SalesTotals


class SalesSource(ABC):
    """Abstract read interface over completed sales."""

    @abstractmethod
    async def get_sales_totals(self, first_day: date, last_day: date) -> SalesTotals:
        """Totals of the sales made between two UTC calendar days, both inclusive."""
        pass
