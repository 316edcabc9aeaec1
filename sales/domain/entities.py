from datetime import date

from pydantic import dataclasses


@dataclasses.dataclass(frozen=True)
class SalesTotals:
    """Aggregated sales of a reporting period.

    Attributes
    ----------
    first_day : date
        First day of the period.
    last_day : date
        Last day of the period, inclusive.
    transaction_count : int
        Number of completed sales.
    total_revenue : float
        Sum of the sale totals.
    """

    first_day: date
    last_day: date
    transaction_count: int = 0
    total_revenue: float = 0.0
