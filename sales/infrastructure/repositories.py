from datetime import UTC, date, datetime, time, timedelta

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import and_, func, select

from notifications.domain.exceptions import PersistenceError

from ..application.ports import SalesSource
from ..domain.entities import SalesTotals
from .models import Sale


class SaleSalesSource(SalesSource):
    """Database-backed `SalesSource` aggregating the sale table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_sales_totals(self, first_day: date, last_day: date) -> SalesTotals:
        start = datetime.combine(first_day, time.min, tzinfo=UTC)
        end = datetime.combine(last_day + timedelta(days=1), time.min, tzinfo=UTC)
        query = select(
            func.count(Sale.id), func.coalesce(func.sum(Sale.total_amount), 0.0)
        ).where(and_(Sale.created_at >= start, Sale.created_at < end))

        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"📝 Sales query failed: {type(e).__name__}")
            raise PersistenceError("Could not read sales") from e

        transaction_count, total_revenue = result.one()
        return SalesTotals(
            first_day=first_day,
            last_day=last_day,
            transaction_count=transaction_count,
            total_revenue=round(float(total_revenue), 2),
        )
