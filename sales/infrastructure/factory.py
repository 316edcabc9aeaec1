from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_database_session

from .repositories import SaleSalesSource


async def get_sales_source(
    session: AsyncSession = Depends(get_database_session),
) -> SaleSalesSource:
    """Provide a SaleSalesSource bound to the request's database session."""
    return SaleSalesSource(session)
