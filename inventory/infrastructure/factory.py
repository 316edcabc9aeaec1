from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_database_session

from .repositories import ProductInventorySource


async def get_inventory_source(
    session: AsyncSession = Depends(get_database_session),
) -> ProductInventorySource:
    """Provide a ProductInventorySource instance.

    Parameters
    ----------
    session : AsyncSession
        Asynchronous SQLAlchemy database session, injected as a dependency

    Returns
    -------
    ProductInventorySource
        Instance of ProductInventorySource
    """
    return ProductInventorySource(session)
