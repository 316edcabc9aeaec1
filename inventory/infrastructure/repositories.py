from datetime import date, timedelta
from typing import List

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import and_, select

from notifications.domain.exceptions import PersistenceError

from ..application.ports import InventorySource
from ..domain.entities import ProductSnapshot
from .models import Product


class ProductInventorySource(InventorySource):
    """Database-backed `InventorySource` reading the product table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_stocked_products(self) -> List[ProductSnapshot]:
        query = (
            select(Product)
            .where(and_(Product.is_active == True, Product.stock > 0))  # noqa: E712
            .order_by(Product.stock.asc())
        )
        return await self._fetch(query)

    async def get_expiring_products(
        self, today: date, within_days: int
    ) -> List[ProductSnapshot]:
        query = (
            select(Product)
            .where(
                and_(
                    Product.is_active == True,  # noqa: E712
                    Product.stock > 0,
                    Product.expiry_date.is_not(None),
                    Product.expiry_date >= today,
                    Product.expiry_date <= today + timedelta(days=within_days),
                )
            )
            .order_by(Product.expiry_date.asc())
        )
        return await self._fetch(query)

    async def _fetch(self, query) -> List[ProductSnapshot]:
        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"📝 Product query failed: {type(e).__name__}")
            raise PersistenceError("Could not read products") from e

        return [self._to_domain_model(product) for product in result.scalars().all()]

    def _to_domain_model(self, product: Product) -> ProductSnapshot:
        return ProductSnapshot(
            id=product.id,
            name=product.name,
            stock=product.stock,
            reorder_level=product.reorder_level,
            expiry_date=product.expiry_date,
            category=product.category,
        )
