"""SQLAlchemy implementation of the product repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from cart_monitor.models.results import ProductKey, ProductRow
from cart_monitor.storage.base import ProductRepository
from cart_monitor.storage.database import get_session, session_scope
from cart_monitor.storage.models import Product
from cart_monitor.utils.constants import BASE_SKU_ID, MONITOR_MODE_CART
from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Sequence
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


logger = get_logger(__name__)

# Columns refreshed from a newer observation when the new value is known
_OBSERVED_FIELDS = (
    "url",
    "title",
    "image",
    "price",
    "original_price",
    "sku_properties",
    "quantity",
    "variants",
)


def dedupe_rows(rows: Sequence[ProductRow]) -> list[ProductRow]:
    """Keep the first row for every key, preserving order."""
    seen: set[ProductKey] = set()
    unique: list[ProductRow] = []
    for row in rows:
        if row.key in seen:
            continue
        seen.add(row.key)
        unique.append(row)
    return unique


def to_row(record: Product) -> ProductRow:
    """Convert an ORM record into the boundary dataclass."""
    return ProductRow(
        product_id=record.product_id,
        sku_id=record.sku_id,
        owner_account_id=record.owner_account_id,
        monitor_mode=record.monitor_mode,
        url=record.url,
        title=record.title,
        image=record.image,
        price=record.price,
        original_price=record.original_price,
        sku_properties=record.sku_properties,
        quantity=record.quantity,
        is_active=record.is_active,
        last_error=record.last_error,
        last_seen=record.last_seen,
        variants=record.variants,
    )


def _new_record(row: ProductRow) -> Product:
    return Product(
        product_id=row.product_id,
        sku_id=row.sku_id,
        owner_account_id=row.owner_account_id,
        monitor_mode=row.monitor_mode,
        url=row.url,
        title=row.title,
        image=row.image,
        price=row.price,
        original_price=row.original_price,
        sku_properties=row.sku_properties,
        quantity=row.quantity,
        is_active=row.is_active,
        last_error=row.last_error,
        last_seen=row.last_seen,
        variants=row.variants,
    )


def _apply_observation(record: Product, row: ProductRow) -> None:
    # monitor_mode and is_active belong to the operator and are never
    # overwritten by an observation
    for name in _OBSERVED_FIELDS:
        value = getattr(row, name)
        if value is not None:
            setattr(record, name, value)
    record.last_error = row.last_error
    if row.last_seen is not None:
        record.last_seen = row.last_seen


class SqlAlchemyProductRepository(ProductRepository):
    """Product store backed by an async SQLAlchemy session."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """
        Initialize repository.

        Args:
            session_factory: Factory to open sessions from; the module-level
                engine from ``init_db`` is used when omitted
        """
        self._session_factory = session_factory

    def _session(self) -> AbstractAsyncContextManager[AsyncSession]:
        if self._session_factory is None:
            return get_session()
        return session_scope(self._session_factory)

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    async def _find(session: AsyncSession, key: ProductKey) -> Product | None:
        return await session.scalar(
            select(Product).where(
                Product.product_id == key.product_id,
                Product.sku_id == key.sku_id,
                Product.owner_account_id == key.owner_account_id,
            )
        )

    @staticmethod
    async def _monitored(
        session: AsyncSession,
        owner_account_id: str,
        monitor_mode: str,
    ) -> list[Product]:
        result = await session.scalars(
            select(Product)
            .where(
                Product.owner_account_id == owner_account_id,
                Product.monitor_mode == monitor_mode,
                Product.sku_id == BASE_SKU_ID,
                Product.is_active.is_(True),
            )
            .order_by(Product.id)
        )
        return list(result)

    async def get(self, key: ProductKey) -> ProductRow | None:
        async with self._session() as session:
            record = await self._find(session, key)
            return to_row(record) if record is not None else None

    async def list_monitored(
        self,
        owner_account_id: str,
        monitor_mode: str = MONITOR_MODE_CART,
    ) -> list[ProductRow]:
        async with self._session() as session:
            records = await self._monitored(session, owner_account_id, monitor_mode)
            return [to_row(r) for r in records]

    # =========================================================================
    # Writes
    # =========================================================================

    async def _upsert(self, session: AsyncSession, rows: Sequence[ProductRow]) -> int:
        inserted = 0
        unique = dedupe_rows(rows)
        for row in unique:
            record = await self._find(session, row.key)
            if record is None:
                session.add(_new_record(row))
                inserted += 1
            else:
                _apply_observation(record, row)
        await session.flush()
        logger.debug(
            "Products upserted",
            total=len(unique),
            inserted=inserted,
            updated=len(unique) - inserted,
        )
        return len(unique)

    async def _mark_missing(
        self,
        session: AsyncSession,
        owner_account_id: str,
        product_ids: Sequence[str],
        error: str,
    ) -> int:
        if not product_ids:
            return 0
        result = await session.scalars(
            select(Product).where(
                Product.owner_account_id == owner_account_id,
                Product.sku_id == BASE_SKU_ID,
                Product.product_id.in_(list(product_ids)),
            )
        )
        count = 0
        for record in result:
            record.last_error = error
            count += 1
        return count

    async def upsert_products(self, rows: Sequence[ProductRow]) -> int:
        async with self._session() as session:
            return await self._upsert(session, rows)

    async def mark_missing(
        self,
        owner_account_id: str,
        product_ids: Sequence[str],
        error: str,
    ) -> int:
        async with self._session() as session:
            return await self._mark_missing(session, owner_account_id, product_ids, error)

    async def apply_snapshot(
        self,
        owner_account_id: str,
        rows: Sequence[ProductRow],
        missing_error: str,
    ) -> list[str]:
        present = {row.product_id for row in rows}
        async with self._session() as session:
            monitored = await self._monitored(
                session, owner_account_id, MONITOR_MODE_CART
            )
            missing = [r.product_id for r in monitored if r.product_id not in present]
            await self._upsert(session, rows)
            await self._mark_missing(session, owner_account_id, missing, missing_error)

        logger.info(
            "Cart snapshot reconciled",
            account_id=owner_account_id,
            rows=len(rows),
            missing=len(missing),
        )
        return missing
