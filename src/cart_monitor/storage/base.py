"""Repository interface for persisted product state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from cart_monitor.utils.constants import MONITOR_MODE_CART


if TYPE_CHECKING:
    from collections.abc import Sequence

    from cart_monitor.models.results import ProductKey, ProductRow


class ProductRepository(ABC):
    """Transactional store keyed by (product_id, sku_id, owner_account_id)."""

    @abstractmethod
    async def upsert_products(self, rows: Sequence[ProductRow]) -> int:
        """Insert new keys, update existing ones; return rows written."""
        ...

    @abstractmethod
    async def mark_missing(
        self,
        owner_account_id: str,
        product_ids: Sequence[str],
        error: str,
    ) -> int:
        """Set ``last_error`` on the base rows of the given products."""
        ...

    @abstractmethod
    async def list_monitored(
        self,
        owner_account_id: str,
        monitor_mode: str = MONITOR_MODE_CART,
    ) -> list[ProductRow]:
        """Active base rows monitored for an account."""
        ...

    @abstractmethod
    async def get(self, key: ProductKey) -> ProductRow | None:
        """Load a single row by its unique key."""
        ...

    @abstractmethod
    async def apply_snapshot(
        self,
        owner_account_id: str,
        rows: Sequence[ProductRow],
        missing_error: str,
    ) -> list[str]:
        """
        Reconcile one cart read in a single transaction.

        Upserts ``rows`` and flags monitored products of the account that are
        absent from them.

        Returns:
            Product ids flagged as missing
        """
        ...
