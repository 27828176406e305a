"""Read the cart and reconcile it with persisted product rows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from cart_monitor.exceptions import CartStructureError
from cart_monitor.extractors.cart import LINE_ITEM_CHAIN, CartExtractor
from cart_monitor.models.results import Account, ProductRow, SnapshotReport
from cart_monitor.storage.repository import dedupe_rows
from cart_monitor.utils.constants import (
    BASE_SKU_ID,
    ITEM_URL_TEMPLATE,
    MISSING_IN_CART_ERROR,
)
from cart_monitor.utils.debug import DebugArtifactSink, NullDebugSink
from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable

    from cart_monitor.core.browser import BrowserManager
    from cart_monitor.core.session import SessionManager
    from cart_monitor.models.results import CartLineItem
    from cart_monitor.storage.base import ProductRepository

logger = get_logger(__name__)


def _min_positive(values: list[float | None]) -> float | None:
    prices = [v for v in values if v is not None and v > 0]
    return min(prices) if prices else None


def build_rows(
    owner_account_id: str,
    items: list[CartLineItem],
    seen_at: datetime,
) -> list[ProductRow]:
    """
    Turn cart lines into product rows.

    Every product gets a base row with the lowest line price and a snapshot of
    all its lines; lines that carry a sku id also get a row of their own.
    """
    grouped: dict[str, list[CartLineItem]] = {}
    for item in items:
        grouped.setdefault(item.product_id, []).append(item)

    rows: list[ProductRow] = []
    for product_id, lines in grouped.items():
        first = lines[0]
        rows.append(
            ProductRow(
                product_id=product_id,
                sku_id=BASE_SKU_ID,
                owner_account_id=owner_account_id,
                url=ITEM_URL_TEMPLATE.format(product_id=product_id),
                title=first.title,
                image=first.image,
                price=_min_positive([line.price for line in lines]),
                original_price=_min_positive([line.original_price for line in lines]),
                last_error=None,
                last_seen=seen_at,
                variants=[_variant_entry(line) for line in lines],
            )
        )
        for line in lines:
            if not line.sku_id:
                continue
            rows.append(
                ProductRow(
                    product_id=product_id,
                    sku_id=line.sku_id,
                    owner_account_id=owner_account_id,
                    url=line.link,
                    title=line.title,
                    image=line.image,
                    price=line.price,
                    original_price=line.original_price,
                    sku_properties=line.sku_properties or None,
                    quantity=line.quantity,
                    last_error=None,
                    last_seen=seen_at,
                )
            )
    return dedupe_rows(rows)


def _variant_entry(line: CartLineItem) -> dict[str, Any]:
    return {
        "skuId": line.sku_id,
        "skuProperties": line.sku_properties or None,
        "finalPrice": line.price,
        "originalPrice": line.original_price,
        "quantity": line.quantity,
        "thumbnailUrl": line.image,
    }


class CartSnapshotReader:
    """
    Re-scrapes an account's cart and writes what it saw in one transaction.

    The whole cart is read before anything is written, so a structural
    failure leaves persisted state untouched.
    """

    def __init__(
        self,
        browser: BrowserManager,
        sessions: SessionManager,
        repository: ProductRepository,
        extractor: CartExtractor | None = None,
        debug_sink: DebugArtifactSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.browser = browser
        self.sessions = sessions
        self.repository = repository
        self.extractor = extractor or CartExtractor(browser)
        self.debug_sink = debug_sink or NullDebugSink()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def update_prices_from_cart(
        self,
        account: Account | str,
        cookies: Any,
    ) -> SnapshotReport:
        """
        Read the cart and reconcile it with the product store.

        Raises:
            CartStructureError: No line item strategy matched a non-empty cart,
                or every matched line lost its product id
            AuthExpiredError: Cart redirected to login or a challenge
        """
        account_id = account.id if isinstance(account, Account) else account

        async with self.sessions.hold(account_id):
            async with self.browser.acquire_authenticated_page(cookies, account_id) as page:
                readout = await self.extractor.read(page)
                if not readout.recognized:
                    artifacts = await self._capture(page, account_id)
                    raise CartStructureError(
                        "Cart line items could not be located", artifacts=artifacts
                    )

            rows = build_rows(account_id, readout.items, self._clock())
            missing = await self.repository.apply_snapshot(
                account_id, rows, MISSING_IN_CART_ERROR
            )

        report = SnapshotReport(items=readout.items, upserted=len(rows), missing=missing)
        logger.info(
            "Cart snapshot complete",
            account_id=account_id,
            items=len(report.items),
            upserted=report.upserted,
            missing=len(report.missing),
        )
        return report

    async def _capture(self, page: Any, account_id: str) -> list[str]:
        logger.error("Cart structure not recognized", tried=LINE_ITEM_CHAIN.names)
        try:
            return await self.debug_sink.capture(
                page,
                f"cart_{account_id}",
                {"account_id": account_id, "strategies": LINE_ITEM_CHAIN.names},
            )
        except Exception as e:
            logger.warning("Debug artifact capture failed", error=str(e))
            return []
