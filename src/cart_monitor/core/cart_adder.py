"""Add every purchasable variant of a product to an account's cart."""

from __future__ import annotations

import asyncio
import inspect
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from cart_monitor.core.aggregator import ResultAggregator
from cart_monitor.core.human import HumanPacer
from cart_monitor.core.mutator import CartMutator
from cart_monitor.exceptions import ConfigurationError, NavigationTimeoutError
from cart_monitor.extractors.cart import CartExtractor
from cart_monitor.extractors.sku import SkuEnumerator
from cart_monitor.models.results import (
    Account,
    CartAddAllResult,
    FailureKind,
    ProductRow,
    ProgressEvent,
    SkuAddResult,
    SkuSelection,
)
from cart_monitor.utils.config import Settings, get_settings
from cart_monitor.utils.constants import BASE_SKU_ID, ITEM_URL_TEMPLATE
from cart_monitor.utils.logging import bound_context, get_logger
from cart_monitor.utils.parsers import clean_text, normalize_sku_properties


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from cart_monitor.core.browser import BrowserManager, Page
    from cart_monitor.core.session import SessionManager
    from cart_monitor.extractors.sku import SkuEnumeration
    from cart_monitor.storage.base import ProductRepository

logger = get_logger(__name__)


@dataclass
class AddAllOptions:
    """Per-call options of an add-all batch."""

    # Advisory only: an attached browser keeps whatever mode it was started in
    headless: bool = True
    deadline_seconds: float | None = None
    skip_existing: bool = False
    single_sku_fallback: bool = False
    on_progress: Callable[[ProgressEvent], Awaitable[None] | None] | None = None


_PROPERTY_SPLIT_RE = re.compile(r"[;；\s]+")
_LABEL_SEPARATOR_RE = re.compile(r"[:：]")


def cart_line_values(sku_properties: str) -> set[str]:
    """Whole property values of a cart line, e.g. ``{"红色", "XL"}``."""
    values = set()
    for part in _PROPERTY_SPLIT_RE.split(sku_properties or ""):
        value = _LABEL_SEPARATOR_RE.split(part)[-1].strip()
        if value:
            values.add(value)
    return values


def selection_in_cart(selection: SkuSelection, cart_properties: list[str]) -> bool:
    """
    Whether a cart line already holds this variant.

    Cart lines render their labels differently from the product page, so a
    line matches when it normalizes to the same string or when each selected
    value equals one of the line's values. Values are compared whole:
    ``L`` never matches ``XL``.
    """
    if selection.is_default:
        return False
    wanted = normalize_sku_properties(selection.display)
    names = [clean_text(opt.value_name) for opt in selection.options]
    for raw in cart_properties:
        existing = normalize_sku_properties(raw)
        if not existing:
            continue
        if existing == wanted:
            return True
        values = cart_line_values(raw)
        if all(name and name in values for name in names):
            return True
    return False


class CartAdder:
    """
    Runs one add-all batch for an account under its session lock.

    Variants are added strictly one after another on a single page, in the
    order the enumerator produced them. The overall deadline stops new adds;
    variants not attempted in time are reported as ``Timeout``.
    """

    def __init__(
        self,
        browser: BrowserManager,
        sessions: SessionManager,
        settings: Settings | None = None,
        repository: ProductRepository | None = None,
        enumerator: SkuEnumerator | None = None,
        mutator: CartMutator | None = None,
        cart_reader: CartExtractor | None = None,
        pacer: HumanPacer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.browser = browser
        self.sessions = sessions
        self.repository = repository
        self.pacer = pacer or HumanPacer(self.settings.pacing)
        self.enumerator = enumerator or SkuEnumerator(browser)
        self.mutator = mutator or CartMutator(browser, self.settings.cart, self.pacer)
        self.cart_reader = cart_reader or CartExtractor(browser)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def add_all_skus_to_cart(
        self,
        account: Account | str,
        product_id: str,
        cookies: Any,
        options: AddAllOptions | None = None,
    ) -> CartAddAllResult:
        """
        Add all enumerated variants of ``product_id`` to the account's cart.

        Args:
            account: Account record or its id
            product_id: Marketplace product id
            cookies: Cookie jar in any form ``parse_cookie_jar`` accepts
            options: Batch options

        Returns:
            Report whose counts always add up, even when the deadline hits

        Raises:
            BrowserConnectionError: Browser endpoint unreachable
            AuthExpiredError: Cookies rejected; remaining variants are abandoned
            AccountBusyError: Account held by another flow in reject mode
            NavigationTimeoutError: Deadline passed before variants were known
            ConfigurationError: Deadline is not a positive number of seconds
        """
        account_id = account.id if isinstance(account, Account) else account
        options = options or AddAllOptions()
        if not options.headless:
            logger.debug("Headless flag ignored for an attached browser")

        budget = options.deadline_seconds
        if budget is None:
            budget = self.settings.cart.deadline_seconds
        if budget <= 0:
            raise ConfigurationError(f"Deadline must be positive, got {budget}s")
        # The clock starts at the call: waiting for the account and opening the
        # page count against the deadline
        deadline_at = asyncio.get_running_loop().time() + budget

        async with self.sessions.hold(account_id):
            with bound_context(product_id=product_id):
                async with self.browser.acquire_authenticated_page(cookies, account_id) as page:
                    return await self._run(page, account_id, product_id, options, deadline_at)

    async def _run(
        self,
        page: Page,
        account_id: str,
        product_id: str,
        options: AddAllOptions,
        deadline_at: float,
    ) -> CartAddAllResult:
        loop = asyncio.get_running_loop()
        remaining = deadline_at - loop.time()
        if remaining <= 0:
            raise NavigationTimeoutError("Deadline passed while opening the product session")

        try:
            existing, enumeration = await asyncio.wait_for(
                self._prepare(page, product_id, options),
                timeout=remaining,
            )
        except asyncio.TimeoutError as e:
            raise NavigationTimeoutError(
                "Deadline passed before variants were enumerated"
            ) from e

        selections = list(enumeration.selections)
        if not selections:
            if enumeration.unknown_structure and options.single_sku_fallback:
                logger.info("Falling back to single variant add")
                selections = [SkuSelection()]
            else:
                logger.info("No variants to add", unknown_structure=enumeration.unknown_structure)
                return ResultAggregator().build()

        product_url = enumeration.product.url or ITEM_URL_TEMPLATE.format(
            product_id=product_id
        )
        aggregator = ResultAggregator()
        total = len(selections)
        pending_pause = False

        for index, selection in enumerate(selections):
            if existing and selection_in_cart(selection, existing):
                logger.info("Variant already in cart, skipped", sku=selection.display)
                await self._record(
                    aggregator,
                    SkuAddResult(selection.display, True, skipped=True),
                    index,
                    total,
                    options,
                )
                continue

            if pending_pause:
                remaining = deadline_at - loop.time()
                if remaining <= 0:
                    break
                try:
                    await asyncio.wait_for(self.pacer.between_skus(), timeout=remaining)
                except asyncio.TimeoutError:
                    break

            remaining = deadline_at - loop.time()
            if remaining <= 0:
                break
            try:
                result = await asyncio.wait_for(
                    self.mutator.add_sku_to_cart(page, selection, product_url),
                    timeout=remaining,
                )
            except asyncio.TimeoutError:
                result = SkuAddResult(
                    selection.display,
                    False,
                    error=FailureKind.TIMEOUT,
                    detail="Deadline exceeded during add",
                )
                await self._record(aggregator, result, index, total, options)
                break

            await self._record(aggregator, result, index, total, options)
            pending_pause = True

        for index in range(len(aggregator), total):
            await self._record(
                aggregator,
                SkuAddResult(
                    selections[index].display,
                    False,
                    error=FailureKind.TIMEOUT,
                    detail="Not attempted before deadline",
                ),
                index,
                total,
                options,
            )

        report = aggregator.build()
        logger.info(
            "Add-all batch finished",
            total=report.total_skus,
            success=report.success_count,
            failed=report.failed_count,
        )
        await self._persist(account_id, enumeration, report)
        return report

    async def _prepare(
        self,
        page: Page,
        product_id: str,
        options: AddAllOptions,
    ) -> tuple[list[str], SkuEnumeration]:
        existing: list[str] = []
        if options.skip_existing:
            readout = await self.cart_reader.read(page)
            existing = [
                item.sku_properties
                for item in readout.items
                if item.product_id == product_id and item.sku_properties
            ]
            logger.info("Cart precheck done", existing_variants=len(existing))

        enumeration = await self.enumerator.enumerate(page, product_id)
        return existing, enumeration

    async def _record(
        self,
        aggregator: ResultAggregator,
        result: SkuAddResult,
        index: int,
        total: int,
        options: AddAllOptions,
    ) -> None:
        aggregator.add(result)
        if options.on_progress is None:
            return
        outcome = options.on_progress(ProgressEvent(index=index + 1, total=total, result=result))
        if inspect.isawaitable(outcome):
            await outcome

    async def _persist(
        self,
        account_id: str,
        enumeration: SkuEnumeration,
        report: CartAddAllResult,
    ) -> None:
        """Record the product base row once at least one variant is in the cart."""
        if self.repository is None or report.success_count == 0:
            return

        product = enumeration.product
        row = ProductRow(
            product_id=product.product_id,
            sku_id=BASE_SKU_ID,
            owner_account_id=account_id,
            url=product.url,
            title=product.title,
            image=product.image,
            price=product.price,
            last_seen=self._clock(),
            variants=[
                {"skuProperties": r.sku_properties, "skipped": r.skipped}
                for r in report.results
                if r.success
            ],
        )
        try:
            await self.repository.upsert_products([row])
        except Exception as e:
            logger.error(
                "Failed to record product after batch",
                product_id=product.product_id,
                error=str(e),
            )
