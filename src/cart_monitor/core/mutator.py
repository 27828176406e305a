"""Select one variant on a product page and add it to the cart."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

from cart_monitor.core.human import HumanPacer
from cart_monitor.exceptions import (
    AuthExpiredError,
    ConfirmationTimeoutError,
    NavigationTimeoutError,
    OutOfStockError,
    SelectorNotFoundError,
    SkuAddError,
    StaleControlError,
)
from cart_monitor.models.results import FailureKind, SkuAddResult
from cart_monitor.utils.config import CartSettings
from cart_monitor.utils.constants import (
    ADD_CART_SUCCESS_PATTERN,
    AUTH_BODY_PATTERN,
    CONFIRMATION_POLL_INTERVAL,
    INCOMPLETE_SELECTION_PATTERN,
    OUT_OF_STOCK_PATTERN,
    PRICE_MAX_POLLS,
    PRICE_POLL_INTERVAL,
    PRICE_STABLE_ROUNDS,
    SELECTION_APPLY_TIMEOUT,
    SELECTION_CLICK_ATTEMPTS,
    THROTTLED_PATTERN,
    UNAVAILABLE_PATTERN,
)
from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    from cart_monitor.core.browser import BrowserManager, Page
    from cart_monitor.models.results import SkuOption, SkuSelection

logger = get_logger(__name__)


# =============================================================================
# Selectors
# =============================================================================

VALUE_ID_ATTRS = ("data-vid", "data-value", "data-id", "data-sku-value")

ADD_CART_SELECTORS = (
    '[class*="btnItem"]:has([class*="icon-taobaojiarugouwuche"])',
    ".addcart-btn",
    ".add-cart-btn",
    'button[class*="AddCart"]',
    "#J_LinkBasket",
    '#tbpcDetail_SkuPanelFoot [class*="btnItem"]:first-child',
)
ADD_CART_TEXT = "加入购物车"

MINI_CART_SELECTORS = ("#J_MiniCartNum", '[id*="MiniCartNum"]')

PRICE_SELECTORS = (
    '[class*="highlightPrice"] [class*="text"]',
    '[class*="priceText"]',
    "#J_PromoPriceNum",
    ".tb-rmb-num",
)

FEEDBACK_SELECTORS = (
    '[class*="toast"]',
    '[class*="Toast"]',
    '[class*="message"]',
    '[class*="Message"]',
    '[role="alert"]',
    '[class*="dialog"]',
    '[class*="Dialog"]',
    '[id*="SkuPanel"]',
)


def _css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def option_selectors(option: SkuOption) -> list[str]:
    """Candidate selectors for an option, most specific first."""
    if not option.value_id:
        return []
    value = _css_string(option.value_id)
    return [f'[{attr}="{value}"]' for attr in VALUE_ID_ATTRS]


_OPTION_STATE_JS = """
(() => {
  const selectors = %(selectors)s;
  const name = %(name)s;
  let el = null;
  for (const sel of selectors) {
    el = document.querySelector(sel);
    if (el) break;
  }
  if (!el && name) {
    const panel = document.querySelector('[id*="SkuPanel"]') || document;
    for (const cand of panel.querySelectorAll('[data-vid], [data-value], li, span')) {
      const label = (cand.getAttribute('title') || cand.textContent || '').trim();
      if (label === name) { el = cand; break; }
    }
  }
  if (!el) return null;
  const cls = String(el.getAttribute('class') || '');
  if (el.getAttribute('data-disabled') === 'true' || el.hasAttribute('disabled')
      || /disabled|invalid|soldout|out-of-stock/i.test(cls)) return 'disabled';
  if (el.getAttribute('aria-checked') === 'true' || el.getAttribute('aria-selected') === 'true'
      || el.getAttribute('data-selected') === 'true'
      || /selected|active|checked|isSelected|chosen|current/i.test(cls)) return 'selected';
  return 'available';
})()
"""

_ADD_BUTTON_STATE_JS = """
(() => {
  const selectors = %(selectors)s;
  let el = null;
  for (const sel of selectors) {
    try { el = document.querySelector(sel); } catch (e) { el = null; }
    if (el) break;
  }
  if (!el) {
    for (const cand of document.querySelectorAll('button, a, div[class*="btn"], span[class*="btn"]')) {
      if ((cand.textContent || '').trim() === %(text)s) { el = cand; break; }
    }
  }
  if (!el) return null;
  const cls = String(el.getAttribute('class') || '');
  if (el.hasAttribute('disabled') || el.getAttribute('aria-disabled') === 'true'
      || /disabled/i.test(cls)) return 'disabled';
  return 'enabled';
})()
"""

_FIRST_TEXT_JS = """
(() => {
  for (const sel of %(selectors)s) {
    const el = document.querySelector(sel);
    if (el && el.textContent && el.textContent.trim()) return el.textContent.trim();
  }
  return null;
})()
"""

_FEEDBACK_TEXT_JS = """
(() => {
  const parts = [];
  for (const el of document.querySelectorAll(%(selectors)s)) {
    const text = (el.innerText || '').trim();
    if (text) parts.push(text.slice(0, 400));
  }
  return parts.join('\\n').slice(0, 4000);
})()
"""


class CartMutator:
    """
    Drives one variant through option selection, add-to-cart and confirmation.

    Calls against the same page must be serialized by the caller.
    """

    def __init__(
        self,
        browser: BrowserManager,
        settings: CartSettings | None = None,
        pacer: HumanPacer | None = None,
    ) -> None:
        self.browser = browser
        self.settings = settings or CartSettings()
        self.pacer = pacer or browser.pacer or HumanPacer()

    # =========================================================================
    # Public API
    # =========================================================================

    async def add_sku_to_cart(
        self,
        page: Page,
        selection: SkuSelection,
        product_url: str | None = None,
    ) -> SkuAddResult:
        """
        Add one variant, retrying stale controls and timeouts.

        Out-of-stock and unconfirmed clicks are never retried; a second click
        after an unconfirmed one could add the variant twice.

        Raises:
            AuthExpiredError: Page turned into a login or challenge page
        """
        sku = selection.display
        max_attempts = self.settings.max_attempts
        last_kind = FailureKind.UNKNOWN
        last_detail = ""

        for attempt in range(1, max_attempts + 1):
            try:
                await self._attempt(page, selection)
                logger.info("Variant added to cart", sku=sku, attempt=attempt)
                return SkuAddResult(sku_properties=sku, success=True)
            except AuthExpiredError:
                raise
            except SkuAddError as e:
                if not e.retryable:
                    logger.warning(
                        "Variant add failed", sku=sku, error=e.kind.value, detail=str(e)
                    )
                    return SkuAddResult(sku, False, error=e.kind, detail=str(e))
                last_kind, last_detail = e.kind, str(e)
            except NavigationTimeoutError as e:
                last_kind, last_detail = FailureKind.NAVIGATION_TIMEOUT, str(e)
            except Exception as e:
                # CDP protocol errors and detached nodes end this variant only
                logger.error("Unexpected error adding variant", sku=sku, error=str(e))
                return SkuAddResult(sku, False, error=FailureKind.UNKNOWN, detail=str(e))

            if attempt < max_attempts:
                logger.warning(
                    f"Retrying variant (attempt {attempt}/{max_attempts})",
                    sku=sku,
                    error=last_kind.value,
                    detail=last_detail,
                )
                if product_url:
                    try:
                        await self.browser.goto(page, product_url)
                    except NavigationTimeoutError as e:
                        last_kind, last_detail = FailureKind.NAVIGATION_TIMEOUT, str(e)

        logger.warning("Variant add exhausted retries", sku=sku, error=last_kind.value)
        return SkuAddResult(sku, False, error=last_kind, detail=last_detail)

    # =========================================================================
    # One attempt
    # =========================================================================

    async def _attempt(self, page: Page, selection: SkuSelection) -> None:
        await self.browser.ensure_authenticated(page)
        await page.evaluate("window.scrollTo(0, 0)")
        await self.browser.dismiss_overlays(page)

        for index, option in enumerate(selection.options):
            if index:
                await self.pacer.between_options()
            await self._select_option(page, option)
        if selection.options:
            await self._wait_price_stable(page)

        state = await self._add_button_state(page)
        if state is None:
            raise SelectorNotFoundError("Add-to-cart control not found")
        if state == "disabled":
            raise StaleControlError("Add-to-cart control is disabled")

        before = await self._cart_count(page)
        await self.pacer.before_click()
        await self._click_add(page)

        if await self._wait_confirmation(page, before):
            return

        text = await self._feedback_text(page)
        if OUT_OF_STOCK_PATTERN.search(text):
            raise OutOfStockError("Page reports the variant as out of stock")
        if AUTH_BODY_PATTERN.search(text):
            raise AuthExpiredError("Add-to-cart answered with a login prompt")
        if INCOMPLETE_SELECTION_PATTERN.search(text):
            raise StaleControlError("Page reports an incomplete selection")
        if THROTTLED_PATTERN.search(text):
            raise ConfirmationTimeoutError("No confirmation; site reports throttling")
        if UNAVAILABLE_PATTERN.search(text):
            raise ConfirmationTimeoutError("No confirmation; item reported unavailable")
        raise ConfirmationTimeoutError(
            f"No confirmation within {self.settings.confirmation_timeout_ms}ms"
        )

    async def _select_option(self, page: Page, option: SkuOption) -> None:
        label = f"{option.prop_name}:{option.value_name}"
        state = await self._option_state(page, option)
        if state is None:
            raise SelectorNotFoundError(f"Option {label} not found")
        if state == "selected":
            logger.debug("Option already selected", option=label)
            return
        if state == "disabled":
            raise OutOfStockError(f"Option {label} is disabled")

        for click in range(SELECTION_CLICK_ATTEMPTS):
            await self.pacer.before_click()
            await self._click_option(page, option)
            if await self._wait_selected(page, option):
                logger.debug("Option selected", option=label, clicks=click + 1)
                return

        logger.warning("Option never reported a selected state", option=label)

    async def _wait_selected(self, page: Page, option: SkuOption) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + SELECTION_APPLY_TIMEOUT / 1000
        while True:
            state = await self._option_state(page, option)
            if state == "selected":
                return True
            if state == "disabled":
                raise OutOfStockError(
                    f"Option {option.prop_name}:{option.value_name} became disabled"
                )
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(PRICE_POLL_INTERVAL)

    async def _wait_confirmation(self, page: Page, before: int | None) -> bool:
        """Poll for a counter increment or a success toast."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.confirmation_timeout_ms / 1000
        while True:
            count = await self._cart_count(page)
            if before is not None and count is not None and count > before:
                logger.debug("Cart counter incremented", before=before, after=count)
                return True
            if ADD_CART_SUCCESS_PATTERN.search(await self._feedback_text(page)):
                logger.debug("Success toast seen")
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(CONFIRMATION_POLL_INTERVAL)

    # =========================================================================
    # DOM reads
    # =========================================================================

    async def _option_state(self, page: Page, option: SkuOption) -> str | None:
        """``selected``, ``disabled``, ``available`` or None when not found."""
        script = _OPTION_STATE_JS % {
            "selectors": json.dumps(option_selectors(option)),
            "name": json.dumps(option.value_name),
        }
        state = await page.evaluate(script)
        return state if isinstance(state, str) else None

    async def _click_option(self, page: Page, option: SkuOption) -> None:
        element = None
        for selector in option_selectors(option):
            element = await page.query_selector(selector)
            if element is not None:
                break
        if element is None:
            try:
                element = await page.find(option.value_name, best_match=True, timeout=2)
            except asyncio.TimeoutError:
                element = None
        if element is None:
            raise SelectorNotFoundError(
                f"Option {option.prop_name}:{option.value_name} not clickable"
            )
        await element.scroll_into_view()
        await element.mouse_move()
        await element.click()

    async def _wait_price_stable(self, page: Page) -> None:
        script = _FIRST_TEXT_JS % {"selectors": json.dumps(list(PRICE_SELECTORS))}
        previous = None
        stable = 0
        for _ in range(PRICE_MAX_POLLS):
            current = await page.evaluate(script)
            if current is not None and current == previous:
                stable += 1
                if stable >= PRICE_STABLE_ROUNDS:
                    return
            else:
                stable = 0
            previous = current
            await asyncio.sleep(PRICE_POLL_INTERVAL)

    async def _add_button_state(self, page: Page) -> str | None:
        """``enabled``, ``disabled`` or None when no control is found."""
        script = _ADD_BUTTON_STATE_JS % {
            "selectors": json.dumps(list(ADD_CART_SELECTORS)),
            "text": json.dumps(ADD_CART_TEXT),
        }
        state = await page.evaluate(script)
        return state if isinstance(state, str) else None

    async def _click_add(self, page: Page) -> None:
        element = None
        for selector in ADD_CART_SELECTORS:
            try:
                element = await page.query_selector(selector)
            except Exception:
                # :has() is not supported by every DOM.querySelector backend
                element = None
            if element is not None:
                break
        if element is None:
            try:
                element = await page.find(ADD_CART_TEXT, best_match=True, timeout=2)
            except asyncio.TimeoutError:
                element = None
        if element is None:
            raise StaleControlError("Add-to-cart control disappeared before click")
        await element.mouse_move()
        await element.click()

    async def _cart_count(self, page: Page) -> int | None:
        script = _FIRST_TEXT_JS % {"selectors": json.dumps(list(MINI_CART_SELECTORS))}
        text = await page.evaluate(script)
        if not isinstance(text, str):
            return None
        digits = "".join(ch for ch in text if ch.isdigit())
        return int(digits) if digits else None

    async def _feedback_text(self, page: Page) -> str:
        script = _FEEDBACK_TEXT_JS % {
            "selectors": json.dumps(", ".join(FEEDBACK_SELECTORS)),
        }
        text = await page.evaluate(script)
        return text if isinstance(text, str) else ""
