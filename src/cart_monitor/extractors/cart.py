"""Cart listing extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bs4 import Tag

from cart_monitor.extractors.base import BaseExtractor, PageSnapshot, Strategy, StrategyChain
from cart_monitor.models.results import CartLineItem
from cart_monitor.utils.constants import CART_URL
from cart_monitor.utils.logging import get_logger
from cart_monitor.utils.parsers import (
    absolute_url,
    clean_text,
    parse_int,
    parse_price,
    parse_split_price,
    query_param,
)


if TYPE_CHECKING:
    from cart_monitor.core.browser import BrowserManager, Page

logger = get_logger(__name__)

EMPTY_CART_PATTERN = re.compile(r"购物车竟然是空的|购物车空空如也|购物车还是空的|您的购物车是空的")
_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.IGNORECASE)

ITEM_LINK_SELECTOR = 'a[href*="item.taobao.com"], a[href*="detail.tmall.com"]'

TITLE_SELECTORS = ('a[class*="title--"]', '[class*="title"] a', "a[title]")
IMAGE_SELECTORS = ('img[class*="image--"]', "img")
PRICE_CONTAINER_SELECTOR = ".trade-cart-item-price .trade-price-container"
PRICE_FALLBACK_SELECTORS = ('[class*="price"]', '[class*="Price"]')
SKU_LABEL_SELECTORS = (
    '.trade-cart-item-sku-old [class*="label--"]',
    '[class*="sku"] [class*="label"]',
)
QUANTITY_SELECTORS = (
    '[class*="quantity"] input',
    'input[class*="quantity"]',
    'input[type="text"]',
)


@dataclass
class CartReadout:
    """Result of parsing one cart page."""

    items: list[CartLineItem] = field(default_factory=list)
    strategy: str | None = None
    empty: bool = False
    hidden: int = 0
    # Visible lines matched by the strategy but carrying no product id
    dropped: int = 0

    @property
    def recognized(self) -> bool:
        if self.empty:
            return True
        if self.strategy is None:
            return False
        # Lines that are all unreadable mean the item links drifted
        return bool(self.items) or not self.dropped


# =============================================================================
# Line item strategies
# =============================================================================


def _outermost(nodes: list[Tag]) -> list[Tag]:
    ids = {id(n) for n in nodes}
    return [n for n in nodes if not any(id(p) in ids for p in n.parents)]


def trade_cart_item_info(snapshot: PageSnapshot) -> list[Tag] | None:
    return snapshot.select(".trade-cart-item-info") or None


def cart_item_class(snapshot: PageSnapshot) -> list[Tag] | None:
    nodes = snapshot.select('[class*="cartItem"], [class*="item-content"], [data-item-id]')
    nodes = [n for n in _outermost(nodes) if n.select_one(ITEM_LINK_SELECTOR) is not None]
    return nodes or None


LINE_ITEM_CHAIN: StrategyChain[list[Tag]] = StrategyChain(
    "cart_line_item",
    [
        Strategy("trade_cart_item_info", trade_cart_item_info),
        Strategy("cart_item_class", cart_item_class),
    ],
)


# =============================================================================
# Field helpers
# =============================================================================


def is_hidden(node: Tag) -> bool:
    """Whether the node or an ancestor is hidden with inline style or attribute."""
    for current in [node, *node.parents]:
        if not isinstance(current, Tag):
            continue
        if current.has_attr("hidden"):
            return True
        style = current.get("style")
        if isinstance(style, str) and _HIDDEN_STYLE_RE.search(style):
            return True
    return False


def _first_text(item: Tag, selectors: tuple[str, ...]) -> str | None:
    for selector in selectors:
        for node in item.select(selector):
            text = clean_text(node.get_text(" ")) or clean_text(node.get("title"))
            if text:
                return text
    return None


def _prices(item: Tag) -> tuple[float | None, float | None]:
    containers = item.select(PRICE_CONTAINER_SELECTOR)
    if containers:
        found = []
        for container in containers[:2]:
            integer = container.select_one(".trade-price-integer")
            decimal = container.select_one(".trade-price-decimal")
            found.append(
                parse_split_price(
                    integer.get_text() if integer else None,
                    decimal.get_text() if decimal else None,
                )
            )
        final = found[0]
        original = found[1] if len(found) > 1 else None
        return final, original

    return parse_price(_first_text(item, PRICE_FALLBACK_SELECTORS)), None


def _sku_properties(item: Tag) -> str:
    for selector in SKU_LABEL_SELECTORS:
        labels = [clean_text(n.get_text(" ")) for n in item.select(selector)]
        labels = [label for label in labels if label]
        if labels:
            return " ".join(labels)
    return ""


def _quantity(item: Tag) -> int:
    for selector in QUANTITY_SELECTORS:
        node = item.select_one(selector)
        if node is not None:
            value = node.get("value")
            if isinstance(value, str) and value.strip():
                return max(parse_int(value, default=1), 1)
    return 1


def parse_line_item(item: Tag) -> CartLineItem | None:
    """Read one cart line; lines whose link carries no product id are dropped."""
    link_node = item.select_one(ITEM_LINK_SELECTOR)
    href = link_node.get("href") if link_node is not None else None
    link = absolute_url(href) if isinstance(href, str) else None
    product_id = query_param(link, "id")
    if not product_id:
        return None

    image_src = None
    for selector in IMAGE_SELECTORS:
        img = item.select_one(selector)
        if img is not None and isinstance(img.get("src"), str):
            image_src = img.get("src")
            break

    price, original_price = _prices(item)
    return CartLineItem(
        product_id=product_id,
        sku_id=query_param(link, "skuId"),
        title=_first_text(item, TITLE_SELECTORS),
        price=price,
        original_price=original_price,
        sku_properties=_sku_properties(item),
        quantity=_quantity(item),
        link=link,
        image=absolute_url(image_src),
    )


class CartExtractor(BaseExtractor):
    """Reads the visible cart listing into line items."""

    def __init__(self, browser: BrowserManager | None = None) -> None:
        self.browser = browser

    async def settle(self, page: Page) -> None:
        if self.browser is None:
            return
        await self.browser.pacer.random_delay(1.2, 2.4)
        await self.browser.dismiss_overlays(page)
        await self.browser.scroll_page(page, scroll_count=2)
        await page.evaluate("window.scrollTo(0, 0)")

    async def read(self, page: Page) -> CartReadout:
        """Navigate to the cart and parse it."""
        snapshot = await self.load(page, CART_URL)
        readout = self.parse(snapshot)
        logger.info(
            "Cart read",
            items=len(readout.items),
            hidden=readout.hidden,
            dropped=readout.dropped,
            empty=readout.empty,
            strategy=readout.strategy,
        )
        return readout

    def parse(self, snapshot: PageSnapshot) -> CartReadout:
        match = LINE_ITEM_CHAIN.run(snapshot)
        if match is None:
            empty = bool(EMPTY_CART_PATTERN.search(snapshot.text())) or any(
                "购物车" in clean_text(n.get_text(" "))
                for n in snapshot.select('[class*="empty"], [class*="Empty"]')
            )
            return CartReadout(empty=empty)

        readout = CartReadout(strategy=match.strategy)
        for node in match.value:
            if is_hidden(node):
                readout.hidden += 1
                continue
            item = parse_line_item(node)
            if item is None:
                readout.dropped += 1
                continue
            readout.items.append(item)
        if readout.dropped:
            logger.warning(
                "Cart lines without a product id",
                dropped=readout.dropped,
                strategy=readout.strategy,
            )
        return readout
