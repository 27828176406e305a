"""Product page variant enumeration."""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bs4 import Tag

from cart_monitor.extractors.base import (
    BaseExtractor,
    PageSnapshot,
    Strategy,
    StrategyChain,
    css_attr,
    css_text,
)
from cart_monitor.models.results import ProductSummary, SkuOption, SkuSelection
from cart_monitor.utils.constants import (
    DISABLED_CLASS_PATTERN,
    ITEM_URL_TEMPLATE,
    MAX_PROPERTY_LABEL_LENGTH,
)
from cart_monitor.utils.logging import get_logger
from cart_monitor.utils.parsers import absolute_url, clean_text, parse_price


if TYPE_CHECKING:
    from cart_monitor.core.browser import BrowserManager, Page

logger = get_logger(__name__)


@dataclass
class SkuValue:
    value_id: str
    name: str
    disabled: bool = False
    image: str | None = None


@dataclass
class SkuProperty:
    name: str
    values: list[SkuValue] = field(default_factory=list)

    @property
    def enabled_values(self) -> list[SkuValue]:
        return [v for v in self.values if not v.disabled]


@dataclass
class SkuEnumeration:
    """Everything one read of a product page yields."""

    selections: list[SkuSelection]
    product: ProductSummary
    properties: list[SkuProperty] = field(default_factory=list)
    matched: dict[str, str] = field(default_factory=dict)
    unknown_structure: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.selections


# =============================================================================
# Variant container strategies
# =============================================================================

SKU_PANEL_SELECTOR = '[id*="SkuPanel"]'

GROUP_SELECTORS = (
    '[class*="propItem"]',
    '[class*="Property"]',
    '[class*="skuItem"]',
    '[class*="skuLine"]',
)

LABEL_SELECTORS = ('[class*="propName"]', '[class*="name"]', "dt", "label")


def _classes(node: Tag) -> str:
    value = node.get("class") or []
    return " ".join(value) if isinstance(value, list) else str(value)


def _is_disabled(node: Tag) -> bool:
    if node.get("data-disabled") == "true" or node.has_attr("disabled"):
        return True
    classes = _classes(node)
    return bool(DISABLED_CLASS_PATTERN.search(classes)) or "out-of-stock" in classes


def _inside_value(node: Tag, container: Tag) -> bool:
    if node.has_attr("data-vid"):
        return True
    for parent in node.parents:
        if parent is container:
            return False
        if isinstance(parent, Tag) and parent.has_attr("data-vid"):
            return True
    return False


def _property_label(container: Tag, index: int) -> str:
    for selector in LABEL_SELECTORS:
        for node in container.select(selector):
            if _inside_value(node, container):
                continue
            label = clean_text(node.get_text(" ")).rstrip(":：")
            if label and len(label) <= MAX_PROPERTY_LABEL_LENGTH:
                return label
            break
    return f"规格{index + 1}"


def _value_name(node: Tag) -> str:
    name = clean_text(node.get("title")) or clean_text(node.get_text(" "))
    if not name:
        img = node.find("img")
        if isinstance(img, Tag):
            name = clean_text(img.get("alt")) or clean_text(img.get("title"))
    return name


def _values_from(nodes: list[Tag], id_attr: str) -> list[SkuValue]:
    values: list[SkuValue] = []
    seen: set[str] = set()
    for node in nodes:
        value_id = clean_text(node.get(id_attr))
        name = _value_name(node)
        if not value_id or not name or value_id in seen:
            continue
        seen.add(value_id)
        img = node.find("img")
        image = absolute_url(img.get("src")) if isinstance(img, Tag) else None
        values.append(
            SkuValue(
                value_id=value_id,
                name=name,
                disabled=_is_disabled(node),
                image=image,
            )
        )
    return values


def _properties_from_groups(groups: list[Tag]) -> list[SkuProperty]:
    properties = []
    for index, group in enumerate(groups):
        values = _values_from(group.select("[data-vid]"), "data-vid")
        if values:
            properties.append(SkuProperty(_property_label(group, index), values))
    return properties


def _innermost(nodes: list[Tag]) -> list[Tag]:
    """Drop nodes that wrap another node of the same list."""
    ids = {id(n) for n in nodes}
    wrappers = set()
    for node in nodes:
        for parent in node.parents:
            if id(parent) in ids:
                wrappers.add(id(parent))
    return [n for n in nodes if id(n) not in wrappers]


def sku_panel_prop_items(snapshot: PageSnapshot) -> list[SkuProperty] | None:
    panel = snapshot.select_one(SKU_PANEL_SELECTOR)
    if panel is None:
        return None
    groups = [
        g for g in snapshot.select(", ".join(GROUP_SELECTORS), panel)
        if g.select_one("[data-vid]") is not None
    ]
    return _properties_from_groups(_innermost(groups))


def _closest_group(node: Tag, panel: Tag) -> Tag | None:
    for parent in node.parents:
        if parent is panel:
            break
        if not isinstance(parent, Tag):
            continue
        classes = _classes(parent)
        if "propItem" in classes or "Property" in classes or parent.name == "dl":
            return parent
    return node.parent if isinstance(node.parent, Tag) else None


def sku_panel_vid_groups(snapshot: PageSnapshot) -> list[SkuProperty] | None:
    panel = snapshot.select_one(SKU_PANEL_SELECTOR)
    if panel is None:
        return None
    groups: list[Tag] = []
    for item in snapshot.select("[data-vid]", panel):
        group = _closest_group(item, panel)
        if group is not None and all(group is not g for g in groups):
            groups.append(group)
    return _properties_from_groups(groups)


def legacy_sale_props(snapshot: PageSnapshot) -> list[SkuProperty] | None:
    lists = snapshot.select("ul.J_TSaleProp")
    if not lists:
        return None
    properties = []
    for index, ul in enumerate(lists):
        label = clean_text(ul.get("data-property"))
        if not label:
            dl = ul.find_parent("dl")
            dt = dl.find("dt") if isinstance(dl, Tag) else None
            label = clean_text(dt.get_text(" ")) if isinstance(dt, Tag) else ""
        if not label or len(label) > MAX_PROPERTY_LABEL_LENGTH:
            label = f"规格{index + 1}"
        values = _values_from(ul.select("li[data-value]"), "data-value")
        if values:
            properties.append(SkuProperty(label, values))
    return properties


def _embedded_json(script: str, key: str) -> Any:
    start = script.find(key)
    while start != -1:
        brace = script.find("{", start + len(key))
        if brace == -1:
            return None
        try:
            data, _ = json.JSONDecoder().raw_decode(script, brace)
            return data
        except json.JSONDecodeError:
            start = script.find(key, start + len(key))
    return None


def _truthy(value: Any) -> bool:
    return value is True or value == 1 or value == "true"


def embedded_sku_base(snapshot: PageSnapshot) -> list[SkuProperty] | None:
    for script in snapshot.select("script"):
        content = script.string or script.get_text()
        if "skuBase" not in content:
            continue
        data = _embedded_json(content, "skuBase")
        if not isinstance(data, dict):
            continue
        raw_props = data.get("props") or data.get("properties") or []
        properties = []
        for index, prop in enumerate(raw_props):
            name = clean_text(prop.get("name") or prop.get("propName"))
            if not name or len(name) > MAX_PROPERTY_LABEL_LENGTH:
                name = f"规格{index + 1}"
            values = []
            seen: set[str] = set()
            for raw in prop.get("values") or []:
                value_id = str(raw.get("vid") or raw.get("valueId") or raw.get("id") or "")
                value_name = clean_text(raw.get("name") or raw.get("valueName"))
                if not value_id or not value_name or value_id in seen:
                    continue
                seen.add(value_id)
                values.append(
                    SkuValue(
                        value_id=value_id,
                        name=value_name,
                        disabled=_truthy(raw.get("disabled")),
                        image=absolute_url(raw.get("image")),
                    )
                )
            if values:
                properties.append(SkuProperty(name, values))
        if properties:
            return properties
    return None


CONTAINER_CHAIN: StrategyChain[list[SkuProperty]] = StrategyChain(
    "variant_container",
    [
        Strategy("sku_panel_prop_items", sku_panel_prop_items),
        Strategy("sku_panel_vid_groups", sku_panel_vid_groups),
        Strategy("legacy_sale_props", legacy_sale_props),
        Strategy("embedded_sku_base", embedded_sku_base),
    ],
)

# =============================================================================
# Product summary roles
# =============================================================================

TITLE_CHAIN: StrategyChain[str] = StrategyChain(
    "title",
    css_text(
        [
            '[class*="mainTitle"]',
            'h1[class*="Title"]',
            ".tb-main-title",
            ".tb-detail-hd h1",
            'meta[property="og:title"]',
        ]
    ),
)

PRICE_CHAIN: StrategyChain[str] = StrategyChain(
    "price",
    css_text(
        [
            '[class*="highlightPrice"] [class*="text"]',
            '[class*="priceText"]',
            "#J_PromoPriceNum",
            ".tb-rmb-num",
            ".tm-price",
        ]
    ),
)

IMAGE_CHAIN: StrategyChain[str] = StrategyChain(
    "image",
    css_attr(
        ['[class*="mainPic"] img', "#J_ImgBooth", 'meta[property="og:image"]'],
        ["src", "data-src", "content"],
    ),
)

LINK_CHAIN: StrategyChain[str] = StrategyChain(
    "detail_link",
    css_attr(
        ['link[rel="canonical"]', 'meta[property="og:url"]'],
        ["href", "content"],
    ),
)


def build_selections(properties: list[SkuProperty]) -> list[SkuSelection]:
    """Cartesian product of enabled values, in document order."""
    if not properties:
        return []
    axes = [
        [SkuOption(prop.name, value.name, value.value_id) for value in prop.enabled_values]
        for prop in properties
    ]
    return [SkuSelection(tuple(combo)) for combo in itertools.product(*axes)]


class SkuEnumerator(BaseExtractor):
    """Reads a product page into its ordered list of purchasable variants."""

    def __init__(self, browser: BrowserManager | None = None) -> None:
        self.browser = browser

    async def enumerate(self, page: Page, product_id: str) -> SkuEnumeration:
        """
        Navigate to the product page and enumerate its selectable variants.

        Unrecognized markup yields an empty enumeration with
        ``unknown_structure`` set instead of raising.
        """
        url = ITEM_URL_TEMPLATE.format(product_id=product_id)
        snapshot = await self.load(page, url)
        enumeration = self.parse(snapshot, product_id)

        if enumeration.unknown_structure:
            logger.warning(
                "Unknown product page structure",
                product_id=product_id,
                tried=CONTAINER_CHAIN.names,
            )
        else:
            logger.info(
                "Variants enumerated",
                product_id=product_id,
                properties=len(enumeration.properties),
                variants=len(enumeration.selections),
                strategy=enumeration.matched.get(CONTAINER_CHAIN.role),
            )
        return enumeration

    def parse(self, snapshot: PageSnapshot, product_id: str = "") -> SkuEnumeration:
        matched: dict[str, str] = {}

        def run(chain: StrategyChain[Any]) -> Any:
            match = chain.run(snapshot)
            if match is None:
                return None
            matched[chain.role] = match.strategy
            return match.value

        title = run(TITLE_CHAIN)
        price = run(PRICE_CHAIN)
        image = run(IMAGE_CHAIN)
        link = run(LINK_CHAIN)
        product = ProductSummary(
            product_id=product_id,
            title=title,
            price=parse_price(price),
            image=absolute_url(image),
            url=absolute_url(link)
            or (ITEM_URL_TEMPLATE.format(product_id=product_id) if product_id else None),
        )

        properties = run(CONTAINER_CHAIN)
        if properties is None:
            return SkuEnumeration(
                selections=[],
                product=product,
                matched=matched,
                unknown_structure=True,
            )

        return SkuEnumeration(
            selections=build_selections(properties),
            product=product,
            properties=properties,
            matched=matched,
        )
