"""Unit tests for SkuEnumerator and the strategy chain it is built on."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from cart_monitor.exceptions import AuthExpiredError, NavigationTimeoutError
from cart_monitor.extractors.base import PageSnapshot, Strategy, StrategyChain
from cart_monitor.extractors.sku import (
    CONTAINER_CHAIN,
    SkuEnumerator,
    SkuProperty,
    SkuValue,
    build_selections,
)
from cart_monitor.utils.constants import ITEM_URL_TEMPLATE


class TestStrategyChain:
    """Tests for StrategyChain.run."""

    def test_first_non_empty_wins(self) -> None:
        """Empty results fall through to the next strategy."""
        chain = StrategyChain(
            "role",
            [
                Strategy("empty", lambda s: []),
                Strategy("none", lambda s: None),
                Strategy("hit", lambda s: ["x"]),
                Strategy("later", lambda s: ["y"]),
            ],
        )

        match = chain.run(PageSnapshot(html=""))

        assert match is not None
        assert match.strategy == "hit"
        assert match.value == ["x"]

    def test_failing_strategy_is_a_miss(self) -> None:
        """A strategy raising while decoding counts as no match."""

        def broken(snapshot: PageSnapshot) -> str:
            raise KeyError("props")

        chain = StrategyChain("role", [Strategy("broken", broken), Strategy("ok", lambda s: "v")])

        match = chain.run(PageSnapshot(html=""))

        assert match is not None
        assert match.strategy == "ok"

    def test_no_match(self) -> None:
        chain = StrategyChain("role", [Strategy("none", lambda s: None)])

        assert chain.run(PageSnapshot(html="")) is None

    def test_names_in_priority_order(self) -> None:
        assert CONTAINER_CHAIN.names == [
            "sku_panel_prop_items",
            "sku_panel_vid_groups",
            "legacy_sale_props",
            "embedded_sku_base",
        ]


class TestBuildSelections:
    """Tests for build_selections."""

    def test_cartesian_product_in_document_order(self) -> None:
        """The first property varies slowest."""
        properties = [
            SkuProperty("颜色", [SkuValue("1", "红"), SkuValue("2", "蓝")]),
            SkuProperty("尺码", [SkuValue("3", "S"), SkuValue("4", "M")]),
        ]

        displays = [s.display for s in build_selections(properties)]

        assert displays == ["颜色:红;尺码:S", "颜色:红;尺码:M", "颜色:蓝;尺码:S", "颜色:蓝;尺码:M"]

    def test_disabled_values_excluded(self) -> None:
        properties = [
            SkuProperty("颜色", [SkuValue("1", "红"), SkuValue("2", "蓝", disabled=True)]),
        ]

        assert [s.display for s in build_selections(properties)] == ["颜色:红"]

    def test_fully_disabled_property_yields_nothing(self) -> None:
        """No variant is purchasable when one property has no enabled value."""
        properties = [
            SkuProperty("颜色", [SkuValue("1", "红")]),
            SkuProperty("尺码", [SkuValue("3", "S", disabled=True)]),
        ]

        assert build_selections(properties) == []

    def test_value_ids_carried(self) -> None:
        selection = build_selections([SkuProperty("颜色", [SkuValue("1627207:28341", "黑")])])[0]

        assert selection.options[0].value_id == "1627207:28341"


class TestSkuEnumeratorParse:
    """Tests for SkuEnumerator.parse()."""

    def setup_method(self) -> None:
        self.enumerator = SkuEnumerator()

    def test_sku_panel(self, product_page_html: str) -> None:
        """Modern sku panel yields enabled combinations and product fields."""
        result = self.enumerator.parse(PageSnapshot(html=product_page_html), "123")

        assert [s.display for s in result.selections] == [
            "颜色:红色;尺码:S",
            "颜色:红色;尺码:M",
            "颜色:蓝色;尺码:S",
            "颜色:蓝色;尺码:M",
        ]
        assert result.unknown_structure is False
        assert result.matched["variant_container"] == "sku_panel_prop_items"
        assert result.product.title == "纯棉短袖T恤"
        assert result.product.price == 59.9
        assert result.product.image == "https://img.alicdn.com/main.jpg"
        assert result.product.url == "https://item.taobao.com/item.htm?id=123"

    def test_disabled_value_recorded(self, product_page_html: str) -> None:
        """Disabled values are kept on the property but not enumerated."""
        result = self.enumerator.parse(PageSnapshot(html=product_page_html), "123")

        sizes = result.properties[1]
        assert sizes.name == "尺码"
        assert [v.name for v in sizes.values] == ["S", "M", "L"]
        assert [v.name for v in sizes.enabled_values] == ["S", "M"]

    def test_deterministic(self, product_page_html: str) -> None:
        """Parsing identical content twice gives identical ordering."""
        first = self.enumerator.parse(PageSnapshot(html=product_page_html), "123")
        second = self.enumerator.parse(PageSnapshot(html=product_page_html), "123")

        assert first.selections == second.selections

    def test_legacy_fallback(self, legacy_page_html: str) -> None:
        """Older sale-prop lists are read when no sku panel exists."""
        result = self.enumerator.parse(PageSnapshot(html=legacy_page_html), "789")

        assert result.matched["variant_container"] == "legacy_sale_props"
        assert [s.display for s in result.selections] == ["颜色分类:黑色", "颜色分类:灰色"]
        assert result.product.title == "旧版商品"
        assert result.product.url == ITEM_URL_TEMPLATE.format(product_id="789")

    def test_embedded_sku_base(self, sku_base_page_html: str) -> None:
        """Embedded page data is the last resort."""
        result = self.enumerator.parse(PageSnapshot(html=sku_base_page_html), "456")

        assert result.matched["variant_container"] == "embedded_sku_base"
        assert [s.display for s in result.selections] == ["版本:标准版", "版本:旗舰版"]
        assert result.selections[0].options[0].value_id == "11"

    def test_unknown_structure(self) -> None:
        """Unrecognized markup gives an empty list flagged as unknown."""
        html = "<html><body><h1>Something else</h1></body></html>"

        result = self.enumerator.parse(PageSnapshot(html=html), "1")

        assert result.selections == []
        assert result.is_empty
        assert result.unknown_structure is True

    def test_all_values_disabled(self) -> None:
        """A recognized page with nothing purchasable is not an unknown structure."""
        html = """
        <div id="SkuPanel_x">
          <div class="skuItem--a">
            <div class="propName--b">颜色</div>
            <div class="v--disabled" data-vid="1" title="红"></div>
            <div class="v--disabled" data-vid="2" title="蓝"></div>
          </div>
        </div>
        """

        result = self.enumerator.parse(PageSnapshot(html=html), "1")

        assert result.selections == []
        assert result.unknown_structure is False


class TestSkuEnumeratorEnumerate:
    """Tests for SkuEnumerator.enumerate() against a page double."""

    @pytest.mark.asyncio
    async def test_navigates_and_parses(self, mock_browser, mock_page, product_page_html) -> None:
        """The product page is loaded, verified and parsed."""
        mock_page.get_content = AsyncMock(return_value=product_page_html)
        enumerator = SkuEnumerator(mock_browser)

        result = await enumerator.enumerate(mock_page, "123")

        mock_browser.goto.assert_awaited_once_with(
            mock_page, ITEM_URL_TEMPLATE.format(product_id="123")
        )
        mock_browser.ensure_authenticated.assert_awaited_once_with(mock_page)
        mock_browser.dismiss_overlays.assert_awaited_once()
        assert len(result.selections) == 4

    @pytest.mark.asyncio
    async def test_navigation_timeout_retried(self, mock_browser, mock_page, product_page_html) -> None:
        """A single navigation timeout is retried."""
        mock_page.get_content = AsyncMock(return_value=product_page_html)
        mock_browser.goto = AsyncMock(side_effect=[NavigationTimeoutError("slow"), None])

        result = await SkuEnumerator(mock_browser).enumerate(mock_page, "123")

        assert mock_browser.goto.await_count == 2
        assert len(result.selections) == 4

    @pytest.mark.asyncio
    async def test_navigation_timeout_exhausted(self, mock_browser, mock_page) -> None:
        """Repeated timeouts propagate."""
        mock_browser.goto = AsyncMock(side_effect=NavigationTimeoutError("slow"))

        with pytest.raises(NavigationTimeoutError):
            await SkuEnumerator(mock_browser).enumerate(mock_page, "123")

    @pytest.mark.asyncio
    async def test_auth_page_propagates(self, mock_browser, mock_page) -> None:
        """A login redirect aborts enumeration."""
        mock_browser.ensure_authenticated = AsyncMock(side_effect=AuthExpiredError("login"))

        with pytest.raises(AuthExpiredError):
            await SkuEnumerator(mock_browser).enumerate(mock_page, "123")

        mock_page.get_content.assert_not_called()
