"""Pytest configuration and fixtures."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from cart_monitor.core.human import HumanPacer
from cart_monitor.models.results import ProductKey, ProductRow
from cart_monitor.storage.base import ProductRepository
from cart_monitor.storage.repository import dedupe_rows
from cart_monitor.utils.config import PacingSettings, Settings
from cart_monitor.utils.constants import BASE_SKU_ID, MONITOR_MODE_CART


FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Page fixtures
# =============================================================================


@pytest.fixture
def product_page_html() -> str:
    """Product page with two variant properties inside the sku panel."""
    return """
    <html>
    <head><link rel="canonical" href="//item.taobao.com/item.htm?id=123"></head>
    <body>
      <h1 class="ItemHeader--mainTitle--x1">纯棉短袖T恤</h1>
      <div class="Price--highlightPrice--x2"><span class="Price--text--x3">59.90</span></div>
      <div class="PicGallery--mainPic--x4"><img src="//img.alicdn.com/main.jpg"></div>
      <div id="tbpcDetail_SkuPanelBody">
        <div class="skuItem--a1">
          <div class="skuCate--propName--b1">颜色</div>
          <div class="content--c1">
            <div class="valueItem--d1" data-vid="1001" title="红色"><span>红色</span></div>
            <div class="valueItem--d1" data-vid="1002" title="蓝色"><span>蓝色</span></div>
          </div>
        </div>
        <div class="skuItem--a1">
          <div class="skuCate--propName--b1">尺码</div>
          <div class="content--c1">
            <div class="valueItem--d1" data-vid="2001" title="S"><span>S</span></div>
            <div class="valueItem--d1" data-vid="2002" title="M"><span>M</span></div>
            <div class="valueItem--d1 valueItem--disabled--e1" data-vid="2003" title="L">
              <span>L</span>
            </div>
          </div>
        </div>
      </div>
    </body>
    </html>
    """


@pytest.fixture
def legacy_page_html() -> str:
    """Older detail page that lists variants in J_TSaleProp lists."""
    return """
    <html><body>
      <h3 class="tb-main-title">旧版商品</h3>
      <dl>
        <dt>颜色分类</dt>
        <dd>
          <ul class="J_TSaleProp" data-property="颜色分类">
            <li data-value="1627207:28341"><a><span>黑色</span></a></li>
            <li data-value="1627207:28338" class="tb-out-of-stock"><a><span>白色</span></a></li>
            <li data-value="1627207:28320"><a><span>灰色</span></a></li>
          </ul>
        </dd>
      </dl>
    </body></html>
    """


@pytest.fixture
def sku_base_page_html() -> str:
    """Page whose variants only exist in embedded page data."""
    return """
    <html><body>
      <script>
        window.__INIT_DATA__ = {"item": {"id": "456"}, "skuBase": {"props": [
          {"name": "版本", "values": [
            {"vid": "11", "name": "标准版"},
            {"vid": "12", "name": "豪华版", "disabled": true},
            {"vid": "13", "name": "旗舰版"}
          ]}
        ]}};
      </script>
    </body></html>
    """


@pytest.fixture
def cart_page_html() -> str:
    """Cart with two variants of one product, one plain product and a hidden line."""
    return """
    <html><body>
      <div class="trade-cart-item-info">
        <a class="title--t1" href="//item.taobao.com/item.htm?id=111&skuId=5001">纯棉短袖T恤</a>
        <img class="image--i1" src="//img.alicdn.com/a.jpg">
        <div class="trade-cart-item-sku-old">
          <span class="label--l1">颜色分类：红色</span>
          <span class="label--l1">尺码：M</span>
        </div>
        <div class="trade-cart-item-price">
          <div class="trade-price-container">
            <span class="trade-price-integer">59</span><span class="trade-price-decimal">.90</span>
          </div>
          <div class="trade-price-container">
            <span class="trade-price-integer">79</span><span class="trade-price-decimal">.00</span>
          </div>
        </div>
        <div class="quantity--q1"><input type="text" value="2"></div>
      </div>
      <div class="trade-cart-item-info">
        <a class="title--t1" href="//item.taobao.com/item.htm?id=111&skuId=5002">纯棉短袖T恤</a>
        <div class="trade-cart-item-sku-old">
          <span class="label--l1">颜色分类：蓝色</span>
        </div>
        <div class="trade-cart-item-price">
          <div class="trade-price-container">
            <span class="trade-price-integer">49</span><span class="trade-price-decimal">.00</span>
          </div>
        </div>
      </div>
      <div class="trade-cart-item-info">
        <a class="title--t1" href="https://detail.tmall.com/item.htm?id=222">保温杯</a>
        <div class="trade-cart-item-price">
          <div class="trade-price-container">
            <span class="trade-price-integer">10</span>
          </div>
        </div>
      </div>
      <div class="trade-cart-item-info" style="display: none">
        <a class="title--t1" href="//item.taobao.com/item.htm?id=333">已失效商品</a>
      </div>
    </body></html>
    """


@pytest.fixture
def empty_cart_html() -> str:
    return '<html><body><div class="cart-empty">您的购物车竟然是空的</div></body></html>'


# =============================================================================
# Collaborator doubles
# =============================================================================


@pytest.fixture
def fake_sleep() -> AsyncMock:
    """Replaces asyncio.sleep inside the pacer so tests never wait."""
    return AsyncMock()


@pytest.fixture
def pacer(fake_sleep: AsyncMock) -> HumanPacer:
    return HumanPacer(PacingSettings(_env_file=None), sleep=fake_sleep)  # type: ignore[call-arg]


@pytest.fixture
def settings() -> Settings:
    """Settings built without .env influence."""
    return Settings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def mock_page() -> MagicMock:
    """Tab double with the async methods the package awaits."""
    page = MagicMock()
    page.target.url = "https://item.taobao.com/item.htm?id=123"
    page.get = AsyncMock()
    page.evaluate = AsyncMock(return_value=None)
    page.get_content = AsyncMock(return_value="<html></html>")
    page.query_selector = AsyncMock(return_value=None)
    page.find = AsyncMock(return_value=None)
    page.send = AsyncMock()
    page.close = AsyncMock()
    page.save_screenshot = AsyncMock()
    return page


@pytest.fixture
def mock_browser(mock_page: MagicMock, pacer: HumanPacer) -> MagicMock:
    """BrowserManager double handing out ``mock_page`` from a scoped acquire."""
    browser = MagicMock()
    browser.pacer = pacer
    browser.goto = AsyncMock()
    browser.ensure_authenticated = AsyncMock()
    browser.dismiss_overlays = AsyncMock(return_value=0)
    browser.scroll_page = AsyncMock()
    browser.released = []

    @asynccontextmanager
    async def acquire(cookies, account_id):
        try:
            yield mock_page
        finally:
            browser.released.append(account_id)

    browser.acquire_authenticated_page = MagicMock(side_effect=acquire)
    return browser


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


class InMemoryProductRepository(ProductRepository):
    """Dict-backed product store following the same upsert rules as SQL."""

    def __init__(self, rows: list[ProductRow] | None = None) -> None:
        self.rows: dict[ProductKey, ProductRow] = {}
        self.writes = 0
        for row in rows or []:
            self.rows[row.key] = replace(row)

    def _upsert(self, rows) -> int:
        unique = dedupe_rows(rows)
        for row in unique:
            current = self.rows.get(row.key)
            if current is None:
                self.rows[row.key] = replace(row)
                continue
            for name in _OBSERVED_FIELDS:
                value = getattr(row, name)
                if value is not None:
                    setattr(current, name, value)
            current.last_error = row.last_error
            if row.last_seen is not None:
                current.last_seen = row.last_seen
        self.writes += 1
        return len(unique)

    def _mark(self, owner_account_id, product_ids, error) -> int:
        count = 0
        for row in self.rows.values():
            if (
                row.owner_account_id == owner_account_id
                and row.sku_id == BASE_SKU_ID
                and row.product_id in product_ids
            ):
                row.last_error = error
                count += 1
        return count

    async def upsert_products(self, rows) -> int:
        return self._upsert(rows)

    async def mark_missing(self, owner_account_id, product_ids, error) -> int:
        self.writes += 1
        return self._mark(owner_account_id, list(product_ids), error)

    async def list_monitored(self, owner_account_id, monitor_mode=MONITOR_MODE_CART):
        return [
            replace(row)
            for row in self.rows.values()
            if row.owner_account_id == owner_account_id
            and row.monitor_mode == monitor_mode
            and row.is_base
            and row.is_active
        ]

    async def get(self, key):
        row = self.rows.get(key)
        return replace(row) if row is not None else None

    async def apply_snapshot(self, owner_account_id, rows, missing_error):
        present = {row.product_id for row in rows}
        monitored = await self.list_monitored(owner_account_id)
        missing = [r.product_id for r in monitored if r.product_id not in present]
        self._upsert(rows)
        self._mark(owner_account_id, missing, missing_error)
        return missing


@pytest.fixture
def repository() -> InMemoryProductRepository:
    return InMemoryProductRepository()
