"""Unit tests for BrowserManager."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cart_monitor.core.browser import BrowserManager, BrowserSession
from cart_monitor.exceptions import (
    AuthExpiredError,
    BrowserConnectionError,
    BrowserNotConnectedError,
    InvalidCookiesError,
    NavigationTimeoutError,
)
from cart_monitor.utils.config import BrowserSettings


def _settings(**overrides) -> BrowserSettings:
    return BrowserSettings(_env_file=None, **overrides)  # type: ignore[call-arg]


def _fake_browser(send_result=None) -> MagicMock:
    browser = MagicMock()
    browser.connection.send = AsyncMock(return_value=send_result)
    browser.connection.aclose = AsyncMock()
    browser.update_targets = AsyncMock()
    browser.tabs = []
    return browser


class TestBrowserManagerInit:
    """Tests for BrowserManager initialization."""

    def test_endpoint(self) -> None:
        """Endpoint combines host and port."""
        manager = BrowserManager(_settings(host="10.0.0.5", port=9333))

        assert manager.endpoint == "10.0.0.5:9333"

    def test_not_connected_on_init(self, pacer) -> None:
        """No attachment happens on init."""
        manager = BrowserManager(_settings(), pacer=pacer)

        assert manager.is_connected is False
        with pytest.raises(BrowserNotConnectedError):
            _ = manager.session


class TestConnect:
    """Tests for attaching to a running browser."""

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_is_connection_error(self) -> None:
        """A refused connection surfaces as BrowserConnectionError."""
        manager = BrowserManager(_settings())

        with patch(
            "cart_monitor.core.browser.nodriver.start",
            new=AsyncMock(side_effect=ConnectionRefusedError("refused")),
        ):
            with pytest.raises(BrowserConnectionError) as exc_info:
                await manager.connect()

        assert isinstance(exc_info.value, ConnectionError)
        assert manager.is_connected is False

    @pytest.mark.asyncio
    async def test_reuses_first_existing_context(self) -> None:
        """The first browser context becomes the spare context."""
        browser = _fake_browser(send_result=["ctx-1", "ctx-2"])
        manager = BrowserManager(_settings())

        with patch(
            "cart_monitor.core.browser.nodriver.start",
            new=AsyncMock(return_value=browser),
        ) as start:
            session = await manager.connect()
            again = await manager.connect()

        assert session is again
        assert session.spare_context_id == "ctx-1"
        assert session.created_context_ids == []
        start.assert_awaited_once_with(host="127.0.0.1", port=9222)

    @pytest.mark.asyncio
    async def test_creates_context_when_none_exist(self) -> None:
        """A context is created when the browser exposes none."""
        browser = _fake_browser()
        browser.connection.send = AsyncMock(side_effect=[[], "ctx-new"])
        manager = BrowserManager(_settings())

        with patch(
            "cart_monitor.core.browser.nodriver.start",
            new=AsyncMock(return_value=browser),
        ):
            session = await manager.connect()

        assert session.spare_context_id == "ctx-new"
        assert session.created_context_ids == ["ctx-new"]


class TestContexts:
    """Tests for account to context binding."""

    @pytest.mark.asyncio
    async def test_accounts_get_isolated_contexts(self) -> None:
        """First account takes the spare context, others get new ones."""
        browser = _fake_browser(send_result="ctx-b")
        manager = BrowserManager(_settings())
        manager._session = BrowserSession(browser, "spare")

        first = await manager.context_for("acc-a")
        second = await manager.context_for("acc-b")
        first_again = await manager.context_for("acc-a")

        assert first == "spare"
        assert second == "ctx-b"
        assert first_again == "spare"
        assert manager.session.created_context_ids == ["ctx-b"]


class TestPages:
    """Tests for page lifecycle."""

    @pytest.mark.asyncio
    async def test_new_page_returns_created_tab(self) -> None:
        """The tab whose target id matches the created target is returned."""
        browser = _fake_browser(send_result="target-2")
        other, created = MagicMock(), MagicMock()
        other.target.target_id = "target-1"
        created.target.target_id = "target-2"
        browser.tabs = [other, created]
        manager = BrowserManager(_settings())
        manager._session = BrowserSession(browser, "spare")

        page = await manager.new_page("spare")

        assert page is created
        assert created in manager._pages
        browser.update_targets.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_page_handles_error(self, mock_page) -> None:
        """Closing a page never raises."""
        manager = BrowserManager(_settings())
        mock_page.close = AsyncMock(side_effect=Exception("Close failed"))
        manager._pages = [mock_page]

        await manager.close_page(mock_page)

        assert manager._pages == []

    @pytest.mark.asyncio
    async def test_acquire_closes_page_on_error(self, mock_page) -> None:
        """The page is closed when the caller's block raises."""
        manager = BrowserManager(_settings())
        manager.connect = AsyncMock()
        manager.context_for = AsyncMock(return_value="ctx")
        manager.new_page = AsyncMock(return_value=mock_page)

        with pytest.raises(RuntimeError):
            async with manager.acquire_authenticated_page(
                '[{"name": "cookie2", "value": "x"}]', "acc-1"
            ) as page:
                assert page is mock_page
                raise RuntimeError("boom")

        mock_page.send.assert_awaited_once()
        mock_page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_acquire_closes_page_on_bad_cookies(self, mock_page) -> None:
        """Invalid cookies propagate and the page is still closed."""
        manager = BrowserManager(_settings())
        manager.connect = AsyncMock()
        manager.context_for = AsyncMock(return_value="ctx")
        manager.new_page = AsyncMock(return_value=mock_page)

        with pytest.raises(InvalidCookiesError):
            async with manager.acquire_authenticated_page("garbage", "acc-1"):
                pytest.fail("block must not run")

        mock_page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_acquire_closes_page_on_cancel(self, mock_page) -> None:
        """Cancellation inside the block still closes the page."""
        manager = BrowserManager(_settings())
        manager.connect = AsyncMock()
        manager.context_for = AsyncMock(return_value="ctx")
        manager.new_page = AsyncMock(return_value=mock_page)
        entered = asyncio.Event()

        async def flow() -> None:
            async with manager.acquire_authenticated_page(
                '[{"name": "cookie2", "value": "x"}]', "acc-1"
            ):
                entered.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(flow())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        mock_page.close.assert_awaited_once()


class TestNavigation:
    """Tests for goto and auth detection."""

    @pytest.mark.asyncio
    async def test_goto_timeout(self, mock_page, pacer) -> None:
        """A navigation slower than the deadline raises NavigationTimeoutError."""
        manager = BrowserManager(_settings(navigation_timeout_ms=20), pacer=pacer)

        async def slow_get(url: str) -> None:
            await asyncio.sleep(1)

        mock_page.get = slow_get

        with pytest.raises(NavigationTimeoutError):
            await manager.goto(mock_page, "https://item.taobao.com/item.htm?id=1")

    @pytest.mark.asyncio
    async def test_goto_settles_after_load(self, mock_page, pacer, fake_sleep) -> None:
        """A successful navigation is followed by a human-paced pause."""
        manager = BrowserManager(_settings(), pacer=pacer)

        await manager.goto(mock_page, "https://cart.taobao.com/cart.htm")

        mock_page.get.assert_awaited_once_with("https://cart.taobao.com/cart.htm")
        fake_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_login_url_is_auth_page(self, mock_page) -> None:
        """Login hosts are detected from the URL alone."""
        manager = BrowserManager(_settings())
        mock_page.target.url = "https://login.taobao.com/member/login.jhtml"

        assert await manager.is_auth_page(mock_page) is True
        mock_page.evaluate.assert_not_called()

    @pytest.mark.asyncio
    async def test_login_title_is_auth_page(self, mock_page) -> None:
        """A login title is detected."""
        manager = BrowserManager(_settings())
        mock_page.evaluate = AsyncMock(side_effect=["淘宝网 - 登录", False])

        assert await manager.is_auth_page(mock_page) is True

    @pytest.mark.asyncio
    async def test_login_markers_are_auth_page(self, mock_page) -> None:
        """Login form or slider elements are detected."""
        manager = BrowserManager(_settings())
        mock_page.evaluate = AsyncMock(side_effect=["商品详情", True])

        assert await manager.is_auth_page(mock_page) is True

    @pytest.mark.asyncio
    async def test_product_page_is_not_auth_page(self, mock_page) -> None:
        manager = BrowserManager(_settings())
        mock_page.evaluate = AsyncMock(side_effect=["纯棉短袖T恤-淘宝网", False])

        assert await manager.is_auth_page(mock_page) is False

    @pytest.mark.asyncio
    async def test_ensure_authenticated_raises(self, mock_page) -> None:
        """A challenge page raises AuthExpiredError."""
        manager = BrowserManager(_settings())
        mock_page.target.url = "https://sec.taobao.com/query.htm"

        with pytest.raises(AuthExpiredError):
            await manager.ensure_authenticated(mock_page)

    @pytest.mark.asyncio
    async def test_dismiss_overlays_swallows_errors(self, mock_page) -> None:
        """Overlay dismissal is best effort."""
        manager = BrowserManager(_settings())
        mock_page.evaluate = AsyncMock(side_effect=Exception("detached"))

        assert await manager.dismiss_overlays(mock_page) == 0


class TestClose:
    """Tests for detaching."""

    @pytest.mark.asyncio
    async def test_close_disposes_created_contexts(self, mock_page) -> None:
        """Created contexts are disposed and tracked pages closed."""
        browser = _fake_browser()
        manager = BrowserManager(_settings())
        session = BrowserSession(browser, "spare")
        session.created_context_ids.append("ctx-2")
        manager._session = session
        manager._pages = [mock_page]

        await manager.close()

        mock_page.close.assert_awaited_once()
        browser.connection.send.assert_awaited_once()
        browser.connection.aclose.assert_awaited_once()
        assert manager.is_connected is False

    @pytest.mark.asyncio
    async def test_close_without_connect(self) -> None:
        """Closing an unattached manager is a no-op."""
        await BrowserManager(_settings()).close()
