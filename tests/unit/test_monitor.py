"""Unit tests for the CartMonitor entry point."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from cart_monitor.core.monitor import CartMonitor
from cart_monitor.exceptions import ConfigurationError
from cart_monitor.storage.repository import SqlAlchemyProductRepository
from cart_monitor.utils.debug import FileDebugArtifactSink, NullDebugSink


def _monitor(settings, **kwargs) -> CartMonitor:
    monitor = CartMonitor(settings=settings, **kwargs)
    monitor.browser.connect = AsyncMock()
    monitor.browser.close = AsyncMock()
    return monitor


class TestCartMonitorInit:
    """Tests for wiring at construction."""

    def test_lock_policy_from_settings(self, settings) -> None:
        settings.cart.lock_mode = "reject"
        settings.cart.lock_timeout_seconds = 5.0

        monitor = CartMonitor(settings=settings)

        assert monitor.sessions.mode == "reject"
        assert monitor.sessions.timeout == 5.0

    def test_debug_sink_disabled_by_default(self, settings) -> None:
        assert isinstance(CartMonitor(settings=settings).debug_sink, NullDebugSink)

    def test_debug_sink_enabled(self, settings, tmp_path) -> None:
        settings.debug.enabled = True
        settings.debug.artifact_dir = tmp_path

        monitor = CartMonitor(settings=settings)

        assert isinstance(monitor.debug_sink, FileDebugArtifactSink)
        assert monitor.debug_sink.artifact_dir == tmp_path

    def test_browser_shares_pacer(self, settings) -> None:
        monitor = CartMonitor(settings=settings)

        assert monitor.browser.pacer is monitor.pacer


class TestCartMonitorLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_without_database(self, settings) -> None:
        """No database URL means no product store."""
        monitor = _monitor(settings)

        async with monitor:
            monitor.browser.connect.assert_awaited_once()
            assert monitor.repository is None

        monitor.browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_with_database_url(self, settings, tmp_path) -> None:
        """A database URL builds the SQL product store."""
        monitor = _monitor(
            settings, database_url=f"sqlite+aiosqlite:///{tmp_path / 'products.db'}"
        )

        await monitor.start()
        try:
            assert isinstance(monitor.repository, SqlAlchemyProductRepository)
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_given_repository_is_kept(self, settings, repository) -> None:
        monitor = _monitor(settings, repository=repository)

        await monitor.start()
        await monitor.stop()

        assert monitor.repository is repository

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, settings) -> None:
        monitor = _monitor(settings)

        await monitor.start()
        await monitor.start()

        monitor.browser.connect.assert_awaited_once()
        await monitor.stop()


class TestCartMonitorOperations:
    """Tests for the two public operations."""

    @pytest.mark.asyncio
    async def test_snapshot_requires_store(self, settings) -> None:
        monitor = _monitor(settings)

        with pytest.raises(ConfigurationError):
            await monitor.update_prices_from_cart("acc-1", "[]")

    @pytest.mark.asyncio
    async def test_operations_start_lazily(self, settings, repository, monkeypatch) -> None:
        """Calling an operation attaches to the browser first."""
        monitor = _monitor(settings, repository=repository)
        reader_call = AsyncMock(return_value="report")
        monkeypatch.setattr(
            "cart_monitor.core.monitor.CartSnapshotReader.update_prices_from_cart",
            reader_call,
        )

        result = await monitor.update_prices_from_cart("acc-1", "[]")

        assert result == "report"
        monitor.browser.connect.assert_awaited_once()
        reader_call.assert_awaited_once_with("acc-1", "[]")
