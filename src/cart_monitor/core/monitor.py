"""Cart monitor orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cart_monitor.core.browser import BrowserManager
from cart_monitor.core.cart_adder import AddAllOptions, CartAdder
from cart_monitor.core.human import HumanPacer
from cart_monitor.core.session import SessionManager
from cart_monitor.core.snapshot import CartSnapshotReader
from cart_monitor.exceptions import ConfigurationError
from cart_monitor.storage.database import close_db, init_db
from cart_monitor.storage.repository import SqlAlchemyProductRepository
from cart_monitor.utils.config import Settings, get_settings
from cart_monitor.utils.debug import DebugArtifactSink, FileDebugArtifactSink, NullDebugSink
from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    from cart_monitor.models.results import Account, CartAddAllResult, SnapshotReport
    from cart_monitor.storage.base import ProductRepository


logger = get_logger(__name__)


class CartMonitor:
    """
    Entry point for cart automation.

    Owns the browser attachment, the per-account locks and the product store
    for the lifetime of a run:
    - Add every variant of a product to an account's cart
    - Read the cart back and reconcile prices with the product store
    """

    def __init__(
        self,
        settings: Settings | None = None,
        repository: ProductRepository | None = None,
        database_url: str | None = None,
        debug_sink: DebugArtifactSink | None = None,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            settings: Settings to use (defaults to the environment)
            repository: Product store; built from ``database_url`` or the
                database settings when omitted
            database_url: Async database URL overriding the settings
            debug_sink: Where diagnostic artifacts go
        """
        self.settings = settings or get_settings()
        self.database_url = database_url
        self.repository = repository

        self.pacer = HumanPacer(self.settings.pacing)
        self.browser = BrowserManager(self.settings.browser, pacer=self.pacer)
        self.sessions = SessionManager(
            mode=self.settings.cart.lock_mode,
            timeout=self.settings.cart.lock_timeout_seconds,
        )

        if debug_sink is None:
            debug_sink = (
                FileDebugArtifactSink(self.settings.debug.artifact_dir)
                if self.settings.debug.enabled
                else NullDebugSink()
            )
        self.debug_sink = debug_sink

        self._owns_database = False
        self._is_started = False

    @property
    def _resolved_database_url(self) -> str | None:
        if self.database_url:
            return self.database_url
        if self.settings.database.enabled:
            return self.settings.database.url
        return None

    async def start(self) -> None:
        """Attach to the browser and open the product store."""
        if self._is_started:
            return

        logger.info("Starting cart monitor")
        if self.repository is None:
            url = self._resolved_database_url
            if url is not None:
                factory = await init_db(url)
                self.repository = SqlAlchemyProductRepository(factory)
                self._owns_database = True

        await self.browser.connect()
        self._is_started = True
        logger.info("Cart monitor started")

    async def stop(self) -> None:
        """Detach from the browser and close the product store."""
        if not self._is_started:
            return

        logger.info("Stopping cart monitor")
        await self.browser.close()
        if self._owns_database:
            await close_db()
            self._owns_database = False
        self._is_started = False
        logger.info("Cart monitor stopped")

    async def _ensure_started(self) -> None:
        if not self._is_started:
            await self.start()

    async def add_all_skus_to_cart(
        self,
        account: Account | str,
        product_id: str,
        cookies: Any,
        options: AddAllOptions | None = None,
    ) -> CartAddAllResult:
        """
        Add every purchasable variant of a product to the account's cart.

        Args:
            account: Account record or id
            product_id: Marketplace product id
            cookies: Cookie jar (list, JSON or base64 JSON)
            options: Batch options (headless, deadline, skip existing...)

        Returns:
            CartAddAllResult in enumeration order
        """
        await self._ensure_started()
        adder = CartAdder(
            self.browser,
            self.sessions,
            settings=self.settings,
            repository=self.repository,
            pacer=self.pacer,
        )
        return await adder.add_all_skus_to_cart(account, product_id, cookies, options)

    async def update_prices_from_cart(
        self,
        account: Account | str,
        cookies: Any,
    ) -> SnapshotReport:
        """
        Read the account's cart and reconcile prices with the product store.

        Raises:
            ConfigurationError: No product store is configured
        """
        await self._ensure_started()
        if self.repository is None:
            raise ConfigurationError(
                "Snapshot reconciliation needs a product store; set DB_ENABLED "
                "or pass a database URL"
            )
        reader = CartSnapshotReader(
            self.browser,
            self.sessions,
            self.repository,
            debug_sink=self.debug_sink,
        )
        return await reader.update_prices_from_cart(account, cookies)

    async def __aenter__(self) -> CartMonitor:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.stop()
