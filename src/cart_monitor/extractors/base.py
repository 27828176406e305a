"""Base extractor and selector-fallback strategy chains."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from bs4 import BeautifulSoup, Tag

from cart_monitor.exceptions import NavigationTimeoutError
from cart_monitor.utils.constants import DEFAULT_MAX_ATTEMPTS
from cart_monitor.utils.logging import get_logger
from cart_monitor.utils.parsers import clean_text


if TYPE_CHECKING:
    from cart_monitor.core.browser import BrowserManager, Page

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Page Snapshot
# =============================================================================


@dataclass
class PageSnapshot:
    """Serialized DOM of a page at one instant, parsed once on demand."""

    html: str
    url: str = ""
    _soup: BeautifulSoup | None = field(default=None, init=False, repr=False, compare=False)

    @classmethod
    async def capture(cls, page: Page) -> PageSnapshot:
        html = await page.get_content()
        return cls(html=html or "", url=page.target.url or "")

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup

    def select(self, selector: str, root: Tag | None = None) -> list[Tag]:
        return (root or self.soup).select(selector)

    def select_one(self, selector: str, root: Tag | None = None) -> Tag | None:
        return (root or self.soup).select_one(selector)

    def text(self) -> str:
        return clean_text(self.soup.get_text(" "))


# =============================================================================
# Strategies
# =============================================================================


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """One named way of locating a semantic element; a pure function of the page."""

    name: str
    extract: Callable[[PageSnapshot], T | None]


@dataclass(frozen=True)
class StrategyMatch(Generic[T]):
    strategy: str
    value: T


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


class StrategyChain(Generic[T]):
    """
    Ordered strategies for one role; the first non-empty result wins.

    Strategies are tried in priority order. A strategy that raises while
    decoding page data counts as a miss.
    """

    def __init__(self, role: str, strategies: Sequence[Strategy[T]]) -> None:
        self.role = role
        self.strategies = list(strategies)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.strategies]

    def run(self, snapshot: PageSnapshot) -> StrategyMatch[T] | None:
        for strategy in self.strategies:
            try:
                value = strategy.extract(snapshot)
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.debug(
                    "Strategy failed",
                    role=self.role,
                    strategy=strategy.name,
                    error=str(e),
                )
                continue
            if _is_empty(value):
                continue
            logger.debug("Strategy matched", role=self.role, strategy=strategy.name)
            return StrategyMatch(strategy=strategy.name, value=value)

        logger.debug("No strategy matched", role=self.role, tried=len(self.strategies))
        return None


def css_text(selectors: Sequence[str], root: Tag | None = None) -> list[Strategy[str]]:
    """One strategy per selector yielding the text of its first non-empty match."""

    def make(selector: str) -> Strategy[str]:
        def extract(snapshot: PageSnapshot) -> str | None:
            for node in snapshot.select(selector, root):
                text = clean_text(node.get_text(" ")) or clean_text(node.get("content"))
                if text:
                    return text
            return None

        return Strategy(name=selector, extract=extract)

    return [make(s) for s in selectors]


def css_attr(
    selectors: Sequence[str],
    attrs: Sequence[str],
    root: Tag | None = None,
) -> list[Strategy[str]]:
    """One strategy per selector yielding the first present attribute of its matches."""

    def make(selector: str) -> Strategy[str]:
        def extract(snapshot: PageSnapshot) -> str | None:
            for node in snapshot.select(selector, root):
                for attr in attrs:
                    value = node.get(attr)
                    if isinstance(value, str) and value.strip():
                        return value.strip()
            return None

        return Strategy(name=selector, extract=extract)

    return [make(s) for s in selectors]


# =============================================================================
# Base Extractor
# =============================================================================


class BaseExtractor(ABC):
    """Abstract base class for page extractors."""

    # Subclasses should set this in __init__
    browser: BrowserManager | None = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    @abstractmethod
    def parse(self, snapshot: PageSnapshot) -> Any:
        """Turn a page snapshot into structured data without touching the page."""
        ...

    async def settle(self, page: Page) -> None:
        """Hook run after navigation, before the DOM is captured."""
        if self.browser is not None:
            await self.browser.dismiss_overlays(page)

    async def load(self, page: Page, url: str) -> PageSnapshot:
        """
        Navigate with retry on timeout, verify the session, and capture the DOM.

        Raises:
            NavigationTimeoutError: Every attempt timed out
            AuthExpiredError: The site answered with a login or challenge page
        """
        if self.browser is None:
            raise RuntimeError("Browser not set on extractor")

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.browser.goto(page, url)
                break
            except NavigationTimeoutError:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    f"Navigation timed out (attempt {attempt}/{self.max_attempts})",
                    url=url,
                )

        await self.browser.ensure_authenticated(page)
        await self.settle(page)
        return await PageSnapshot.capture(page)
