"""Core data types, errors and the browser driver interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from grocery_scraper.config import Settings
    from grocery_scraper.ingest.profiles import ExtractionProfile


@dataclass(frozen=True)
class Product:
    """One scraped catalog entry."""

    name: str
    category: str
    price: Decimal = Decimal("0")
    old_price: Optional[Decimal] = None
    bulk_price: Optional[Decimal] = None
    discount: Optional[str] = None
    source_url: Optional[str] = None

    @property
    def is_on_sale(self) -> bool:
        """True only when a distinct old price is higher than the current one."""
        return self.old_price is not None and self.old_price > self.price

    @property
    def is_bulk(self) -> bool:
        return self.bulk_price is not None


@dataclass
class NavigationResult:
    """Outcome of a single navigation."""

    status: Optional[int]
    final_url: str


@dataclass
class ScrapeSession:
    """Mutable state for one ``CatalogScraper.scrape`` call."""

    urls: List[str]
    cookie_path: Optional[Path] = None
    cursor: int = 0
    products: List[Product] = field(default_factory=list)
    challenge_solved_this_run: bool = False
    solve_attempted: bool = False
    aborted: bool = False
    abort_reason: Optional[str] = None
    pages_ok: int = 0
    pages_empty: int = 0
    pages_blocked: int = 0
    pages_failed: int = 0


class ScraperError(Exception):
    """Base class for scraper errors."""


class NavigationError(ScraperError):
    """Page failed to load."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to load {url}: {reason}")


class SessionCrashedError(ScraperError):
    """The browser session is no longer usable."""


class FatalScrapeError(ScraperError):
    """A scrape run ended early on an unrecoverable error.

    ``products`` holds everything collected before the failure.
    """

    def __init__(self, message: str, products: Optional[List[Product]] = None):
        self.products = list(products or [])
        super().__init__(message)


class UnsupportedLinkFileError(ScraperError):
    """No extraction profile is registered for a link file."""


class BrowserDriver(ABC):
    """
    Controllable browser capability used by the scraping engine.

    Sessions and nodes are opaque to the engine; only the driver looks inside.
    All calls are coroutines so the engine yields at every browser operation.
    """

    @abstractmethod
    async def launch_session(
        self,
        config: "Settings",
        profile: "ExtractionProfile",
    ) -> Any:
        """
        Start a browser session.

        Args:
            config: Scraper settings (headless, slow motion, logging)
            profile: Extraction profile with browser hints

        Returns:
            Opaque session handle
        """

    @abstractmethod
    async def close_session(self, session: Any) -> None:
        """Release everything owned by the session."""

    @asynccontextmanager
    async def session(
        self,
        config: "Settings",
        profile: "ExtractionProfile",
    ) -> AsyncIterator[Any]:
        """Scoped session acquisition with guaranteed release."""
        handle = await self.launch_session(config, profile)
        try:
            yield handle
        finally:
            await self.close_session(handle)

    @abstractmethod
    async def navigate(self, session: Any, url: str, timeout_ms: int) -> NavigationResult:
        """Navigate and return the main response status (None if unknown)."""

    @abstractmethod
    async def query_all(self, session: Any, selector: str) -> List[Any]:
        """Return all nodes matching selector; empty list when none match."""

    @abstractmethod
    async def query_child(self, node: Any, selector: str) -> Optional[Any]:
        """Return the first descendant of node matching selector."""

    @abstractmethod
    async def text_of(self, node: Any) -> str:
        """Return the rendered text of a node."""

    @abstractmethod
    async def page_body(self, session: Any) -> str:
        """Return the visible body text of the current page."""

    @abstractmethod
    async def page_html(self, session: Any) -> str:
        """Return the raw markup of the current page."""

    @abstractmethod
    async def screenshot(self, session: Any, path: Path) -> None:
        """Write a full-page screenshot to path."""

    @abstractmethod
    async def load_cookies(self, session: Any, path: Path) -> bool:
        """Restore cookies from path. Missing file is not an error."""

    @abstractmethod
    async def save_cookies(self, session: Any, path: Path) -> bool:
        """Persist cookies and storage state to path."""
