"""Catalog scraping orchestrator.

Drives one browser session over an ordered list of catalog URLs for a single
retailer profile and category:

    pre-request delay -> navigate -> challenge check -> recovery
    -> selector cascade -> field extraction -> inter-request delay
"""

import asyncio
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from grocery_scraper import metrics
from grocery_scraper.config import Settings, settings as default_settings
from grocery_scraper.ingest.base import (
    BrowserDriver,
    FatalScrapeError,
    NavigationError,
    Product,
    ScrapeSession,
    SessionCrashedError,
)
from grocery_scraper.ingest.challenge_detector import ChallengeDetector, challenge_detector
from grocery_scraper.ingest.debug_bundle import DebugBundleWriter
from grocery_scraper.ingest.pacing import PacingPolicy
from grocery_scraper.ingest.profiles import ExtractionMode, ExtractionProfile
from grocery_scraper.ingest.selector_cascade import SelectorCascade, selector_cascade
from grocery_scraper.ingest.session_recovery import (
    HumanSolveChannel,
    RecoveryAction,
    SessionRecoveryController,
)
from grocery_scraper.ingest.session_store import SessionStore, session_store as default_session_store
from grocery_scraper.logging_config import get_logger
from grocery_scraper.normalize.field_extractor import (
    FieldExtractor,
    StructuredFieldExtractor,
    field_extractor,
    structured_field_extractor,
)


class CatalogScraper:
    """
    Scrapes catalog pages of one retailer into Products.

    URLs are processed strictly in order within a single browser session.
    Per-page failures are logged and skipped; only a crashed browser session
    ends the run with FatalScrapeError.
    """

    def __init__(
        self,
        profile: ExtractionProfile,
        category: Optional[str] = None,
        driver: Optional[BrowserDriver] = None,
        config: Optional[Settings] = None,
        pacing: Optional[PacingPolicy] = None,
        solve_channel: Optional[HumanSolveChannel] = None,
        detector: Optional[ChallengeDetector] = None,
        cascade: Optional[SelectorCascade] = None,
        extractor: Optional[FieldExtractor] = None,
        structured_extractor: Optional[StructuredFieldExtractor] = None,
        bundle_writer: Optional[DebugBundleWriter] = None,
        session_store: Optional[SessionStore] = None,
    ):
        """
        Initialize the scraper.

        Args:
            profile: Retailer extraction profile
            category: Category stamped on every product (defaults to the
                profile's default category)
            driver: Browser driver (defaults to PlaywrightDriver)
            config: Settings (defaults to global settings)
            pacing: Pacing policy (defaults to one built from settings)
            solve_channel: Operator channel for manual challenge solving
            detector: Challenge detector
            cascade: Selector cascade
            extractor: Free-text field extractor
            structured_extractor: Structured field extractor
            bundle_writer: Debug bundle writer
            session_store: Per-store session files and metadata
        """
        self.profile = profile
        self.category = category or profile.default_category
        self.config = config or default_settings
        if driver is None:
            from grocery_scraper.ingest.fetchers.playwright_driver import PlaywrightDriver

            driver = PlaywrightDriver()
        self.driver = driver
        self.pacing = pacing or PacingPolicy.from_settings(self.config)
        self.solve_channel = solve_channel
        self.detector = detector or challenge_detector
        self.cascade = cascade or selector_cascade
        self.extractor = extractor or field_extractor
        self.structured_extractor = structured_extractor or structured_field_extractor
        self.bundle_writer = bundle_writer or DebugBundleWriter(config=self.config)
        self.session_store = session_store or default_session_store

        self.logger = get_logger(__name__, store=profile.name, category=self.category)
        self._stop_event = asyncio.Event()
        self.last_session: Optional[ScrapeSession] = None

    @property
    def store(self) -> str:
        return self.profile.name

    def request_stop(self) -> None:
        """Stop after the current URL; pending delays and a manual solve wait end immediately."""
        self.logger.info(f"{self.store}: stop requested")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def scrape(self, urls: Sequence[str]) -> List[Product]:
        """
        Scrape all URLs and return the products found, in page order.

        Args:
            urls: Catalog URLs; blank entries are ignored

        Returns:
            Products from every processed page

        Raises:
            FatalScrapeError: If the browser session crashed; carries the
                products collected so far
        """
        targets = [url.strip() for url in urls if url and url.strip()]
        if not targets:
            self.logger.info(f"{self.store}: no URLs to scrape")
            return []

        scrape_session = ScrapeSession(
            urls=targets,
            cookie_path=self.session_store.storage_state_path(self.store),
        )
        self.last_session = scrape_session

        self.logger.info(
            f"{self.store}: scraping {len(targets)} URLs for category '{self.category}'"
        )

        try:
            async with self.driver.session(self.config, self.profile) as browser_session:
                if not self.session_store.has_storage_state(self.store):
                    self.logger.info(f"{self.store}: no saved session, starting fresh")
                elif await self.driver.load_cookies(browser_session, scrape_session.cookie_path):
                    self.logger.info(f"{self.store}: restored session from {scrape_session.cookie_path}")

                recovery = SessionRecoveryController(
                    self.driver,
                    browser_session,
                    scrape_session,
                    self.profile,
                    config=self.config,
                    solve_channel=self.solve_channel,
                    detector=self.detector,
                    bundle_writer=self.bundle_writer,
                    stop_event=self._stop_event,
                )
                await self._run(browser_session, scrape_session, recovery)
        except SessionCrashedError as e:
            self.logger.error(
                f"{self.store}: browser session crashed after "
                f"{len(scrape_session.products)} products: {e}"
            )
            metrics.record_run_aborted(self.store, "session_crashed")
            raise FatalScrapeError(
                f"Browser session for {self.store} crashed: {e}",
                scrape_session.products,
            ) from e

        self._log_summary(scrape_session)
        return list(scrape_session.products)

    async def _run(
        self,
        browser_session: Any,
        scrape_session: ScrapeSession,
        recovery: SessionRecoveryController,
    ) -> None:
        total = len(scrape_session.urls)

        while scrape_session.cursor < total:
            if self.stop_requested:
                self.logger.info(f"{self.store}: stopping before URL {scrape_session.cursor + 1}/{total}")
                break

            url = scrape_session.urls[scrape_session.cursor]
            self.logger.info(f"{self.store}: [{scrape_session.cursor + 1}/{total}] {url}")

            if not await self.pacing.wait(self.pacing.pre_request_delay(), self._stop_event):
                break

            action = await self._process_url(browser_session, scrape_session, recovery, url)
            recovery.reset()
            scrape_session.cursor += 1

            if action == RecoveryAction.ABORT_RUN:
                break

            if scrape_session.cursor < total:
                delay = self.pacing.inter_request_delay()
                self.logger.debug(f"{self.store}: waiting {delay:.1f}s before next URL")
                if not await self.pacing.wait(delay, self._stop_event):
                    break

    async def _process_url(
        self,
        browser_session: Any,
        scrape_session: ScrapeSession,
        recovery: SessionRecoveryController,
        url: str,
    ) -> RecoveryAction:
        """Scrape one URL. Everything except a session crash is absorbed."""
        start_time = time.time()
        status: Optional[int] = None

        try:
            result = await self.driver.navigate(browser_session, url, self.config.navigation_timeout_ms)
            status = result.status

            verdict = await self.detector.inspect(
                self.driver,
                browser_session,
                status,
                self.profile.challenge_markers,
                self.profile.challenge_phrases,
            )
            solved = False
            if verdict.blocked:
                action = await recovery.handle_challenge(url, verdict)
                if action != RecoveryAction.PROCEED:
                    self._record_page(url, "blocked", start_time, status)
                    return action
                solved = True

            products = await self._extract_page(browser_session, url)
        except SessionCrashedError:
            raise
        except NavigationError as e:
            self.logger.error(f"{self.store}: {e}")
            await self._write_error_bundle(browser_session, url, e)
            scrape_session.pages_failed += 1
            self._record_page(url, "failed", start_time, status)
            return RecoveryAction.SKIP_URL
        except Exception as e:
            self.logger.error(f"{self.store}: error scraping {url}: {e}", exc_info=True)
            await self._write_error_bundle(browser_session, url, e)
            scrape_session.pages_failed += 1
            self._record_page(url, "failed", start_time, status)
            return RecoveryAction.SKIP_URL

        scrape_session.products.extend(products)
        metrics.record_products(self.store, self.category, len(products))

        if products:
            scrape_session.pages_ok += 1
            self.logger.info(f"{self.store}: {len(products)} products from {url}")
            await recovery.persist_session()
            self._record_page(url, "ok", start_time, status, solved=solved)
        else:
            scrape_session.pages_empty += 1
            self.logger.warning(f"{self.store}: no products found on {url}")
            self._record_page(url, "empty", start_time, status, solved=solved)

        return RecoveryAction.PROCEED

    async def _extract_page(self, browser_session: Any, url: str) -> List[Product]:
        cascade_result = await self.cascade.resolve_product_nodes(
            self.driver, browser_session, self.profile.product_selectors
        )
        if not cascade_result:
            return []

        products: List[Product] = []
        for node in cascade_result.nodes:
            product = await self._extract_node(node)
            if product is not None:
                products.append(replace(product, source_url=url))

        discarded = len(cascade_result.nodes) - len(products)
        if discarded:
            self.logger.debug(f"{self.store}: discarded {discarded} empty nodes on {url}")
        return products

    async def _extract_node(self, node: Any) -> Optional[Product]:
        if self.profile.mode == ExtractionMode.STRUCTURED:
            fields = await self._read_fields(node)
            return self.structured_extractor.extract(fields, self.category)

        try:
            text = await self.driver.text_of(node)
        except SessionCrashedError:
            raise
        except Exception as e:
            self.logger.debug(f"{self.store}: could not read node text: {e}")
            return None
        return self.extractor.extract(text, self.category, self.profile.bulk_pattern)

    async def _read_fields(self, node: Any) -> Dict[str, Optional[str]]:
        fields: Dict[str, Optional[str]] = {}
        for field_name, selector in self.profile.field_selectors.items():
            try:
                child = await self.driver.query_child(node, selector)
                fields[field_name] = await self.driver.text_of(child) if child is not None else None
            except SessionCrashedError:
                raise
            except Exception as e:
                self.logger.debug(f"{self.store}: field '{field_name}' unreadable: {e}")
                fields[field_name] = None
        return fields

    async def _write_error_bundle(self, browser_session: Any, url: str, error: Exception) -> None:
        await self.bundle_writer.write_page_bundle(
            self.driver,
            browser_session,
            kind="error",
            store=self.store,
            url=url,
            include_html=False,
            metadata={"error": str(error), "error_type": type(error).__name__},
        )

    def _record_page(
        self,
        url: str,
        outcome: str,
        start_time: float,
        http_status: Optional[int],
        solved: bool = False,
    ) -> None:
        metrics.record_page(self.store, outcome, time.time() - start_time)
        try:
            self.session_store.record_page(self.store, outcome, http_status=http_status, solved=solved)
        except Exception as e:
            self.logger.debug(f"{self.store}: could not update session metadata for {url}: {e}")

    def _log_summary(self, scrape_session: ScrapeSession) -> None:
        message = (
            f"{self.store}: finished {scrape_session.cursor}/{len(scrape_session.urls)} URLs, "
            f"{len(scrape_session.products)} products "
            f"(ok={scrape_session.pages_ok}, empty={scrape_session.pages_empty}, "
            f"blocked={scrape_session.pages_blocked}, failed={scrape_session.pages_failed})"
        )
        metadata = self.session_store.load_metadata(self.store)
        if metadata is not None and metadata.pages_total:
            message += f"; session block rate {metadata.block_rate:.0%} over {metadata.pages_total} pages"

        if scrape_session.aborted:
            self.logger.warning(f"{message}; aborted: {scrape_session.abort_reason}")
        else:
            self.logger.info(message)
