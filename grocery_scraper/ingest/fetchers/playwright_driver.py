"""Playwright-backed browser driver."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    ElementHandle,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from grocery_scraper.config import Settings
from grocery_scraper.ingest.base import (
    BrowserDriver,
    NavigationError,
    NavigationResult,
    SessionCrashedError,
)
from grocery_scraper.ingest.profiles import ExtractionProfile

logger = logging.getLogger(__name__)

# Chromium launch args that drop the most obvious automation flags
STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
]

# Hide webdriver property and fill in what headless Chrome leaves empty
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
"""

CLOSED_MARKERS = (
    "has been closed",
    "browser has disconnected",
    "target closed",
    "page crashed",
)


@dataclass
class PlaywrightSession:
    """Everything owned by one driver session."""

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    crashed: bool = False


def _is_closed_error(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in CLOSED_MARKERS)


class PlaywrightDriver(BrowserDriver):
    """Browser driver on the Playwright async API."""

    async def launch_session(
        self,
        config: Settings,
        profile: ExtractionProfile,
    ) -> PlaywrightSession:
        """
        Launch browser, context and page for a profile.

        Args:
            config: Scraper settings
            profile: Extraction profile with browser hints

        Returns:
            PlaywrightSession
        """
        headless = profile.headless if profile.headless is not None else config.headless
        playwright = await async_playwright().start()

        try:
            browser_type = getattr(playwright, profile.browser, playwright.chromium)
            launch_options = {"headless": headless, "slow_mo": config.slow_mo_ms}
            if profile.browser == "chromium":
                launch_options["args"] = STEALTH_ARGS

            logger.info(f"Launching {profile.browser} (headless={headless}) for {profile.name}")
            browser = await browser_type.launch(**launch_options)

            headers = {"Accept-Language": profile.accept_language}
            if profile.referer:
                headers["Referer"] = profile.referer

            context_options = {
                "ignore_https_errors": True,
                "java_script_enabled": True,
                "user_agent": profile.user_agent,
                "locale": profile.locale,
                "viewport": {"width": profile.viewport[0], "height": profile.viewport[1]},
                "extra_http_headers": headers,
            }
            context = await browser.new_context(**context_options)
            page = await context.new_page()
        except Exception:
            await playwright.stop()
            raise

        session = PlaywrightSession(playwright=playwright, browser=browser, context=context, page=page)

        def _on_crash(_page):
            session.crashed = True
            logger.error(f"Page crashed for {profile.name}")

        page.on("crash", _on_crash)
        page.set_default_navigation_timeout(config.navigation_timeout_ms)

        if config.enable_logging:
            page.on("console", lambda msg: logger.debug(f"BROWSER: {msg.text}"))
            page.on("pageerror", lambda err: logger.debug(f"PAGE ERROR: {err}"))

        try:
            await page.add_init_script(STEALTH_INIT_SCRIPT)
        except PlaywrightError as e:
            logger.debug(f"Error injecting stealth script: {e}")

        return session

    async def close_session(self, session: PlaywrightSession) -> None:
        """Close context, browser and the Playwright driver."""
        for closer, label in (
            (session.context.close, "context"),
            (session.browser.close, "browser"),
            (session.playwright.stop, "playwright"),
        ):
            try:
                await closer()
            except Exception as e:
                logger.debug(f"Error closing {label}: {e}")

    def _check_alive(self, session: PlaywrightSession) -> None:
        if session.crashed or session.page.is_closed():
            raise SessionCrashedError("Browser page is closed or crashed")

    def _translate(self, session: PlaywrightSession, error: Exception) -> Exception:
        if session.crashed or _is_closed_error(error):
            return SessionCrashedError(str(error))
        return error

    async def navigate(self, session: PlaywrightSession, url: str, timeout_ms: int) -> NavigationResult:
        self._check_alive(session)
        try:
            response = await session.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            raise NavigationError(url, "Navigation timeout")
        except PlaywrightError as e:
            translated = self._translate(session, e)
            if isinstance(translated, SessionCrashedError):
                raise translated
            raise NavigationError(url, str(e))

        status = response.status if response is not None else None
        return NavigationResult(status=status, final_url=session.page.url)

    async def query_all(self, session: PlaywrightSession, selector: str) -> List[ElementHandle]:
        self._check_alive(session)
        try:
            return await session.page.query_selector_all(selector)
        except PlaywrightError as e:
            raise self._translate(session, e)

    async def query_child(self, node: ElementHandle, selector: str) -> Optional[ElementHandle]:
        return await node.query_selector(selector)

    async def text_of(self, node: ElementHandle) -> str:
        return (await node.inner_text()) or ""

    async def page_body(self, session: PlaywrightSession) -> str:
        self._check_alive(session)
        try:
            return await session.page.locator("body").inner_text(timeout=5000)
        except PlaywrightTimeoutError:
            return ""
        except PlaywrightError as e:
            raise self._translate(session, e)

    async def page_html(self, session: PlaywrightSession) -> str:
        self._check_alive(session)
        try:
            return await session.page.content()
        except PlaywrightError as e:
            raise self._translate(session, e)

    async def screenshot(self, session: PlaywrightSession, path: Path) -> None:
        self._check_alive(session)
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            await session.page.screenshot(path=str(path), full_page=True)
        except PlaywrightError as e:
            raise self._translate(session, e)
        logger.info(f"Saved screenshot: {path}")

    async def load_cookies(self, session: PlaywrightSession, path: Path) -> bool:
        path = Path(path)
        if not path.exists():
            return False
        try:
            with open(path, "r", encoding="utf-8") as f:
                state = json.load(f)
            cookies = state.get("cookies", []) if isinstance(state, dict) else state
            if cookies:
                await session.context.add_cookies(cookies)
            return True
        except Exception as e:
            logger.warning(f"Failed to load cookies from {path}: {e}")
            return False

    async def save_cookies(self, session: PlaywrightSession, path: Path) -> bool:
        self._check_alive(session)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await session.context.storage_state(path=str(path))
            return True
        except PlaywrightError as e:
            raise self._translate(session, e)
