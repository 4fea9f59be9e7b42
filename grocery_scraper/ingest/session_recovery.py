"""Challenge recovery state machine.

States: NORMAL -> CHALLENGED -> (SOLVING | BLOCKED) -> NORMAL | ABORTED

- CHALLENGED writes a debug bundle for the page.
- SOLVING is entered at most once per scrape session, and only when human
  solving is allowed. A cleared challenge persists the session cookies.
- BLOCKED abandons the current URL. A block after a solved challenge ends
  the run (ABORTED) unless the repeat-block policy says "skip".
"""

import asyncio
import logging
import sys
import threading
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Any, Deque, Optional, Tuple

from grocery_scraper import metrics
from grocery_scraper.config import Settings, settings as default_settings
from grocery_scraper.ingest.base import BrowserDriver, ScrapeSession, SessionCrashedError
from grocery_scraper.ingest.challenge_detector import ChallengeDetector, ChallengeVerdict, challenge_detector
from grocery_scraper.ingest.debug_bundle import DebugBundleWriter
from grocery_scraper.ingest.profiles import ExtractionProfile

logger = logging.getLogger(__name__)


class RecoveryState(str, Enum):
    NORMAL = "normal"
    CHALLENGED = "challenged"
    SOLVING = "solving"
    BLOCKED = "blocked"
    ABORTED = "aborted"


class RecoveryAction(str, Enum):
    """What the orchestrator should do with the current URL."""

    PROCEED = "proceed"  # Page is clear, extract products
    SKIP_URL = "skip_url"  # Abandon this URL, continue with the next
    ABORT_RUN = "abort_run"  # Stop the run, keep collected products


class HumanSolveChannel(ABC):
    """Prompt-and-await channel to a human operator."""

    @abstractmethod
    async def request_solve(self, url: str, reason: str, headless: bool) -> None:
        """Ask the operator to solve the challenge on url."""

    @abstractmethod
    async def wait_for_ack(self) -> None:
        """Return once the operator signals the challenge is solved."""


class ConsoleSolveChannel(HumanSolveChannel):
    """
    Operator prompt on the console; Enter acknowledges.

    One stdin reader thread serves the whole process. Each Enter resolves the
    oldest prompt still waiting. A prompt that timed out or was cancelled
    leaves the queue, so a stale wait never takes an Enter meant for another
    scraper.
    """

    _lock = threading.Lock()
    _waiters: Deque[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = deque()
    _reader: Optional[threading.Thread] = None

    async def request_solve(self, url: str, reason: str, headless: bool) -> None:
        print(
            f"\nChallenge detected on {url} ({reason}).\n"
            "Please solve the challenge in the opened browser window, then press Enter to continue...",
            flush=True,
        )
        if headless:
            print("Note: set HEADLESS=false to see the browser UI.", flush=True)

    async def wait_for_ack(self) -> None:
        loop = asyncio.get_running_loop()
        waiter = (loop, loop.create_future())
        cls = ConsoleSolveChannel
        with cls._lock:
            cls._waiters.append(waiter)
            if cls._reader is None or not cls._reader.is_alive():
                # Daemon thread: an unanswered prompt must not hold up interpreter exit
                cls._reader = threading.Thread(target=cls._read_lines, name="solve-ack", daemon=True)
                cls._reader.start()
        try:
            await waiter[1]
        finally:
            with cls._lock:
                if waiter in cls._waiters:
                    cls._waiters.remove(waiter)

    @classmethod
    def _read_lines(cls) -> None:
        while sys.stdin.readline():
            with cls._lock:
                while cls._waiters:
                    loop, future = cls._waiters.popleft()
                    if future.done():
                        continue
                    try:
                        loop.call_soon_threadsafe(_resolve_ack, future)
                    except RuntimeError:
                        # Event loop already closed
                        continue
                    break
        logger.debug("Console solve channel reached end of input")


def _resolve_ack(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class EventSolveChannel(HumanSolveChannel):
    """Channel acknowledged programmatically through an asyncio.Event."""

    def __init__(self):
        self.requests: list[str] = []
        self._ack = asyncio.Event()

    async def request_solve(self, url: str, reason: str, headless: bool) -> None:
        self._ack.clear()
        self.requests.append(url)
        logger.info(f"Human solve requested for {url} ({reason})")

    def acknowledge(self) -> None:
        self._ack.set()

    async def wait_for_ack(self) -> None:
        await self._ack.wait()


class SessionRecoveryController:
    """Coordinates challenge handling for one scrape session."""

    def __init__(
        self,
        driver: BrowserDriver,
        browser_session: Any,
        scrape_session: ScrapeSession,
        profile: ExtractionProfile,
        config: Optional[Settings] = None,
        solve_channel: Optional[HumanSolveChannel] = None,
        detector: Optional[ChallengeDetector] = None,
        bundle_writer: Optional[DebugBundleWriter] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.driver = driver
        self.browser_session = browser_session
        self.scrape_session = scrape_session
        self.profile = profile
        self.config = config or default_settings
        self.solve_channel = solve_channel or ConsoleSolveChannel()
        self.detector = detector or challenge_detector
        self.bundle_writer = bundle_writer or DebugBundleWriter(config=self.config)
        self.stop_event = stop_event
        self.state = RecoveryState.NORMAL

    @property
    def store(self) -> str:
        return self.profile.name

    def _transition(self, new_state: RecoveryState) -> None:
        if new_state != self.state:
            logger.debug(f"{self.store}: recovery {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def handle_challenge(self, url: str, verdict: ChallengeVerdict) -> RecoveryAction:
        """
        Handle a page classified as challenged.

        Args:
            url: URL that was challenged
            verdict: Detector verdict for the page

        Returns:
            RecoveryAction for the orchestrator

        Raises:
            SessionCrashedError: If the browser session died meanwhile
        """
        self._transition(RecoveryState.CHALLENGED)
        metrics.record_challenge(self.store, verdict.reason)
        logger.warning(f"{self.store}: challenge detected on {url} ({verdict.reason})")

        await self.bundle_writer.write_page_bundle(
            self.driver,
            self.browser_session,
            kind="challenge",
            store=self.store,
            url=url,
            metadata={"reason": verdict.reason, "state": self.state.value},
        )

        session = self.scrape_session
        if self.config.allow_human_challenge_solve and not session.solve_attempted:
            return await self._solve(url, verdict)

        return self._block(url, repeat=session.challenge_solved_this_run)

    async def _solve(self, url: str, verdict: ChallengeVerdict) -> RecoveryAction:
        self._transition(RecoveryState.SOLVING)
        self.scrape_session.solve_attempted = True

        headless = self.profile.headless if self.profile.headless is not None else self.config.headless
        try:
            await self.solve_channel.request_solve(url, verdict.reason, headless)
        except Exception as e:
            logger.warning(f"{self.store}: could not prompt operator: {e}")

        solved = await self._await_clearance()
        metrics.record_human_solve(self.store, solved)

        if not solved and self.stop_event is not None and self.stop_event.is_set():
            logger.info(f"{self.store}: stop requested while waiting for manual solve on {url}")
            return self._block(url, repeat=False)

        if not solved:
            logger.warning(
                f"{self.store}: timed out after {self.config.human_solve_timeout_seconds:.0f}s "
                f"waiting for manual solve on {url}"
            )
            return self._block(url, repeat=False)

        logger.info(f"{self.store}: challenge cleared on {url}, continuing")
        self._transition(RecoveryState.NORMAL)
        self.scrape_session.challenge_solved_this_run = True
        await self.persist_session()
        return RecoveryAction.PROCEED

    async def _await_clearance(self) -> bool:
        """
        Wait until the operator acknowledges or the challenge disappears.

        Bounded by ``human_solve_timeout_seconds`` and cut short by the stop
        event; cancellation propagates.
        """
        ack_task: Optional[asyncio.Future] = asyncio.ensure_future(self.solve_channel.wait_for_ack())
        stop_task: Optional[asyncio.Future] = None
        if self.stop_event is not None:
            stop_task = asyncio.ensure_future(self.stop_event.wait())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.human_solve_timeout_seconds
        poll = max(0.01, self.config.human_solve_poll_interval_seconds)

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return False

                waiters = {task for task in (ack_task, stop_task) if task is not None}
                if waiters:
                    done, _ = await asyncio.wait(waiters, timeout=min(poll, remaining))
                else:
                    done = set()
                    await asyncio.sleep(min(poll, remaining))

                if stop_task is not None and stop_task in done:
                    return False
                if ack_task is not None and ack_task in done:
                    if not ack_task.cancelled() and ack_task.exception() is None:
                        return True
                    logger.warning(f"{self.store}: operator channel failed, polling page only")
                    ack_task = None

                if await self._challenge_cleared():
                    return True
        finally:
            for task in (ack_task, stop_task):
                if task is not None and not task.done():
                    task.cancel()

    async def _challenge_cleared(self) -> bool:
        try:
            probe = await self.detector.probe_markers(
                self.driver, self.browser_session, self.profile.challenge_markers
            )
            if probe.matched:
                return False
            body = await self.driver.page_body(self.browser_session)
        except SessionCrashedError:
            raise
        except Exception as e:
            logger.debug(f"{self.store}: clearance poll failed: {e}")
            return False

        verdict = self.detector.classify(None, probe, body, self.profile.challenge_phrases)
        return not verdict.blocked

    def _block(self, url: str, repeat: bool) -> RecoveryAction:
        self._transition(RecoveryState.BLOCKED)
        self.scrape_session.pages_blocked += 1

        if repeat and self.config.repeat_block_policy == "abort":
            self._transition(RecoveryState.ABORTED)
            self.scrape_session.aborted = True
            self.scrape_session.abort_reason = "repeat_block"
            metrics.record_run_aborted(self.store, "repeat_block")
            logger.warning(
                f"{self.store}: re-challenged on {url} after a solved challenge; "
                "stopping the run to avoid a harder block"
            )
            return RecoveryAction.ABORT_RUN

        logger.warning(f"{self.store}: access blocked on {url}, skipping")
        return RecoveryAction.SKIP_URL

    def reset(self) -> None:
        """Return to NORMAL before the next URL. ABORTED is terminal."""
        if self.state != RecoveryState.ABORTED:
            self._transition(RecoveryState.NORMAL)

    async def persist_session(self) -> bool:
        """
        Best-effort save of cookies and storage state.

        Returns:
            True if the state was written
        """
        cookie_path = self.scrape_session.cookie_path
        if cookie_path is None:
            return False
        try:
            cookie_path.parent.mkdir(parents=True, exist_ok=True)
            saved = await self.driver.save_cookies(self.browser_session, cookie_path)
        except SessionCrashedError:
            raise
        except Exception as e:
            logger.warning(f"{self.store}: failed to save session state: {e}")
            return False
        if saved:
            logger.debug(f"{self.store}: session state saved to {cookie_path}")
        return bool(saved)
