"""Tests for the challenge recovery state machine."""

import asyncio
import queue
import sys
import time
from collections import deque
from pathlib import Path

import pytest

from fakes import CHALLENGE_IFRAME, AckingChannel, FakeDriver, FakeNode, FakePage, FakeSession
from grocery_scraper.ingest.base import ScrapeSession
from grocery_scraper.ingest.challenge_detector import ChallengeVerdict
from grocery_scraper.ingest.debug_bundle import DebugBundleWriter
from grocery_scraper.ingest.profiles import ExtractionProfile
from grocery_scraper.ingest.session_recovery import (
    ConsoleSolveChannel,
    EventSolveChannel,
    RecoveryAction,
    RecoveryState,
    SessionRecoveryController,
)

URL = "https://shop.example/catalog/milk"
VERDICT = ChallengeVerdict(blocked=True, reason=f"challenge_widget:{CHALLENGE_IFRAME}")


class PageClearingChannel(EventSolveChannel):
    """Operator who solves the challenge but never presses Enter."""

    def __init__(self, page: FakePage):
        super().__init__()
        self.page = page

    async def request_solve(self, url, reason, headless):
        await super().request_solve(url, reason, headless)
        self.page.nodes.pop(CHALLENGE_IFRAME, None)


def _challenged_page() -> FakePage:
    return FakePage(nodes={CHALLENGE_IFRAME: [FakeNode()]}, html="<iframe src='turnstile'></iframe>")


def _controller(settings, tmp_path, page=None, channel=None, stop_event=None, **overrides):
    config = settings.model_copy(update=overrides) if overrides else settings
    driver = FakeDriver()
    browser_session = FakeSession(current=page or _challenged_page())
    scrape_session = ScrapeSession(urls=[URL], cookie_path=tmp_path / "sessions" / "teststore" / "storage_state.json")
    controller = SessionRecoveryController(
        driver,
        browser_session,
        scrape_session,
        ExtractionProfile(name="teststore", product_selectors=[".product-card"]),
        config=config,
        solve_channel=channel or EventSolveChannel(),
        bundle_writer=DebugBundleWriter(config=config),
        stop_event=stop_event,
    )
    return controller, driver, scrape_session


class TestSolvingDisabled:

    @pytest.mark.asyncio
    async def test_challenge_skips_url(self, test_settings, tmp_path):
        controller, driver, session = _controller(test_settings, tmp_path)

        action = await controller.handle_challenge(URL, VERDICT)

        assert action == RecoveryAction.SKIP_URL
        assert controller.state == RecoveryState.BLOCKED
        assert session.pages_blocked == 1
        assert session.solve_attempted is False
        assert controller.solve_channel.requests == []

    @pytest.mark.asyncio
    async def test_challenge_writes_debug_bundle(self, test_settings, tmp_path):
        controller, driver, _ = _controller(test_settings, tmp_path)

        await controller.handle_challenge(URL, VERDICT)

        bundles = list((Path(test_settings.debug_bundle_path) / "teststore").iterdir())
        assert len(bundles) == 1
        assert (bundles[0] / "html.html").exists()
        assert (bundles[0] / "screenshot.png").exists()
        assert (bundles[0] / "metadata.json").exists()

    @pytest.mark.asyncio
    async def test_no_screenshot_when_disabled(self, test_settings, tmp_path):
        controller, driver, _ = _controller(test_settings, tmp_path, save_error_screenshots=False)

        await controller.handle_challenge(URL, VERDICT)

        assert driver.screenshots == []


class TestHumanSolve:

    @pytest.mark.asyncio
    async def test_acknowledged_solve_proceeds(self, test_settings, tmp_path):
        controller, driver, session = _controller(
            test_settings, tmp_path, channel=AckingChannel(), allow_human_challenge_solve=True
        )

        action = await controller.handle_challenge(URL, VERDICT)

        assert action == RecoveryAction.PROCEED
        assert controller.state == RecoveryState.NORMAL
        assert session.challenge_solved_this_run is True
        assert session.solve_attempted is True
        assert driver.saved_cookies == [session.cookie_path]
        assert controller.solve_channel.requests == [URL]

    @pytest.mark.asyncio
    async def test_cleared_page_counts_as_solved(self, test_settings, tmp_path):
        page = _challenged_page()
        controller, driver, session = _controller(
            test_settings,
            tmp_path,
            page=page,
            channel=PageClearingChannel(page),
            allow_human_challenge_solve=True,
        )

        action = await controller.handle_challenge(URL, VERDICT)

        assert action == RecoveryAction.PROCEED
        assert session.challenge_solved_this_run is True

    @pytest.mark.asyncio
    async def test_timeout_skips_url(self, test_settings, tmp_path):
        controller, driver, session = _controller(
            test_settings,
            tmp_path,
            allow_human_challenge_solve=True,
            human_solve_timeout_seconds=0.05,
        )

        action = await controller.handle_challenge(URL, VERDICT)

        assert action == RecoveryAction.SKIP_URL
        assert session.challenge_solved_this_run is False
        assert session.solve_attempted is True
        assert driver.saved_cookies == []

    @pytest.mark.asyncio
    async def test_stop_event_ends_solve_wait(self, test_settings, tmp_path):
        stop_event = asyncio.Event()
        controller, driver, session = _controller(
            test_settings,
            tmp_path,
            stop_event=stop_event,
            allow_human_challenge_solve=True,
            human_solve_timeout_seconds=30.0,
        )
        asyncio.get_running_loop().call_later(0.05, stop_event.set)

        start = time.monotonic()
        action = await controller.handle_challenge(URL, VERDICT)

        assert time.monotonic() - start < 5.0
        assert action == RecoveryAction.SKIP_URL
        assert session.challenge_solved_this_run is False
        assert session.pages_blocked == 1
        assert driver.saved_cookies == []

    @pytest.mark.asyncio
    async def test_only_one_solve_attempt_per_run(self, test_settings, tmp_path):
        controller, driver, session = _controller(
            test_settings,
            tmp_path,
            allow_human_challenge_solve=True,
            human_solve_timeout_seconds=0.05,
        )

        await controller.handle_challenge(URL, VERDICT)
        controller.reset()
        action = await controller.handle_challenge(URL, VERDICT)

        # The timed-out attempt was never a solve, so this is a plain skip
        assert action == RecoveryAction.SKIP_URL
        assert controller.solve_channel.requests == [URL]


class TestRepeatBlock:

    @pytest.mark.asyncio
    async def test_block_after_solve_aborts_run(self, test_settings, tmp_path):
        controller, driver, session = _controller(
            test_settings, tmp_path, channel=AckingChannel(), allow_human_challenge_solve=True
        )

        assert await controller.handle_challenge(URL, VERDICT) == RecoveryAction.PROCEED
        controller.reset()
        action = await controller.handle_challenge(URL, VERDICT)

        assert action == RecoveryAction.ABORT_RUN
        assert controller.state == RecoveryState.ABORTED
        assert session.aborted is True
        assert session.abort_reason == "repeat_block"

    @pytest.mark.asyncio
    async def test_skip_policy_keeps_going(self, test_settings, tmp_path):
        controller, driver, session = _controller(
            test_settings,
            tmp_path,
            channel=AckingChannel(),
            allow_human_challenge_solve=True,
            repeat_block_policy="skip",
        )

        await controller.handle_challenge(URL, VERDICT)
        controller.reset()
        action = await controller.handle_challenge(URL, VERDICT)

        assert action == RecoveryAction.SKIP_URL
        assert session.aborted is False

    @pytest.mark.asyncio
    async def test_aborted_is_terminal(self, test_settings, tmp_path):
        controller, driver, session = _controller(
            test_settings, tmp_path, channel=AckingChannel(), allow_human_challenge_solve=True
        )

        await controller.handle_challenge(URL, VERDICT)
        controller.reset()
        await controller.handle_challenge(URL, VERDICT)
        controller.reset()

        assert controller.state == RecoveryState.ABORTED


@pytest.mark.asyncio
async def test_persist_session_without_cookie_path(test_settings, tmp_path):
    controller, driver, session = _controller(test_settings, tmp_path)
    session.cookie_path = None

    assert await controller.persist_session() is False
    assert driver.saved_cookies == []


@pytest.mark.asyncio
async def test_event_channel_acknowledge():
    channel = EventSolveChannel()
    await channel.request_solve(URL, "http_403", headless=True)
    channel.acknowledge()

    await channel.wait_for_ack()

    assert channel.requests == [URL]


class QueuedStdin:
    """Blocking stand-in for sys.stdin fed one line at a time."""

    def __init__(self):
        self.lines = queue.Queue()

    def feed(self, line):
        self.lines.put(line)

    def readline(self):
        return self.lines.get()


class TestConsoleSolveChannel:

    def setup_method(self):
        self.stdin = QueuedStdin()

    def teardown_method(self):
        # End of input stops the reader thread
        self.stdin.feed("")

    @pytest.mark.asyncio
    async def test_timed_out_prompt_does_not_take_next_enter(self, monkeypatch):
        monkeypatch.setattr(sys, "stdin", self.stdin)
        monkeypatch.setattr(ConsoleSolveChannel, "_waiters", deque())
        monkeypatch.setattr(ConsoleSolveChannel, "_reader", None)
        first, second = ConsoleSolveChannel(), ConsoleSolveChannel()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(first.wait_for_ack(), timeout=0.05)

        pending = asyncio.ensure_future(second.wait_for_ack())
        await asyncio.sleep(0.01)
        self.stdin.feed("\n")

        await asyncio.wait_for(pending, timeout=5.0)
        assert not ConsoleSolveChannel._waiters

    @pytest.mark.asyncio
    async def test_one_reader_thread_for_all_prompts(self, monkeypatch):
        monkeypatch.setattr(sys, "stdin", self.stdin)
        monkeypatch.setattr(ConsoleSolveChannel, "_waiters", deque())
        monkeypatch.setattr(ConsoleSolveChannel, "_reader", None)

        waits = [asyncio.ensure_future(ConsoleSolveChannel().wait_for_ack()) for _ in range(2)]
        await asyncio.sleep(0.01)
        reader = ConsoleSolveChannel._reader

        self.stdin.feed("\n")
        await asyncio.wait_for(waits[0], timeout=5.0)
        assert not waits[1].done()

        self.stdin.feed("\n")
        await asyncio.wait_for(waits[1], timeout=5.0)
        assert ConsoleSolveChannel._reader is reader
