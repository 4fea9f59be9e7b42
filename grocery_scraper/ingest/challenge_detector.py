"""Challenge detection for anti-bot interstitials.

A page counts as challenged when any single signal fires:
- HTTP 403 on the main response
- a challenge widget (Turnstile iframe, captcha container) in the DOM
- a challenge phrase in the visible body text
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from selectolax.parser import HTMLParser

from grocery_scraper.ingest.base import BrowserDriver, SessionCrashedError
from grocery_scraper.ingest.profiles import DEFAULT_CHALLENGE_MARKERS, DEFAULT_CHALLENGE_PHRASES

logger = logging.getLogger(__name__)

BLOCKED_STATUSES = frozenset({403})


@dataclass
class DomProbe:
    """Result of probing a page for challenge widget markers."""

    matched: bool = False
    marker: Optional[str] = None

    @classmethod
    def from_html(cls, html: Optional[str], markers: Sequence[str]) -> "DomProbe":
        """
        Probe raw markup instead of the live DOM.

        Args:
            html: Page markup
            markers: CSS selectors of challenge widgets

        Returns:
            DomProbe for the first marker found
        """
        if not html:
            return cls()
        try:
            parser = HTMLParser(html)
        except Exception as e:
            logger.debug(f"Failed to parse HTML for challenge probe: {e}")
            return cls()

        for marker in markers:
            try:
                if parser.css_first(marker) is not None:
                    return cls(matched=True, marker=marker)
            except Exception as e:
                logger.debug(f"Marker {marker} not usable on static HTML: {e}")
        return cls()


@dataclass
class ChallengeVerdict:
    """Classification of a page."""

    blocked: bool
    reason: str = ""


class ChallengeDetector:
    """Classifies pages as challenged from status, DOM probe and body text."""

    def __init__(self, phrases: Optional[Sequence[str]] = None):
        self.phrases = [p.lower() for p in (phrases or DEFAULT_CHALLENGE_PHRASES)]

    def classify(
        self,
        response_status: Optional[int],
        dom_probe: Optional[DomProbe],
        body_text: Optional[str],
        phrases: Optional[Sequence[str]] = None,
    ) -> ChallengeVerdict:
        """
        Classify a page. Signals are OR-ed; the first one found names the reason.

        Args:
            response_status: Main response status, None if unknown
            dom_probe: Challenge widget probe result
            body_text: Visible page text
            phrases: Optional phrase set overriding the detector default

        Returns:
            ChallengeVerdict
        """
        if response_status in BLOCKED_STATUSES:
            return ChallengeVerdict(blocked=True, reason=f"http_{response_status}")

        if dom_probe is not None and dom_probe.matched:
            return ChallengeVerdict(blocked=True, reason=f"challenge_widget:{dom_probe.marker}")

        phrase = self._find_phrase(body_text, phrases)
        if phrase:
            return ChallengeVerdict(blocked=True, reason=f"challenge_phrase:{phrase}")

        return ChallengeVerdict(blocked=False)

    def _find_phrase(self, body_text: Optional[str], phrases: Optional[Sequence[str]]) -> Optional[str]:
        if not body_text:
            return None
        content = body_text.lower()
        candidates = [p.lower() for p in phrases] if phrases else self.phrases
        for phrase in candidates:
            if phrase in content:
                return phrase
        return None

    async def probe_markers(
        self,
        driver: BrowserDriver,
        session: Any,
        markers: Sequence[str] = DEFAULT_CHALLENGE_MARKERS,
    ) -> DomProbe:
        """
        Probe the live DOM for challenge widgets.

        Falls back to parsing the page markup when a live query fails.

        Raises:
            SessionCrashedError: If the session died
        """
        try:
            for marker in markers:
                if await driver.query_all(session, marker):
                    return DomProbe(matched=True, marker=marker)
            return DomProbe()
        except SessionCrashedError:
            raise
        except Exception as e:
            logger.debug(f"Live challenge probe failed, using page markup: {e}")

        return DomProbe.from_html(await driver.page_html(session), markers)

    async def inspect(
        self,
        driver: BrowserDriver,
        session: Any,
        response_status: Optional[int],
        markers: Sequence[str] = DEFAULT_CHALLENGE_MARKERS,
        phrases: Optional[Sequence[str]] = None,
    ) -> ChallengeVerdict:
        """
        Probe the current page and classify it.

        Args:
            driver: Browser driver
            session: Driver session handle
            response_status: Status of the navigation that loaded the page
            markers: Challenge widget selectors
            phrases: Challenge phrases

        Returns:
            ChallengeVerdict
        """
        # 403 alone is conclusive; skip the DOM round-trips
        if response_status in BLOCKED_STATUSES:
            return self.classify(response_status, None, None)

        probe = await self.probe_markers(driver, session, markers)
        body_text = ""
        if not probe.matched:
            try:
                body_text = await driver.page_body(session)
            except SessionCrashedError:
                raise
            except Exception as e:
                logger.debug(f"Could not read body text: {e}")

        return self.classify(response_status, probe, body_text, phrases)


challenge_detector = ChallengeDetector()
