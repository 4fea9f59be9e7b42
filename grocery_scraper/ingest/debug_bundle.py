"""Debug bundle writer for challenge and failure analysis."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from grocery_scraper.config import Settings, settings as default_settings
from grocery_scraper.ingest.base import BrowserDriver, SessionCrashedError

logger = logging.getLogger(__name__)


class DebugBundleWriter:
    """
    Writes debug bundles for challenged or failed pages.

    Bundles include:
    - Page markup (html.html)
    - Full-page screenshot (screenshot.png), when enabled
    - Metadata about the page visit (metadata.json)

    Writing is best-effort and never raises into the scrape loop, except
    when the browser session itself has crashed.
    """

    def __init__(self, base_path: Optional[str] = None, config: Optional[Settings] = None):
        """
        Initialize debug bundle writer.

        Args:
            base_path: Base path for bundle storage (defaults to config)
            config: Settings controlling which artifacts are written
        """
        self.config = config or default_settings
        self.base_path = Path(base_path or self.config.debug_bundle_path)

    def _get_bundle_dir(self, kind: str, store: str, timestamp: Optional[datetime] = None) -> Path:
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        timestamp_str = timestamp.strftime("%Y%m%d_%H%M%S_%f")
        return self.base_path / store / f"{timestamp_str}_{kind}"

    async def write_page_bundle(
        self,
        driver: BrowserDriver,
        session: Any,
        kind: str,
        store: str,
        url: str,
        include_html: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Path]:
        """
        Write a bundle for the page currently loaded in a session.

        Args:
            driver: Browser driver
            session: Driver session handle
            kind: Bundle kind, e.g. "challenge" or "error"
            store: Store identifier
            url: Requested URL
            include_html: Whether to dump the page markup
            metadata: Optional additional metadata

        Returns:
            Path to the bundle directory, or None if nothing was written
        """
        write_html = include_html and self.config.save_challenge_html
        write_screenshot = self.config.save_error_screenshots
        if not write_html and not write_screenshot:
            return None

        bundle_dir = self._get_bundle_dir(kind, store)
        artifacts = []
        try:
            bundle_dir.mkdir(parents=True, exist_ok=True)

            if write_html:
                html = await driver.page_html(session)
                (bundle_dir / "html.html").write_text(html or "", encoding="utf-8")
                artifacts.append("html.html")

            if write_screenshot:
                await driver.screenshot(session, bundle_dir / "screenshot.png")
                artifacts.append("screenshot.png")
        except SessionCrashedError:
            raise
        except Exception as e:
            logger.warning(f"Failed to write {kind} bundle for {url}: {e}")

        metadata_dict = {
            "kind": kind,
            "store": store,
            "url": url,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "artifacts": artifacts,
            **(metadata or {}),
        }
        try:
            with open(bundle_dir / "metadata.json", "w", encoding="utf-8") as f:
                json.dump(metadata_dict, f, indent=2, default=str)
        except OSError as e:
            logger.warning(f"Failed to write bundle metadata for {url}: {e}")
            return None

        logger.info(f"Wrote {kind} debug bundle to {bundle_dir}")
        return bundle_dir
