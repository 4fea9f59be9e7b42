"""Per-store browser session persistence across runs.

Each store gets a directory under ``session_storage_path``:

    <store>/storage_state.json   Playwright cookies and local storage
    <store>/metadata.json        page outcome counters, last block, last solve
"""

import json
import logging
import shutil
from dataclasses import dataclass, asdict, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from grocery_scraper.config import settings

logger = logging.getLogger(__name__)

PAGE_OUTCOMES = ("ok", "empty", "blocked", "failed")
DATE_FIELDS = ("created_at", "last_used", "last_blocked_at", "last_solved_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionMetadata:
    """Health record of a store's persisted session."""

    store: str
    created_at: datetime = field(default_factory=_utcnow)
    last_used: Optional[datetime] = None
    pages_ok: int = 0
    pages_empty: int = 0
    pages_blocked: int = 0
    pages_failed: int = 0
    last_blocked_at: Optional[datetime] = None
    last_solved_at: Optional[datetime] = None
    last_http_status: Optional[int] = None

    @property
    def pages_total(self) -> int:
        return self.pages_ok + self.pages_empty + self.pages_blocked + self.pages_failed

    @property
    def block_rate(self) -> float:
        """Share of visited pages that ended blocked."""
        return self.pages_blocked / self.pages_total if self.pages_total else 0.0

    def to_json(self) -> Dict[str, Any]:
        return {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in asdict(self).items()
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SessionMetadata":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        for key in DATE_FIELDS:
            if values.get(key):
                values[key] = datetime.fromisoformat(values[key])
        return cls(**values)


class SessionStore:
    """Locates storage state files and keeps per-store session health."""

    def __init__(self, base_path: Optional[str] = None):
        """
        Args:
            base_path: Root directory for store sessions (defaults to config)
        """
        self.base_path = Path(base_path or settings.session_storage_path)
        self._cache: Dict[str, SessionMetadata] = {}

    def store_dir(self, store: str) -> Path:
        return self.base_path / store

    def storage_state_path(self, store: str) -> Path:
        """Path of the Playwright storage state file for a store."""
        return self.store_dir(store) / "storage_state.json"

    def has_storage_state(self, store: str) -> bool:
        return self.storage_state_path(store).exists()

    def load_metadata(self, store: str) -> Optional[SessionMetadata]:
        """Return the store's metadata, or None if missing or unreadable."""
        if store in self._cache:
            return self._cache[store]

        path = self.store_dir(store) / "metadata.json"
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                metadata = SessionMetadata.from_json(json.load(f))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable session metadata for {store}: {e}")
            return None

        self._cache[store] = metadata
        return metadata

    def save_metadata(self, metadata: SessionMetadata) -> None:
        self._cache[metadata.store] = metadata
        path = self.store_dir(metadata.store) / "metadata.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(metadata.to_json(), f, indent=2)
        except OSError as e:
            logger.error(f"Could not write session metadata for {metadata.store}: {e}")

    def record_page(
        self,
        store: str,
        outcome: str,
        http_status: Optional[int] = None,
        solved: bool = False,
    ) -> SessionMetadata:
        """
        Count one page visit against the store's session.

        Args:
            store: Store identifier
            outcome: One of "ok", "empty", "blocked", "failed"
            http_status: Main response status of the page
            solved: Whether an operator cleared a challenge on the page

        Returns:
            Updated SessionMetadata
        """
        if outcome not in PAGE_OUTCOMES:
            raise ValueError(f"Unknown page outcome: {outcome}")

        metadata = self.load_metadata(store) or SessionMetadata(store=store)
        now = _utcnow()
        metadata.last_used = now
        metadata.last_http_status = http_status
        setattr(metadata, f"pages_{outcome}", getattr(metadata, f"pages_{outcome}") + 1)

        if outcome == "blocked":
            metadata.last_blocked_at = now
        if solved:
            metadata.last_solved_at = now

        self.save_metadata(metadata)
        return metadata

    def clear_session(self, store: str) -> None:
        """Forget a store's cookies and metadata."""
        shutil.rmtree(self.store_dir(store), ignore_errors=True)
        self._cache.pop(store, None)
        logger.info(f"Cleared persisted session for {store}")


session_store = SessionStore()
