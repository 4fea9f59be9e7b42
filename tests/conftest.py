"""Shared fixtures: settings, pacing, session store and profile."""

import pytest

from grocery_scraper.config import Settings
from grocery_scraper.ingest.pacing import PacingPolicy
from grocery_scraper.ingest.profiles import ExtractionProfile
from grocery_scraper.ingest.session_store import SessionStore


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        headless=True,
        save_error_screenshots=True,
        save_challenge_html=True,
        debug_bundle_path=str(tmp_path / "bundles"),
        session_storage_path=str(tmp_path / "sessions"),
        human_solve_timeout_seconds=1.0,
        human_solve_poll_interval_seconds=0.01,
        output_dir=str(tmp_path / "output"),
    )


@pytest.fixture
def no_delay_pacing():
    return PacingPolicy(pre_request_range=(0.0, 0.0), inter_request_range=(0.0, 0.0))


@pytest.fixture
def store(tmp_path):
    return SessionStore(base_path=str(tmp_path / "sessions"))


@pytest.fixture
def profile():
    return ExtractionProfile(
        name="teststore",
        product_selectors=[".product-card", ".product"],
        default_category="Groceries",
    )
