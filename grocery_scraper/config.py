"""Application configuration using Pydantic settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Scraper settings."""

    # Browser behaviour
    headless: bool = True
    slow_mo_ms: int = 1000
    navigation_timeout_ms: int = 90000
    enable_logging: bool = True

    # Diagnostics
    save_error_screenshots: bool = True
    save_challenge_html: bool = True
    debug_bundle_path: str = "data/debug_bundles"

    # Challenge handling
    allow_human_challenge_solve: bool = False
    human_solve_timeout_seconds: float = 300.0  # 5 minute ceiling for a manual solve
    human_solve_poll_interval_seconds: float = 1.5
    # "abort" ends the run when a site re-challenges after a solved challenge,
    # "skip" only abandons the current URL
    repeat_block_policy: Literal["abort", "skip"] = "abort"

    # Session persistence
    session_storage_path: str = "data/sessions"

    # Pacing (seconds)
    pre_request_delay_min_seconds: float = 5.0
    pre_request_delay_max_seconds: float = 10.0
    inter_request_delay_min_seconds: float = 15.0
    inter_request_delay_max_seconds: float = 25.0

    # Runner
    sites_dir: str = "sites"
    link_file_pattern: str = "*Links_*.txt"
    output_dir: str = "output"
    max_concurrent_files: int = 1

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
