"""Extraction profiles and link-file dispatch."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from grocery_scraper.ingest.base import UnsupportedLinkFileError

logger = logging.getLogger(__name__)


class ExtractionMode(str, Enum):
    """How product fields are read from a node."""

    FREE_TEXT = "free_text"  # Heuristic parse of the node's rendered text
    STRUCTURED = "structured"  # Named child nodes per field


# Iframes and containers whose attributes reference a challenge provider
DEFAULT_CHALLENGE_MARKERS: List[str] = [
    "iframe[src*='turnstile']",
    "iframe[src*='challenges.cloudflare']",
    "[id*='cf-turnstile']",
    "[class*='captcha']",
]

DEFAULT_CHALLENGE_PHRASES: List[str] = [
    "checking your browser",
    "just a moment",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class ExtractionProfile:
    """Per-retailer bundle of selectors, parsing mode and challenge markers."""

    name: str
    product_selectors: List[str]
    mode: ExtractionMode = ExtractionMode.FREE_TEXT
    # Child selectors for STRUCTURED mode, keyed by Product field
    field_selectors: Dict[str, str] = field(default_factory=dict)
    # Regex whose first group captures a quantity-conditioned price (FREE_TEXT)
    bulk_pattern: Optional[str] = None
    challenge_markers: List[str] = field(default_factory=lambda: list(DEFAULT_CHALLENGE_MARKERS))
    challenge_phrases: List[str] = field(default_factory=lambda: list(DEFAULT_CHALLENGE_PHRASES))
    default_category: str = ""

    # Browser hints
    browser: str = "chromium"
    headless: Optional[bool] = None  # None keeps the configured value
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "uk-UA"
    viewport: Tuple[int, int] = (1920, 1080)
    referer: Optional[str] = None
    accept_language: str = "uk-UA,uk;q=0.9,en-US;q=0.8,en;q=0.7"


ATB_PROFILE = ExtractionProfile(
    name="atb",
    product_selectors=[
        ".product-tile[data-testid*='product']",
        ".product-card",
        "[class*='ProductTile']",
        "[class*='catalog-item__bottom']",
        "[data-test*='product']",
        ".product, .product-item, .card, [class*='product']",
    ],
    default_category="ATB",
    # ATB serves Turnstile to headless Chromium on first contact
    headless=False,
    referer="https://www.atbmarket.com/",
)

SILPO_PROFILE = ExtractionProfile(
    name="silpo",
    product_selectors=[
        "[class*='catalog-item__bottom']",
        ".product-tile[data-testid*='product']",
        ".product-card",
        "[class*='ProductTile']",
    ],
    bulk_pattern=r"від\s*\d+\s*шт\.?\s*(\d+[.,]\d+)",
    default_category="Silpo",
    browser="firefox",
    user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:115.0) Gecko/20100101 Firefox/115.0",
    viewport=(1366, 768),
    referer="https://silpo.ua/",
    accept_language="uk-UA,uk;q=0.9",
)

NOVUS_PROFILE = ExtractionProfile(
    name="novus",
    product_selectors=[
        "[class*='catalog-products__item']",
        ".product-card",
        "[class*='productCard']",
    ],
    mode=ExtractionMode.STRUCTURED,
    field_selectors={
        "name": "[class*='product-card__title'], [class*='productCard__title']",
        "price": "[class*='price-current'], [class*='price__current']",
        "old_price": "[class*='price-old'], [class*='price__old']",
        "bulk_price": "[class*='price-wholesale'], [class*='price__wholesale']",
        "discount": "[class*='discount'], [class*='badge--sale']",
    },
    default_category="Novus",
    referer="https://novus.ua/",
)


class ProfileRegistry:
    """Registry of extraction profiles and the link-file dispatch table."""

    _profiles: dict[str, ExtractionProfile] = {
        "atb": ATB_PROFILE,
        "silpo": SILPO_PROFILE,
        "novus": NOVUS_PROFILE,
    }

    # Link file base-name prefix -> profile name
    _file_prefixes: dict[str, str] = {
        "NovusLinks": "novus",
        "AtbLinks": "atb",
        "SilpoLinks": "silpo",
    }

    @classmethod
    def get_profile(cls, name: str) -> ExtractionProfile:
        """
        Get a profile by name.

        Raises:
            ValueError: If the profile is not registered
        """
        if name not in cls._profiles:
            raise ValueError(
                f"Unknown profile: {name}. Available: {list(cls._profiles.keys())}"
            )
        return cls._profiles[name]

    @classmethod
    def register_profile(cls, profile: ExtractionProfile, file_prefix: Optional[str] = None) -> None:
        """
        Register a profile, optionally mapping a link-file prefix to it.

        Args:
            profile: Profile to register
            file_prefix: Link file base-name prefix (e.g. "FozzyLinks")
        """
        cls._profiles[profile.name] = profile
        if file_prefix:
            cls._file_prefixes[file_prefix] = profile.name
        logger.info(f"Registered extraction profile: {profile.name}")

    @classmethod
    def list_profiles(cls) -> list[str]:
        return list(cls._profiles.keys())

    @classmethod
    def resolve_link_file(cls, file_name: str) -> Tuple[ExtractionProfile, str]:
        """
        Pick the profile and category for a link file.

        ``NovusLinks_Seafood.txt`` maps to the ``novus`` profile with category
        ``Seafood``. An exact prefix match wins; otherwise the first prefix the
        base name starts with (case-insensitive) is used.

        Args:
            file_name: Link file name or path

        Returns:
            Tuple of (profile, category)

        Raises:
            UnsupportedLinkFileError: If no prefix matches
        """
        base_name = Path(file_name).stem
        prefix, _, rest = base_name.partition("_")

        profile_name = cls._file_prefixes.get(prefix)
        if profile_name is None:
            lowered = base_name.lower()
            for known_prefix, name in cls._file_prefixes.items():
                if lowered.startswith(known_prefix.lower()):
                    profile_name = name
                    rest = base_name[len(known_prefix):].lstrip("_")
                    break

        if profile_name is None:
            raise UnsupportedLinkFileError(
                f"No profile found for file: {file_name}. "
                f"Available prefixes: {', '.join(cls._file_prefixes)}"
            )

        profile = cls._profiles[profile_name]
        # "Seafood_001" -> "Seafood"
        category = rest.split("_", 1)[0] if rest else ""
        return profile, category or profile.default_category or profile.name
