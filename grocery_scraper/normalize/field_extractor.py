"""Recover structured product fields from catalog element text.

Catalog cards rarely expose clean markup, so the free-text extractor works on
the rendered text of a product node:

- the first money token is the current price, the second one the old price
- the first percent token is the discount label, kept verbatim
- a profile bulk offer ("від 2 шт 21,90") is cut out before the price scan
- the name is the longest line that is neither a price nor a weight label

The structured extractor is used when a profile can address name and price
sub-nodes directly. Both never raise; bad input degrades to missing fields.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional, Pattern, Union

from grocery_scraper.ingest.base import Product

logger = logging.getLogger(__name__)

CURRENCY_MARKERS = r"(?:грн\.?|₴|uah)"

# "2.40", "3,00 грн", "45.90₴"
MONEY_PATTERN = re.compile(rf"(\d+[.,]\d+)\s*{CURRENCY_MARKERS}?", re.IGNORECASE)

# "-20%", "20 %", "- 15%"
DISCOUNT_PATTERN = re.compile(r"-?\s?\d{1,3}\s?%")

# Any number carrying a currency or percent sign
PRICE_LINE_PATTERN = re.compile(rf"\d+(?:[.,]\d+)?\s*(?:{CURRENCY_MARKERS}|%)", re.IGNORECASE)

# A line that is nothing but a number ("1.40", "-60")
BARE_NUMBER_PATTERN = re.compile(r"^[-–\s]*\d+(?:[.,]\d+)?$")

# Weight label at the end of the line: "200г", "1 кг", "500 g."
WEIGHT_SUFFIX_PATTERN = re.compile(r"(?:^|[\d\s])(?:кг|гр?|мг|kg|g)\.?$", re.IGNORECASE)

# First number in a dedicated price sub-node ("45", "45,90 грн")
FIELD_NUMBER_PATTERN = re.compile(r"\d+(?:[.,]\d+)?")

LINE_BREAK_PATTERN = re.compile(r"\r\n|\r|\n")
WHITESPACE_PATTERN = re.compile(r"\s+")


def parse_decimal(token: Optional[str]) -> Optional[Decimal]:
    """
    Parse a money token into a Decimal.

    Args:
        token: Digits with a '.' or ',' separator

    Returns:
        Decimal value or None if the token is not a number
    """
    if not token:
        return None
    try:
        return Decimal(token.strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        logger.debug(f"Unparseable money token: {token!r}")
        return None


class FieldExtractor:
    """Heuristic parser turning element text into a Product."""

    def extract(
        self,
        raw_text: Optional[str],
        category: str,
        bulk_pattern: Union[str, Pattern, None] = None,
    ) -> Optional[Product]:
        """
        Parse free element text into a Product.

        Args:
            raw_text: Rendered text of a product node
            category: Category assigned by the caller
            bulk_pattern: Optional regex whose first group captures a
                quantity-conditioned price

        Returns:
            Product, or None when the text is empty
        """
        if raw_text is None:
            return None

        normalized = LINE_BREAK_PATTERN.sub(" ", raw_text).strip()
        if not normalized:
            return None

        try:
            bulk_match = self._match_bulk(normalized, bulk_pattern)
            bulk_price = None
            priced_text = normalized
            if bulk_match is not None:
                bulk_price = parse_decimal(bulk_match.group(1))
                # Bulk offer money is never the unit or old price
                start, end = bulk_match.span()
                priced_text = f"{normalized[:start]} {normalized[end:]}"

            lines = [line.strip() for line in LINE_BREAK_PATTERN.split(raw_text)]
            if bulk_match is not None:
                lines = [line.replace(bulk_match.group(0), " ").strip() for line in lines]
            lines = [line for line in lines if line]

            money_tokens = [match.group(1) for match in MONEY_PATTERN.finditer(priced_text)]
            price = parse_decimal(money_tokens[0]) if money_tokens else None
            old_price = parse_decimal(money_tokens[1]) if len(money_tokens) > 1 else None

            discount_match = DISCOUNT_PATTERN.search(priced_text)
            discount = discount_match.group(0).strip() if discount_match else None

            return Product(
                name=self.derive_name(lines, normalized),
                category=category,
                price=price if price is not None else Decimal("0"),
                old_price=old_price,
                bulk_price=bulk_price,
                discount=discount,
            )
        except Exception as e:
            # Keep the record rather than lose the node
            logger.debug(f"Field extraction degraded for {normalized[:60]!r}: {e}")
            return Product(name=normalized, category=category)

    def derive_name(self, lines: list[str], normalized: str) -> str:
        """
        Pick the product name out of the element lines.

        Prefers the longest line that carries no price, percent or weight
        label. Falls back to the longest line with price tokens stripped,
        then the first line, then the normalized text.
        """
        candidates = [line for line in lines if not self._is_label_line(line)]
        if candidates:
            return max(candidates, key=len)

        stripped = [self._strip_price_tokens(line) for line in lines]
        stripped = [line for line in stripped if line]
        if stripped:
            return max(stripped, key=len)

        if lines:
            return lines[0]
        return normalized

    @staticmethod
    def _is_label_line(line: str) -> bool:
        if PRICE_LINE_PATTERN.search(line):
            return True
        if BARE_NUMBER_PATTERN.match(line):
            return True
        return bool(WEIGHT_SUFFIX_PATTERN.search(line))

    @staticmethod
    def _strip_price_tokens(line: str) -> str:
        cleaned = MONEY_PATTERN.sub(" ", line)
        cleaned = DISCOUNT_PATTERN.sub(" ", cleaned)
        cleaned = WHITESPACE_PATTERN.sub(" ", cleaned).strip(" -–")
        # Nothing but digits left means there was no name in the line
        if not cleaned or BARE_NUMBER_PATTERN.match(cleaned):
            return ""
        return cleaned

    @staticmethod
    def _match_bulk(
        normalized: str,
        bulk_pattern: Union[str, Pattern, None],
    ) -> Optional[re.Match]:
        if not bulk_pattern:
            return None
        try:
            pattern = re.compile(bulk_pattern, re.IGNORECASE) if isinstance(bulk_pattern, str) else bulk_pattern
            match = pattern.search(normalized)
        except re.error as e:
            logger.warning(f"Invalid bulk pattern {bulk_pattern!r}: {e}")
            return None
        if not match or not match.groups():
            return None
        return match


class StructuredFieldExtractor:
    """Builds a Product from texts of designated child nodes."""

    def extract(self, fields: Mapping[str, Optional[str]], category: str) -> Optional[Product]:
        """
        Build a Product from named sub-field texts.

        Args:
            fields: Texts keyed by ``name``, ``price``, ``old_price``,
                ``bulk_price`` and ``discount``; missing keys are allowed
            category: Category assigned by the caller

        Returns:
            Product, or None when no name could be read
        """
        name = WHITESPACE_PATTERN.sub(" ", fields.get("name") or "").strip()
        if not name:
            return None

        price = self._parse_field(fields.get("price"))
        discount = (fields.get("discount") or "").strip() or None

        return Product(
            name=name,
            category=category,
            price=price if price is not None else Decimal("0"),
            old_price=self._parse_field(fields.get("old_price")),
            bulk_price=self._parse_field(fields.get("bulk_price")),
            discount=discount,
        )

    @staticmethod
    def _parse_field(text: Optional[str]) -> Optional[Decimal]:
        if not text:
            return None
        match = FIELD_NUMBER_PATTERN.search(text.replace(" ", ""))
        return parse_decimal(match.group(0)) if match else None


field_extractor = FieldExtractor()
structured_field_extractor = StructuredFieldExtractor()
