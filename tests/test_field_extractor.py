"""Tests for product field extraction."""

from decimal import Decimal

import pytest

from grocery_scraper.ingest.profiles import SILPO_PROFILE
from grocery_scraper.normalize.field_extractor import (
    field_extractor,
    parse_decimal,
    structured_field_extractor,
)


class TestFieldExtractor:
    """Free-text extraction."""

    @pytest.mark.parametrize("text", ["1.40 грн\nMilk 2L", "1.40 грн Milk 2L"])
    def test_single_price(self, text):
        product = field_extractor.extract(text, "Dairy")

        assert product.name == "Milk 2L"
        assert product.category == "Dairy"
        assert product.price == Decimal("1.40")
        assert product.old_price is None
        assert product.discount is None
        assert product.is_on_sale is False

    @pytest.mark.parametrize(
        "text",
        ["2.50 грн\n1.00 грн\n-60%\nBread", "2.50 грн 1.00 грн -60% Bread"],
    )
    def test_second_price_is_old_price(self, text):
        product = field_extractor.extract(text, "Dairy")

        assert product.name == "Bread"
        assert product.price == Decimal("2.50")
        assert product.old_price == Decimal("1.00")
        assert product.discount == "-60%"
        # Old price below the current one is not a sale
        assert product.is_on_sale is False

    def test_sale_when_old_price_higher(self):
        product = field_extractor.extract("Сир кисломолочний\n45,90 грн\n59,90 грн\n-23%", "Dairy")

        assert product.price == Decimal("45.90")
        assert product.old_price == Decimal("59.90")
        assert product.discount == "-23%"
        assert product.is_on_sale is True

    def test_equal_prices_are_not_a_sale(self):
        product = field_extractor.extract("Kefir\n30.00\n30.00", "Dairy")

        assert product.old_price == Decimal("30.00")
        assert product.is_on_sale is False

    def test_comma_decimal_and_currency_sign(self):
        product = field_extractor.extract("Масло вершкове\n89,99₴", "Dairy")

        assert product.price == Decimal("89.99")
        assert product.name == "Масло вершкове"

    def test_no_price_defaults_to_zero(self):
        product = field_extractor.extract("Хліб житній", "Bakery")

        assert product.price == Decimal("0")
        assert product.old_price is None
        assert product.name == "Хліб житній"

    def test_integer_is_not_a_money_token(self):
        product = field_extractor.extract("Eggs 10 pcs\n52.30 грн", "Eggs")

        assert product.price == Decimal("52.30")
        assert product.old_price is None

    def test_weight_line_excluded_from_name(self):
        product = field_extractor.extract("Ковбаса докторська варена\n400г\n129.00 грн", "Meat")

        assert product.name == "Ковбаса докторська варена"

    def test_weight_line_with_space(self):
        product = field_extractor.extract("Apples\n1 kg\n35.50", "Fruit")

        assert product.name == "Apples"

    def test_longest_candidate_wins_first_on_tie(self):
        product = field_extractor.extract("Milk\nCafe\n19.90", "Dairy")

        assert product.name == "Milk"

    @pytest.mark.parametrize("text", ["", "   ", "\n\n", None])
    def test_empty_text_is_discarded(self, text):
        assert field_extractor.extract(text, "Dairy") is None

    @pytest.mark.parametrize("text", ["no digits here", "1..2,,3 грн", ",.", "12,", "%%%", "₴₴ 0,0,0"])
    def test_malformed_text_never_raises(self, text):
        product = field_extractor.extract(text, "Dairy")

        assert product is not None
        assert product.name

    def test_all_label_lines_fall_back_to_first_line(self):
        product = field_extractor.extract("12.00 грн\n-10%", "Dairy")

        assert product.name == "12.00 грн"
        assert product.price == Decimal("12.00")

    def test_deterministic(self):
        text = "Йогурт персиковий\n24,30 грн\n27,00 грн"

        assert field_extractor.extract(text, "Dairy") == field_extractor.extract(text, "Dairy")

    def test_category_is_never_taken_from_text(self):
        product = field_extractor.extract("Category: Meat\n10.00", "Dairy")

        assert product.category == "Dairy"

    def test_bulk_price_from_profile_pattern(self):
        text = "Вода мінеральна Моршинська\n24,90 грн\nвід 2 шт 21,90"
        product = field_extractor.extract(text, "Water", SILPO_PROFILE.bulk_pattern)

        assert product.price == Decimal("24.90")
        assert product.bulk_price == Decimal("21.90")
        assert product.is_bulk is True

    def test_bulk_offer_is_not_old_price(self):
        text = "Вода\n24,90 грн\nвід 2 шт 21,90"
        product = field_extractor.extract(text, "Water", SILPO_PROFILE.bulk_pattern)

        assert product.name == "Вода"
        assert product.price == Decimal("24.90")
        assert product.old_price is None
        assert product.bulk_price == Decimal("21.90")

    def test_higher_bulk_price_is_not_a_sale(self):
        text = "Пиво\n39,90 грн\nвід 6 шт 41,00"
        product = field_extractor.extract(text, "Beer", SILPO_PROFILE.bulk_pattern)

        assert product.price == Decimal("39.90")
        assert product.old_price is None
        assert product.bulk_price == Decimal("41.00")
        assert product.is_on_sale is False

    def test_bulk_offer_beside_regular_sale(self):
        text = "Сік\n45,90 грн\n52,00 грн\nвід 3 шт 42,50"
        product = field_extractor.extract(text, "Juice", SILPO_PROFILE.bulk_pattern)

        assert product.price == Decimal("45.90")
        assert product.old_price == Decimal("52.00")
        assert product.bulk_price == Decimal("42.50")
        assert product.is_on_sale is True

    def test_no_bulk_without_pattern(self):
        product = field_extractor.extract("Вода\n24,90 грн", "Water")

        assert product.bulk_price is None
        assert product.is_bulk is False

    def test_invalid_bulk_pattern_is_ignored(self):
        product = field_extractor.extract("Вода\n24,90 грн", "Water", "(unclosed")

        assert product.price == Decimal("24.90")
        assert product.bulk_price is None


class TestStructuredFieldExtractor:
    """Extraction from named sub-field texts."""

    def test_full_fields(self):
        product = structured_field_extractor.extract(
            {
                "name": "  Креветки\n королівські ",
                "price": "389,00 грн",
                "old_price": "459,00 грн",
                "bulk_price": None,
                "discount": "-15%",
            },
            "Seafood",
        )

        assert product.name == "Креветки королівські"
        assert product.price == Decimal("389.00")
        assert product.old_price == Decimal("459.00")
        assert product.discount == "-15%"
        assert product.is_on_sale is True
        assert product.is_bulk is False

    def test_whole_number_price(self):
        product = structured_field_extractor.extract({"name": "Лосось", "price": "1 299 ₴"}, "Seafood")

        assert product.price == Decimal("1299")

    def test_missing_name_is_discarded(self):
        assert structured_field_extractor.extract({"name": "  ", "price": "10.00"}, "Seafood") is None

    def test_bulk_field(self):
        product = structured_field_extractor.extract(
            {"name": "Мідії", "price": "120.00", "bulk_price": "99,00 грн"},
            "Seafood",
        )

        assert product.bulk_price == Decimal("99.00")
        assert product.is_bulk is True


def test_parse_decimal():
    assert parse_decimal("3,05") == Decimal("3.05")
    assert parse_decimal("") is None
    assert parse_decimal("abc") is None
