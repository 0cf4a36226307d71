"""Unit tests for product, sub-producer and phone normalization."""

import pytest

from lqs.matching import (
    ProductType,
    extract_sub_producer_code,
    merge_phones,
    normalize_phone,
    normalize_product_type,
)


class TestNormalizeProductType:
    """Tests for normalize_product_type()."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Standard Auto", ProductType.AUTO),
            ("Specialty Vehicle", ProductType.AUTO),
            ("Homeowners", ProductType.HOME),
            ("Condo", ProductType.HOME),
            ("Landlord Package", ProductType.LANDLORD),
            ("Renters", ProductType.RENTERS),
            ("Tenant Homeowners", ProductType.RENTERS),
            ("Mobile Home", ProductType.MOBILE),
            ("Manufactured Home", ProductType.MOBILE),
            ("Personal Umbrella Policy", ProductType.UMBRELLA),
            ("Flood", ProductType.FLOOD),
            ("Boatowners", ProductType.BOAT),
            ("Motor Club", ProductType.MOTOR_CLUB),
            ("SPP", ProductType.SPP),
            ("Special Personal Property", ProductType.SPP),
        ],
    )
    def test_substring_rules(self, raw, expected):
        assert normalize_product_type(raw) == expected

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("SA", ProductType.AUTO),
            ("HO", ProductType.HOME),
            ("LL", ProductType.LANDLORD),
            ("MC", ProductType.MOTOR_CLUB),
            ("MH", ProductType.MOBILE),
            ("PUP", ProductType.UMBRELLA),
        ],
    )
    def test_carrier_abbreviations(self, raw, expected):
        assert normalize_product_type(raw) == expected

    def test_case_insensitive(self):
        assert normalize_product_type("standard auto") == ProductType.AUTO

    def test_unmatched_text_is_other(self):
        assert normalize_product_type("Life") == ProductType.OTHER
        assert normalize_product_type("Salvage") == ProductType.OTHER

    def test_empty_is_unknown(self):
        assert normalize_product_type(None) == ProductType.UNKNOWN
        assert normalize_product_type("") == ProductType.UNKNOWN
        assert normalize_product_type("   ") == ProductType.UNKNOWN

    def test_normalized_values_are_stable(self):
        for product_type in ProductType:
            assert normalize_product_type(product_type.value) == product_type


class TestExtractSubProducerCode:
    """Tests for extract_sub_producer_code()."""

    def test_code_before_hyphen(self):
        assert extract_sub_producer_code("723-ANTHONY MCDERMOTT") == "723"

    def test_trims_code(self):
        assert extract_sub_producer_code(" 112 - Jane Agent ") == "112"

    def test_code_only(self):
        assert extract_sub_producer_code("009") == "009"

    def test_not_applicable(self):
        assert extract_sub_producer_code("Not Applicable") is None
        assert extract_sub_producer_code("NOT APPLICABLE") is None

    def test_empty_values(self):
        assert extract_sub_producer_code(None) is None
        assert extract_sub_producer_code("") is None
        assert extract_sub_producer_code("   ") is None

    def test_empty_code_before_hyphen(self):
        assert extract_sub_producer_code("-Jane Agent") is None


class TestPhones:
    def test_normalize_phone(self):
        assert normalize_phone("(555) 123-4567") == "5551234567"
        assert normalize_phone(None) == ""

    def test_merge_drops_same_digits(self):
        merged = merge_phones(["(555) 123-4567"], "555.123.4567")
        assert merged == ["(555) 123-4567"]

    def test_merge_appends_new_numbers(self):
        merged = merge_phones(["555-123-4567"], ["555-987-6543", "555 123 4567"])
        assert merged == ["555-123-4567", "555-987-6543"]

    def test_merge_ignores_empty(self):
        assert merge_phones(None, None) == []
        assert merge_phones([], "") == []
