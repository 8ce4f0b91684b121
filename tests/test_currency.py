"""
Test suite for amount parsing and formatting

Amounts are typed in by staff in either English or German notation and must
never go through float arithmetic.
"""

import pytest
from decimal import Decimal

from mantrailing_card.currency import format_eur, parse_amount, quantize, to_decimal
from mantrailing_card.errors import ValidationError


class TestParseAmount:
    """Test parsing of user-entered amounts"""

    def test_decimal_passthrough(self):
        assert parse_amount(Decimal("18.00")) == Decimal("18.00")

    def test_string_with_dot(self):
        assert parse_amount("18.00") == Decimal("18.00")

    def test_german_comma(self):
        assert parse_amount("18,50") == Decimal("18.50")

    def test_german_thousands_separator(self):
        assert parse_amount("1.234,56") == Decimal("1234.56")

    def test_english_thousands_separator(self):
        assert parse_amount("1,234.56") == Decimal("1234.56")

    def test_currency_symbol_is_ignored(self):
        assert parse_amount("25,00 €") == Decimal("25.00")

    def test_int_and_float(self):
        assert parse_amount(50) == Decimal("50.00")
        assert parse_amount(0.1) == Decimal("0.10")

    def test_trailing_zeros_are_accepted(self):
        assert parse_amount("18.000") == Decimal("18.00")
        assert str(parse_amount("18.000")) == "18.00"

    @pytest.mark.parametrize("value", ["10.005", "1.234,567", Decimal("0.001"), 18.004])
    def test_sub_cent_amounts_rejected(self, value):
        with pytest.raises(ValidationError, match="Nachkommastellen"):
            parse_amount(value)

    @pytest.mark.parametrize("value", ["0", "-5", "0,00", Decimal("-1")])
    def test_non_positive_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)

    @pytest.mark.parametrize("value", ["", "   ", "abc", None, True, "NaN", "Infinity", Decimal("NaN")])
    def test_malformed_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_amount("kein Betrag")


class TestHelpers:
    """Test conversion and display helpers"""

    def test_to_decimal_from_storage_string(self):
        assert to_decimal("82.0") == Decimal("82.00")

    def test_quantize(self):
        assert quantize(Decimal("1.234")) == Decimal("1.23")

    def test_format_eur(self):
        assert format_eur(Decimal("1234.5")) == "1.234,50 €"
        assert format_eur(Decimal("0")) == "0,00 €"
        assert format_eur(Decimal("-18")) == "-18,00 €"
