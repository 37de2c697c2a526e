"""Tests for billing money utilities."""

from decimal import Decimal

import pytest

from musterbook.platform.billing.money_utils import (
    MoneyHandler,
    compute_tax,
    create_money,
    format_money,
    invoice_amounts,
    to_minor_units,
)

pytestmark = pytest.mark.unit


class TestMinorUnits:
    def test_inr_to_paise(self):
        assert to_minor_units(Decimal("1499"), "INR") == 149900

    def test_fractional_amount(self):
        assert to_minor_units(Decimal("499.99"), "INR") == 49999

    def test_zero_decimal_currency(self):
        # JPY has no minor unit
        assert to_minor_units(Decimal("500"), "JPY") == 500

    def test_from_minor_units(self):
        money = MoneyHandler().from_minor_units(149900, "INR")
        assert money.amount == Decimal("1499")
        assert money.currency.code == "INR"


class TestTax:
    def test_eighteen_percent_of_professional_monthly(self):
        assert compute_tax(Decimal("1499"), "INR", Decimal("0.18")) == Decimal("269.82")

    def test_tax_rounds_half_up(self):
        # 0.25 * 0.18 = 0.045
        assert compute_tax(Decimal("0.25"), "INR", Decimal("0.18")) == Decimal("0.05")

    def test_zero_rate(self):
        assert compute_tax(Decimal("1499"), "INR", Decimal("0")) == Decimal("0.00")

    def test_invoice_amounts(self):
        amounts = invoice_amounts(Decimal("14990"), "INR", Decimal("0.18"))

        assert amounts.subtotal == Decimal("14990.00")
        assert amounts.tax == Decimal("2698.20")
        assert amounts.total == Decimal("17688.20")


class TestMoneyHandler:
    def test_invalid_currency_rejected(self):
        with pytest.raises(ValueError, match="Invalid currency code"):
            MoneyHandler(default_currency="XXQ")

    def test_unknown_locale_falls_back(self):
        handler = MoneyHandler(default_locale="zz_ZZ")
        assert handler.default_locale == "en_IN"

    def test_default_currency(self):
        assert create_money("10").currency.code == "INR"

    def test_format_inr(self):
        assert format_money(create_money(Decimal("1499"))) == "₹1,499.00"

    def test_format_lakh_grouping(self):
        assert format_money(create_money(Decimal("149900"))) == "₹1,49,900.00"
