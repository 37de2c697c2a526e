"""
Money and currency utilities using py-moneyed and Babel.

Plan prices are stored as Decimal major units. The gateway wants integer
minor units, invoices want a fixed tax surcharge rounded half-up, and
notifications want a locale-aware display string.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, NamedTuple

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

DEFAULT_CURRENCY = "INR"
DEFAULT_LOCALE = "en_IN"


class InvoiceAmounts(NamedTuple):
    subtotal: Decimal
    tax: Decimal
    total: Decimal


class MoneyHandler:
    """Currency-aware conversions for billing amounts."""

    def __init__(
        self, default_currency: str = DEFAULT_CURRENCY, default_locale: str = DEFAULT_LOCALE
    ) -> None:
        self.default_currency = self.currency(default_currency)
        self.default_locale = self._resolve_locale(default_locale)

    def currency(self, code: str) -> Currency:
        """
        Look up an ISO 4217 currency.

        Raises:
            ValueError: The code is not a known currency
        """
        try:
            return get_currency(code.upper())
        except CurrencyDoesNotExist:
            raise ValueError(f"Invalid currency code: {code}") from None

    def _resolve_locale(self, locale_code: str) -> str:
        try:
            Locale.parse(locale_code)
        except (UnknownLocaleError, ValueError):
            return DEFAULT_LOCALE
        return locale_code

    def precision(self, currency_code: str) -> int:
        return get_currency_precision(currency_code.upper())

    def create_money(self, amount: int | Decimal | str, currency: str | None = None) -> Money:
        code = currency or self.default_currency.code
        return Money(amount=Decimal(str(amount)), currency=self.currency(code))

    def quantize(self, money: Money) -> Money:
        """Round to the currency's minor unit, half-up."""
        step = Decimal(1).scaleb(-self.precision(money.currency.code))
        return Money(
            amount=money.amount.quantize(step, rounding=ROUND_HALF_UP), currency=money.currency
        )

    def to_minor_units(self, money: Money) -> int:
        """1499 INR -> 149900 paise."""
        scale = 10 ** self.precision(money.currency.code)
        return int((money.amount * scale).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    def from_minor_units(self, minor_units: int, currency: str) -> Money:
        scale = Decimal(10 ** self.precision(currency))
        return Money(amount=Decimal(minor_units) / scale, currency=self.currency(currency))

    def invoice_amounts(self, subtotal: Money, tax_rate: Decimal) -> InvoiceAmounts:
        """Subtotal, fixed-rate tax and total, each rounded to the minor unit."""
        subtotal = self.quantize(subtotal)
        tax = self.quantize(subtotal * tax_rate)
        return InvoiceAmounts(subtotal.amount, tax.amount, (subtotal + tax).amount)

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Locale-aware display string, e.g. ``₹1,768.82``."""
        locale = self._resolve_locale(locale or self.default_locale)
        try:
            return format_currency(money.amount, money.currency.code, locale=locale, **kwargs)
        except (TypeError, ValueError):
            return f"{money.currency.code} {money.amount}"


money_handler = MoneyHandler()


def create_money(amount: int | Decimal | str, currency: str = DEFAULT_CURRENCY) -> Money:
    return money_handler.create_money(amount, currency)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Major-unit Decimal to integer minor units."""
    return money_handler.to_minor_units(create_money(amount, currency))


def compute_tax(subtotal: Decimal, currency: str, rate: Decimal) -> Decimal:
    """Fixed-rate tax on a subtotal, e.g. 18% of 1499 INR -> 269.82."""
    return invoice_amounts(subtotal, currency, rate).tax


def invoice_amounts(subtotal: Decimal, currency: str, rate: Decimal) -> InvoiceAmounts:
    return money_handler.invoice_amounts(create_money(subtotal, currency), rate)


def format_money(money: Money, locale: str | None = None, **kwargs: Any) -> str:
    return money_handler.format_money(money, locale, **kwargs)


__all__ = [
    "InvoiceAmounts",
    "MoneyHandler",
    "money_handler",
    "create_money",
    "to_minor_units",
    "compute_tax",
    "invoice_amounts",
    "format_money",
]
