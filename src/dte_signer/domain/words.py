"""
Amount-in-words rendering for the DTE totals block.

Only integer parts 0–99 are spelled out. Anything from 100 upwards renders
as the fixed phrase "más de cien". This is a known limitation of the
printed representation and is kept deliberately; callers needing the exact
figure use the numeric totals.

    >>> amount_in_words(Decimal("26.50"))
    'veintiséis dólares con 50 centavos'
    >>> amount_in_words(Decimal("226.50"))
    'más de cien dólares con 50 centavos'
"""

from __future__ import annotations

from decimal import Decimal

from dte_signer.domain.models import to_money

OVER_ONE_HUNDRED = "más de cien"

_UNITS = (
    "cero", "uno", "dos", "tres", "cuatro", "cinco", "seis", "siete", "ocho", "nueve",
    "diez", "once", "doce", "trece", "catorce", "quince",
    "dieciséis", "diecisiete", "dieciocho", "diecinueve",
    "veinte", "veintiuno", "veintidós", "veintitrés", "veinticuatro",
    "veinticinco", "veintiséis", "veintisiete", "veintiocho", "veintinueve",
)

_TENS = {
    3: "treinta",
    4: "cuarenta",
    5: "cincuenta",
    6: "sesenta",
    7: "setenta",
    8: "ochenta",
    9: "noventa",
}


def number_to_words(number: int) -> str:
    """Spell out 0–99; raises ValueError outside that range."""
    if not 0 <= number <= 99:
        raise ValueError(f"Only 0-99 can be spelled out, got {number}")
    if number < len(_UNITS):
        return _UNITS[number]
    tens, units = divmod(number, 10)
    if units == 0:
        return _TENS[tens]
    return f"{_TENS[tens]} y {_UNITS[units]}"


def _before_noun(words: str) -> str:
    # "uno" shortens before a masculine noun: un dólar, veintiún dólares
    if words == "veintiuno":
        return "veintiún"
    if words.endswith("uno"):
        return words[:-1]
    return words


def amount_in_words(amount: Decimal | int | float | str) -> str:
    """Render an amount as '<words> dólar(es) con NN centavos'."""
    money = to_money(amount)
    if money < 0:
        raise ValueError(f"Amount must not be negative: {money}")
    integer = int(money)
    cents = int((money - integer) * 100)

    if integer >= 100:
        words, currency = OVER_ONE_HUNDRED, "dólares"
    else:
        words = _before_noun(number_to_words(integer))
        currency = "dólar" if integer == 1 else "dólares"
    return f"{words} {currency} con {cents:02d} centavos"
