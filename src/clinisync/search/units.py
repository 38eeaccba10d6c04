"""UCUM unit canonicalization for quantity search.

Only simple units and single-division compound units (``mg/dL``) built
from the table below are understood.  Everything else is compared as
written.
"""

from __future__ import annotations

from decimal import Decimal

UCUM_SYSTEM = "http://unitsofmeasure.org"

# code -> (factor to the base unit, base unit)
_UNITS: dict[str, tuple[Decimal, str]] = {
    # mass
    "kg": (Decimal("1000"), "g"),
    "g": (Decimal("1"), "g"),
    "mg": (Decimal("0.001"), "g"),
    "ug": (Decimal("0.000001"), "g"),
    "ng": (Decimal("0.000000001"), "g"),
    "pg": (Decimal("0.000000000001"), "g"),
    "[lb_av]": (Decimal("453.59237"), "g"),
    "[oz_av]": (Decimal("28.349523125"), "g"),
    # length
    "km": (Decimal("1000"), "m"),
    "m": (Decimal("1"), "m"),
    "cm": (Decimal("0.01"), "m"),
    "mm": (Decimal("0.001"), "m"),
    "um": (Decimal("0.000001"), "m"),
    "nm": (Decimal("0.000000001"), "m"),
    "[in_i]": (Decimal("0.0254"), "m"),
    "[ft_i]": (Decimal("0.3048"), "m"),
    # volume
    "L": (Decimal("1"), "L"),
    "l": (Decimal("1"), "L"),
    "dL": (Decimal("0.1"), "L"),
    "cL": (Decimal("0.01"), "L"),
    "mL": (Decimal("0.001"), "L"),
    "uL": (Decimal("0.000001"), "L"),
    # time
    "s": (Decimal("1"), "s"),
    "ms": (Decimal("0.001"), "s"),
    "min": (Decimal("60"), "s"),
    "h": (Decimal("3600"), "s"),
    "d": (Decimal("86400"), "s"),
    "wk": (Decimal("604800"), "s"),
    "a": (Decimal("31557600"), "s"),
    # amount of substance
    "mol": (Decimal("1"), "mol"),
    "mmol": (Decimal("0.001"), "mol"),
    "umol": (Decimal("0.000001"), "mol"),
    "nmol": (Decimal("0.000000001"), "mol"),
    # dimensionless
    "1": (Decimal("1"), "1"),
    "%": (Decimal("0.01"), "1"),
}


def canonical_unit(code: str) -> tuple[Decimal, str] | None:
    """Return ``(factor, base code)`` for a UCUM *code*, or ``None``."""
    if not code:
        return None
    if code in _UNITS:
        return _UNITS[code]
    numerator, sep, denominator = code.partition("/")
    if not sep or "/" in denominator:
        return None
    top = _UNITS.get(numerator)
    bottom = _UNITS.get(denominator)
    if top is None or bottom is None:
        return None
    return top[0] / bottom[0], f"{top[1]}/{bottom[1]}"


def canonicalize(value: Decimal, code: str | None) -> tuple[Decimal, str | None]:
    """Express *value* in the base unit of *code*.

    Unknown units come back unchanged, so two quantities in the same
    unknown unit still compare with each other.
    """
    unit = canonical_unit(code) if code else None
    if unit is None:
        return value, code
    factor, base = unit
    return value * factor, base
