"""Parse FHIR search query parameters into a :class:`SearchSpec`.

Supported forms::

    given=eve                      string, default prefix match
    given:contains=eve             string modifiers (contains, exact)
    given=eve,john                 comma separates OR values
    probability=ge100              number/date prefixes
    value-quantity=5403||mg        quantity [prefix]value|system|code
    code=http://loinc.org|1234-5   token system|code
    _has:Condition:subject:code=X  reverse chaining, nestable
    _sort=-birthdate,family        sort keys, ``-`` for descending
    _count=10 / _offset=20         pagination
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from clinisync.search.compiler import UnsupportedParameterError
from clinisync.search.params import DATE, NUMBER, QUANTITY, REFERENCE, STRING, TOKEN, get_param
from clinisync.search.spec import (
    ASCENDING,
    DESCENDING,
    EQUAL,
    PREFIXES,
    STRING_MODIFIERS,
    DateFilter,
    Filter,
    InvalidSearchSpecError,
    NumberFilter,
    QuantityFilter,
    ReferenceFilter,
    Search,
    SearchSpec,
    StringFilter,
    TokenFilter,
)

_PREFIXED_RE = re.compile(r"^(?P<prefix>[a-z]{2})(?P<rest>[-+0-9].*)$")


def _split_prefix(value: str) -> tuple[str, str]:
    match = _PREFIXED_RE.match(value)
    if match and match.group("prefix") in PREFIXES:
        return match.group("prefix"), match.group("rest")
    return EQUAL, value


def _split_values(raw: str) -> list[str]:
    # "\," escapes a literal comma
    parts: list[str] = []
    current = ""
    escaped = False
    for ch in raw:
        if escaped:
            current += ch
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ",":
            parts.append(current)
            current = ""
        else:
            current += ch
    parts.append(current)
    return [part for part in parts if part != ""]


def _make_filter(resource_type: str, name: str, modifier: str | None, value: str) -> Filter:
    param = get_param(resource_type, name)
    if param is None:
        raise UnsupportedParameterError(f"Unsupported search parameter '{name}' for {resource_type}")

    if param.type == STRING:
        if modifier not in STRING_MODIFIERS:
            raise UnsupportedParameterError(f"Unsupported modifier ':{modifier}' for '{name}'")
        return StringFilter(name, value, modifier=modifier)
    if modifier is not None:
        raise UnsupportedParameterError(f"Unsupported modifier ':{modifier}' for '{name}'")

    if param.type == NUMBER:
        prefix, number = _split_prefix(value)
        return NumberFilter(name, number, prefix=prefix)
    if param.type == DATE:
        prefix, date = _split_prefix(value)
        return DateFilter(name, date, prefix=prefix)
    if param.type == QUANTITY:
        prefix, rest = _split_prefix(value)
        number, _, unit_part = rest.partition("|")
        system, sep, code = unit_part.partition("|")
        if not sep:
            # "5.4|mg" is value|code without a system
            system, code = "", unit_part
        return QuantityFilter(name, number, unit=code or None, system=system or None, prefix=prefix)
    if param.type == TOKEN:
        if "|" in value:
            system, _, code = value.partition("|")
            return TokenFilter(name, code, system=system or None)
        return TokenFilter(name, value)
    if param.type == REFERENCE:
        return ReferenceFilter(name, value)
    raise UnsupportedParameterError(f"Unsupported parameter type {param.type!r}")


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidSearchSpecError(f"{name} must be an integer, got {value!r}") from None


def _apply(search: Search, key: str, value: str) -> None:
    if key.startswith("_has:"):
        parts = key.split(":", 3)
        if len(parts) < 4:
            raise InvalidSearchSpecError(f"Malformed _has parameter: {key!r}")
        _, has_type, reference_param, rest = parts
        search.has(has_type, reference_param, lambda sub: _apply(sub, rest, value))
        return

    if key == "_sort":
        for item in _split_values(value):
            if item.startswith("-"):
                search.sort(item[1:], DESCENDING)
            else:
                search.sort(item, ASCENDING)
        return
    if key == "_count":
        search.count = _parse_int("_count", value)
        return
    if key == "_offset":
        search.offset = _parse_int("_offset", value)
        return

    name, _, modifier = key.partition(":")
    filters = [
        _make_filter(search.resource_type, name, modifier or None, item)
        for item in _split_values(value)
    ]
    if not filters:
        raise InvalidSearchSpecError(f"No value given for '{key}'")
    search.filter(*filters)


def parse_query(
    resource_type: str,
    params: Mapping[str, str] | Iterable[tuple[str, str]],
) -> SearchSpec:
    """Build a spec for *resource_type* from query-string parameters.

    *params* may be a mapping or a sequence of ``(name, value)`` pairs; the
    latter allows repeating a parameter, which ANDs the repetitions.

    Raises:
        UnsupportedParameterError: For unknown parameters or modifiers.
        InvalidSearchSpecError: For malformed values or pagination.
    """
    items = params.items() if isinstance(params, Mapping) else params
    search = Search(resource_type)
    for key, value in items:
        _apply(search, key, value)
    return search.build()
