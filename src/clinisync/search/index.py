"""Search index extraction.

The index of a record maps each applicable parameter name to the list of
values found in the body, already converted to the form the matchers
compare against:

- string: the raw strings
- number: decimal text
- date: ``[start, end]`` microsecond intervals
- quantity: ``{"value", "code", "system", "canonicalValue", "canonicalCode"}``
- token: ``{"system", "code"}``
- reference: normalized ``Type/id`` strings

Parameters without values are left out.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from clinisync.core.ids import normalize_reference
from clinisync.search.dates import DateParseError, parse_interval, period_interval
from clinisync.search.params import (
    DATE,
    NUMBER,
    QUANTITY,
    REFERENCE,
    STRING,
    TOKEN,
    SearchParam,
    params_for,
)
from clinisync.search.units import canonicalize

logger = logging.getLogger(__name__)


def extract_values(resource: object, path: str) -> list:
    """Return every value reachable from *resource* along the dotted *path*."""
    nodes: list = [resource]
    for field in path.split("."):
        found: list = []
        for node in nodes:
            if isinstance(node, list):
                candidates = node
            else:
                candidates = [node]
            for candidate in candidates:
                if isinstance(candidate, dict) and field in candidate:
                    value = candidate[field]
                    if isinstance(value, list):
                        found.extend(value)
                    elif value is not None:
                        found.append(value)
        nodes = found
    return nodes


def _decimal_text(value: object) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        try:
            Decimal(value)
        except InvalidOperation:
            return None
        return value
    return None


def _string_values(raw: list, param: SearchParam) -> list:
    return [value for value in raw if isinstance(value, str) and value]


def _number_values(raw: list, param: SearchParam) -> list:
    return [text for text in (_decimal_text(value) for value in raw) if text is not None]


def _date_values(raw: list, param: SearchParam) -> list:
    result = []
    for value in raw:
        try:
            if isinstance(value, str):
                start, end = parse_interval(value)
            elif isinstance(value, dict) and ("start" in value or "end" in value):
                start, end = period_interval(value)
            else:
                continue
        except DateParseError as exc:
            logger.debug("Skipping unparseable %s value: %s", param.name, exc)
            continue
        result.append([start, end])
    return result


def _quantity_values(raw: list, param: SearchParam) -> list:
    result = []
    for value in raw:
        if not isinstance(value, dict):
            continue
        text = _decimal_text(value.get("value"))
        if text is None:
            continue
        code = value.get("code") or value.get("unit")
        canonical_value, canonical_code = canonicalize(Decimal(text), code)
        result.append(
            {
                "value": text,
                "code": code,
                "system": value.get("system"),
                "canonicalValue": str(canonical_value),
                "canonicalCode": canonical_code,
            }
        )
    return result


def _token_values(raw: list, param: SearchParam) -> list:
    result = []
    for value in raw:
        if isinstance(value, bool):
            result.append({"system": param.implicit_system, "code": "true" if value else "false"})
        elif isinstance(value, str):
            result.append({"system": param.implicit_system, "code": value})
        elif isinstance(value, dict):
            if isinstance(value.get("coding"), list):
                for coding in value["coding"]:
                    if isinstance(coding, dict) and coding.get("code"):
                        result.append({"system": coding.get("system"), "code": coding["code"]})
            elif value.get("code"):
                result.append({"system": value.get("system"), "code": value["code"]})
            elif value.get("value"):
                # Identifier
                result.append({"system": value.get("system"), "code": value["value"]})
    return result


def _reference_values(raw: list, param: SearchParam) -> list:
    result = []
    for value in raw:
        reference = value.get("reference") if isinstance(value, dict) else value
        normalized = normalize_reference(reference) if isinstance(reference, str) else None
        if normalized is not None:
            result.append(normalized)
    return result


_EXTRACTORS = {
    STRING: _string_values,
    NUMBER: _number_values,
    DATE: _date_values,
    QUANTITY: _quantity_values,
    TOKEN: _token_values,
    REFERENCE: _reference_values,
}


def param_values(resource: dict, param: SearchParam) -> list:
    """Return the index values of *param* for *resource*."""
    raw: list = []
    for path in param.paths:
        raw.extend(extract_values(resource, path))
    return _EXTRACTORS[param.type](raw, param)


def extract_index(resource: dict) -> dict[str, list]:
    """Build the search index for *resource*."""
    index: dict[str, list] = {}
    for param in params_for(resource.get("resourceType", "")):
        values = param_values(resource, param)
        if values:
            index[param.name] = values
    return index
