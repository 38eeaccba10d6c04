"""Compile search specifications into query plans over the record store.

A :class:`QueryPlan` is a tree of predicates over the precomputed search
index of each stored record.  ``has`` clauses compile into nested plans
that are evaluated once per execution into the set of ``Type/id`` keys
they reference.
"""

from __future__ import annotations

import logging
import unicodedata
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from clinisync.core.ids import format_reference, normalize_reference
from clinisync.search.dates import (
    Clock,
    DateParseError,
    Interval,
    overlaps,
    parse_interval,
    utc_now,
    widen,
)
from clinisync.search.params import (
    DATE,
    NUMBER,
    QUANTITY,
    REFERENCE,
    STRING,
    TOKEN,
    SearchParam,
    get_param,
)
from clinisync.search.spec import (
    AND,
    APPROXIMATE,
    CONTAINS,
    DESCENDING,
    ENDS_BEFORE,
    EQUAL,
    GREATERTHAN,
    GREATERTHAN_OR_EQUALS,
    LESSTHAN,
    LESSTHAN_OR_EQUALS,
    MATCHES_EXACTLY,
    NOT_EQUAL,
    STARTS_AFTER,
    DateFilter,
    Filter,
    FilterGroup,
    InvalidSearchSpecError,
    NumberFilter,
    QuantityFilter,
    ReferenceFilter,
    SearchSpec,
    StringFilter,
    TokenFilter,
)
from clinisync.search.units import canonical_unit

logger = logging.getLogger(__name__)

Predicate = Callable[[dict], bool]

DEFAULT_APPROXIMATE_TOLERANCE = 0.1


class UnsupportedParameterError(ValueError):
    """Raised when a parameter is unknown or used with the wrong filter type."""


class EnvelopeSource(Protocol):
    def iter_type(self, resource_type: str) -> Iterator[dict]: ...


_FILTER_TYPES: dict[type, str] = {
    StringFilter: STRING,
    NumberFilter: NUMBER,
    DateFilter: DATE,
    QuantityFilter: QUANTITY,
    TokenFilter: TOKEN,
    ReferenceFilter: REFERENCE,
}


# ---------------------------------------------------------------------------
# Value matchers
# ---------------------------------------------------------------------------


def normalize_string(value: str) -> str:
    """Fold case and strip accents (``"Évelyne"`` -> ``"evelyne"``)."""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def _string_matcher(flt: StringFilter) -> Callable[[str], bool]:
    if flt.modifier == MATCHES_EXACTLY:
        return lambda value: value == flt.value
    needle = normalize_string(flt.value)
    if flt.modifier == CONTAINS:
        return lambda value: needle in normalize_string(value)

    def starts_with(value: str) -> bool:
        folded = normalize_string(value)
        return folded.startswith(needle) or any(word.startswith(needle) for word in folded.split())

    return starts_with


def precision_window(value: Decimal) -> tuple[Decimal, Decimal]:
    """Return ``[low, high)`` implied by the significant digits of *value*."""
    exponent = value.as_tuple().exponent
    if not isinstance(exponent, int):
        return value, value
    half = Decimal(5).scaleb(exponent - 1)
    return value - half, value + half


def _decimal_matcher(
    prefix: str,
    target: Decimal,
    window: tuple[Decimal, Decimal],
    tolerance: float,
) -> Callable[[Decimal], bool]:
    low, high = window
    if prefix == EQUAL:
        return lambda x: low <= x < high
    if prefix == NOT_EQUAL:
        return lambda x: not (low <= x < high)
    if prefix in (GREATERTHAN, STARTS_AFTER):
        return lambda x: x > target
    if prefix == GREATERTHAN_OR_EQUALS:
        return lambda x: x >= target
    if prefix in (LESSTHAN, ENDS_BEFORE):
        return lambda x: x < target
    if prefix == LESSTHAN_OR_EQUALS:
        return lambda x: x <= target
    margin = abs(target) * Decimal(str(tolerance))
    return lambda x: abs(x - target) <= margin


def _date_matcher(
    prefix: str,
    target: Interval,
    now: datetime,
    tolerance: float,
) -> Callable[[Interval], bool]:
    if prefix == EQUAL:
        return lambda v: overlaps(v, target)
    if prefix == NOT_EQUAL:
        return lambda v: not overlaps(v, target)
    if prefix in (GREATERTHAN, STARTS_AFTER):
        return lambda v: v[0] >= target[1]
    if prefix == GREATERTHAN_OR_EQUALS:
        return lambda v: v[0] >= target[0]
    if prefix in (LESSTHAN, ENDS_BEFORE):
        return lambda v: v[1] <= target[0]
    if prefix == LESSTHAN_OR_EQUALS:
        return lambda v: v[1] <= target[1]
    widened = widen(target, now, tolerance)
    return lambda v: overlaps(v, widened)


def _any_value(name: str, prefix: str | None, test: Callable[[object], bool]) -> Predicate:
    """Lift a single-value test to the index of a record.

    ``ne`` holds when the record has values and none of them is equal, so
    it is the exact complement of ``eq`` over records that have the
    parameter.
    """
    if prefix == NOT_EQUAL:
        return lambda index: bool(index.get(name)) and all(test(v) for v in index[name])
    return lambda index: any(test(v) for v in index.get(name, ()))


# ---------------------------------------------------------------------------
# Filter compilation
# ---------------------------------------------------------------------------


def _compile_filter(flt: Filter, param: SearchParam, now: datetime, tolerance: float) -> Predicate:
    name = param.name

    if isinstance(flt, StringFilter):
        match = _string_matcher(flt)
        return _any_value(name, None, match)

    if isinstance(flt, NumberFilter):
        target = Decimal(flt.value)
        test = _decimal_matcher(flt.prefix, target, precision_window(target), tolerance)
        return _any_value(name, flt.prefix, lambda v: test(Decimal(v)))

    if isinstance(flt, DateFilter):
        try:
            interval = parse_interval(flt.value)
        except DateParseError as exc:
            raise InvalidSearchSpecError(str(exc)) from None
        test = _date_matcher(flt.prefix, interval, now, tolerance)
        return _any_value(name, flt.prefix, lambda v: test((v[0], v[1])))

    if isinstance(flt, QuantityFilter):
        return _compile_quantity(flt, name, tolerance)

    if isinstance(flt, TokenFilter):
        if flt.system is None:
            return _any_value(name, None, lambda v: v["code"] == flt.code)
        return _any_value(
            name, None, lambda v: v["code"] == flt.code and v.get("system") == flt.system
        )

    wanted = normalize_reference(flt.value) or flt.value
    return _any_value(name, None, lambda v: v == wanted)


def _compile_quantity(flt: QuantityFilter, name: str, tolerance: float) -> Predicate:
    target = Decimal(flt.value)
    window = precision_window(target)
    unit = canonical_unit(flt.unit) if flt.unit else None

    if unit is not None:
        factor, base = unit
        test = _decimal_matcher(
            flt.prefix, target * factor, (window[0] * factor, window[1] * factor), tolerance
        )

        def matches(v: dict) -> bool:
            if v.get("canonicalCode") != base:
                return False
            if flt.system is not None and v.get("system") not in (None, flt.system):
                return False
            return test(Decimal(v["canonicalValue"]))

    else:
        test = _decimal_matcher(flt.prefix, target, window, tolerance)

        def matches(v: dict) -> bool:
            if flt.unit is not None and v.get("code") != flt.unit:
                return False
            if flt.system is not None and v.get("system") not in (None, flt.system):
                return False
            return test(Decimal(v["value"]))

    if flt.prefix == NOT_EQUAL:
        # Unit mismatch is not a match for either side of the complement.
        eq = _compile_quantity(
            QuantityFilter(flt.param, flt.value, flt.unit, flt.system, EQUAL), name, tolerance
        )
        comparable = _any_value(name, None, lambda v: _same_unit(v, flt, unit))
        return lambda index: comparable(index) and not eq(index)
    return _any_value(name, None, matches)


def _same_unit(v: dict, flt: QuantityFilter, unit: tuple[Decimal, str] | None) -> bool:
    if unit is not None:
        return v.get("canonicalCode") == unit[1]
    return flt.unit is None or v.get("code") == flt.unit


def _resolve_param(resource_type: str, name: str) -> SearchParam:
    param = get_param(resource_type, name)
    if param is None:
        raise UnsupportedParameterError(
            f"Unsupported search parameter '{name}' for {resource_type}"
        )
    return param


def _compile_group(
    resource_type: str,
    group: FilterGroup,
    now: datetime,
    tolerance: float,
) -> Predicate:
    predicates = []
    for flt in group.filters:
        param = _resolve_param(resource_type, flt.param)
        expected = _FILTER_TYPES.get(type(flt))
        if expected != param.type:
            raise UnsupportedParameterError(
                f"Parameter '{flt.param}' of {resource_type} is a {param.type} parameter, "
                f"not {expected}"
            )
        predicates.append(_compile_filter(flt, param, now, tolerance))
    return _combine(predicates, group.operation)


def _combine(predicates: list[Predicate], operation: str) -> Predicate:
    if operation == AND:
        return lambda index: all(p(index) for p in predicates)
    return lambda index: any(p(index) for p in predicates)


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def _sort_value(param_type: str, value: object) -> object:
    if param_type == STRING:
        return normalize_string(value)
    if param_type == NUMBER:
        return Decimal(value)
    if param_type == DATE:
        return value[0]
    if param_type == QUANTITY:
        return Decimal(value["canonicalValue"])
    if param_type == TOKEN:
        return value["code"]
    return value


@dataclass(frozen=True)
class SortPlan:
    param: SearchParam
    descending: bool

    def key(self, envelope: dict) -> tuple:
        values = [
            _sort_value(self.param.type, v) for v in envelope["index"].get(self.param.name, ())
        ]
        if not values:
            return (0, 0)
        return (1, max(values) if self.descending else min(values))


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HasPlan:
    reference_param: str
    plan: QueryPlan

    def referenced_keys(self, store: EnvelopeSource) -> set[str]:
        """Return the ``Type/id`` keys referenced by matching related records."""
        keys: set[str] = set()
        for envelope in self.plan.matching(store):
            keys.update(envelope["index"].get(self.reference_param, ()))
        return keys


@dataclass(frozen=True)
class QueryPlan:
    resource_type: str
    conditions: tuple[Predicate, ...]
    has: tuple[HasPlan, ...]
    sort: tuple[SortPlan, ...]
    operation: str
    count: int | None
    offset: int

    def matching(self, store: EnvelopeSource) -> list[dict]:
        """Return every matching envelope, deduplicated, ordered by id."""
        referenced = [clause.referenced_keys(store) for clause in self.has]
        seen: dict[str, dict] = {}
        for envelope in store.iter_type(self.resource_type):
            key = envelope["resourceId"]
            if key in seen:
                continue
            if self._accepts(envelope, referenced):
                seen[key] = envelope
        return [seen[key] for key in sorted(seen)]

    def _accepts(self, envelope: dict, referenced: list[set[str]]) -> bool:
        if not self.conditions and not referenced:
            return True
        checks = self._checks(envelope, referenced)
        if self.operation == AND:
            return all(checks)
        return any(checks)

    def _checks(self, envelope: dict, referenced: list[set[str]]) -> Iterator[bool]:
        index = envelope.get("index", {})
        for condition in self.conditions:
            yield condition(index)
        own_key = format_reference(envelope["resourceType"], envelope["resourceId"])
        for keys in referenced:
            yield own_key in keys

    def execute(self, store: EnvelopeSource) -> list[dict]:
        """Run the plan: match, sort, then paginate."""
        results = self.matching(store)
        # Stable sorts applied from the last key back to the first.
        for sort in reversed(self.sort):
            results.sort(key=sort.key, reverse=sort.descending)
        end = None if self.count is None else self.offset + self.count
        page = results[self.offset : end]
        logger.debug(
            "Search %s matched %d record(s), returning %d", self.resource_type, len(results), len(page)
        )
        return page


def compile_spec(
    spec: SearchSpec,
    *,
    clock: Clock | None = None,
    tolerance: float = DEFAULT_APPROXIMATE_TOLERANCE,
) -> QueryPlan:
    """Compile *spec* into a :class:`QueryPlan`.

    Raises:
        InvalidSearchSpecError: For negative pagination or malformed values.
        UnsupportedParameterError: For unknown parameters or filter types that
            do not fit the parameter.
    """
    spec.validate()
    now = (clock or utc_now)()
    return _compile(spec, now, tolerance)


def _compile(spec: SearchSpec, now: datetime, tolerance: float) -> QueryPlan:
    conditions = tuple(
        _compile_group(spec.resource_type, group, now, tolerance) for group in spec.groups
    )

    has_plans = []
    for clause in spec.has:
        param = _resolve_param(clause.resource_type, clause.reference_param)
        if param.type != REFERENCE:
            raise UnsupportedParameterError(
                f"Parameter '{clause.reference_param}' of {clause.resource_type} "
                f"is not a reference parameter"
            )
        if param.targets and spec.resource_type not in param.targets:
            raise UnsupportedParameterError(
                f"Parameter '{clause.reference_param}' of {clause.resource_type} "
                f"cannot reference {spec.resource_type}"
            )
        has_plans.append(HasPlan(clause.reference_param, _compile(clause.spec, now, tolerance)))

    sort_plans = tuple(
        SortPlan(_resolve_param(spec.resource_type, key.param), key.order == DESCENDING)
        for key in spec.sort
    )

    return QueryPlan(
        resource_type=spec.resource_type,
        conditions=conditions,
        has=tuple(has_plans),
        sort=sort_plans,
        operation=spec.operation,
        count=spec.count,
        offset=spec.offset,
    )
