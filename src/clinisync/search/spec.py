"""Declarative search specifications and the builder that assembles them.

Usage::

    spec = (
        Search("Patient")
        .filter(StringFilter("given", "eve", modifier=CONTAINS))
        .has("Condition", "subject", lambda s: s.filter(TokenFilter("code", "44054006")))
        .sort("birthdate", DESCENDING)
        .build()
    )

Filters passed to one ``filter()`` call form a group over a single
parameter; the group's values combine with OR unless told otherwise.
Groups and ``has`` clauses combine with the SearchSpec's operation (AND unless
set to OR).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Union

# Prefixes (FHIR comparator codes)
EQUAL = "eq"
NOT_EQUAL = "ne"
GREATERTHAN = "gt"
GREATERTHAN_OR_EQUALS = "ge"
LESSTHAN = "lt"
LESSTHAN_OR_EQUALS = "le"
STARTS_AFTER = "sa"
ENDS_BEFORE = "eb"
APPROXIMATE = "ap"

PREFIXES: frozenset[str] = frozenset(
    {
        EQUAL,
        NOT_EQUAL,
        GREATERTHAN,
        GREATERTHAN_OR_EQUALS,
        LESSTHAN,
        LESSTHAN_OR_EQUALS,
        STARTS_AFTER,
        ENDS_BEFORE,
        APPROXIMATE,
    }
)

# String modifiers; ``None`` is the default prefix match.
MATCHES_EXACTLY = "exact"
CONTAINS = "contains"

STRING_MODIFIERS: frozenset[str | None] = frozenset({None, MATCHES_EXACTLY, CONTAINS})

AND = "and"
OR = "or"

OPERATIONS: frozenset[str] = frozenset({AND, OR})

ASCENDING = "asc"
DESCENDING = "desc"

ORDERS: frozenset[str] = frozenset({ASCENDING, DESCENDING})


class InvalidSearchSpecError(ValueError):
    """Raised for malformed search specifications (bad pagination, mixed groups)."""


def _check_prefix(prefix: str) -> None:
    if prefix not in PREFIXES:
        raise InvalidSearchSpecError(f"Unknown prefix: {prefix!r}")


def _decimal_text(value: object) -> str:
    text = str(value)
    try:
        Decimal(text)
    except InvalidOperation:
        raise InvalidSearchSpecError(f"Not a decimal value: {value!r}") from None
    return text


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StringFilter:
    param: str
    value: str
    modifier: str | None = None

    def __post_init__(self) -> None:
        if self.modifier not in STRING_MODIFIERS:
            raise InvalidSearchSpecError(f"Unknown string modifier: {self.modifier!r}")


@dataclass(frozen=True)
class NumberFilter:
    """Numeric comparison.  *value* keeps its written precision (``"100"`` vs ``"100.0"``)."""

    param: str
    value: str
    prefix: str = EQUAL

    def __post_init__(self) -> None:
        _check_prefix(self.prefix)
        object.__setattr__(self, "value", _decimal_text(self.value))


@dataclass(frozen=True)
class DateFilter:
    param: str
    value: str
    prefix: str = EQUAL

    def __post_init__(self) -> None:
        _check_prefix(self.prefix)


@dataclass(frozen=True)
class QuantityFilter:
    param: str
    value: str
    unit: str | None = None
    system: str | None = None
    prefix: str = EQUAL

    def __post_init__(self) -> None:
        _check_prefix(self.prefix)
        object.__setattr__(self, "value", _decimal_text(self.value))


@dataclass(frozen=True)
class TokenFilter:
    param: str
    code: str
    system: str | None = None


@dataclass(frozen=True)
class ReferenceFilter:
    param: str
    value: str


Filter = Union[StringFilter, NumberFilter, DateFilter, QuantityFilter, TokenFilter, ReferenceFilter]


@dataclass(frozen=True)
class FilterGroup:
    filters: tuple[Filter, ...]
    operation: str = OR

    @property
    def param(self) -> str:
        return self.filters[0].param


@dataclass(frozen=True)
class SortKey:
    param: str
    order: str = ASCENDING


@dataclass(frozen=True)
class HasClause:
    """Select the outer record when some *resource_type* record points at it."""

    resource_type: str
    reference_param: str
    spec: SearchSpec


@dataclass(frozen=True)
class SearchSpec:
    resource_type: str
    groups: tuple[FilterGroup, ...] = ()
    has: tuple[HasClause, ...] = ()
    sort: tuple[SortKey, ...] = ()
    operation: str = AND
    count: int | None = None
    offset: int = 0

    def validate(self) -> None:
        """Raise :class:`InvalidSearchSpecError` for structural problems."""
        if self.count is not None and self.count < 0:
            raise InvalidSearchSpecError(f"count must not be negative, got {self.count}")
        if self.offset < 0:
            raise InvalidSearchSpecError(f"offset must not be negative, got {self.offset}")
        if self.operation not in OPERATIONS:
            raise InvalidSearchSpecError(f"Unknown operation: {self.operation!r}")
        for group in self.groups:
            if not group.filters:
                raise InvalidSearchSpecError("Filter group is empty")
            if group.operation not in OPERATIONS:
                raise InvalidSearchSpecError(f"Unknown operation: {group.operation!r}")
            if len({f.param for f in group.filters}) > 1:
                raise InvalidSearchSpecError("All filters in a group must use the same parameter")
        for key in self.sort:
            if key.order not in ORDERS:
                raise InvalidSearchSpecError(f"Unknown sort order: {key.order!r}")
        for clause in self.has:
            clause.spec.validate()


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class Search:
    """Mutable builder for :class:`SearchSpec`."""

    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type
        self.operation = AND
        self.count: int | None = None
        self.offset = 0
        self._groups: list[FilterGroup] = []
        self._has: list[HasClause] = []
        self._sort: list[SortKey] = []

    def filter(self, *filters: Filter, operation: str = OR) -> Search:
        self._groups.append(FilterGroup(tuple(filters), operation))
        return self

    def has(
        self,
        resource_type: str,
        reference_param: str,
        sub: Callable[[Search], object] | SearchSpec | None = None,
    ) -> Search:
        """Add a chained reference clause.

        *sub* is either a finished :class:`SearchSpec` for *resource_type*
        or a callable that configures a fresh builder for it.
        """
        if isinstance(sub, SearchSpec):
            if sub.resource_type != resource_type:
                raise InvalidSearchSpecError(
                    f"has() sub-search is for {sub.resource_type}, expected {resource_type}"
                )
            spec = sub
        else:
            builder = Search(resource_type)
            if sub is not None:
                sub(builder)
            spec = builder.build()
        self._has.append(HasClause(resource_type, reference_param, spec))
        return self

    def sort(self, param: str, order: str = ASCENDING) -> Search:
        self._sort.append(SortKey(param, order))
        return self

    def build(self) -> SearchSpec:
        spec = SearchSpec(
            resource_type=self.resource_type,
            groups=tuple(self._groups),
            has=tuple(self._has),
            sort=tuple(self._sort),
            operation=self.operation,
            count=self.count,
            offset=self.offset,
        )
        spec.validate()
        return spec
