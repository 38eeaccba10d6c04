"""Search over the local record store."""

from __future__ import annotations

from clinisync.search.compiler import QueryPlan, UnsupportedParameterError, compile_spec
from clinisync.search.params import SearchParam, get_param, register_param
from clinisync.search.query import parse_query
from clinisync.search.spec import (
    AND,
    APPROXIMATE,
    ASCENDING,
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
    OR,
    STARTS_AFTER,
    DateFilter,
    InvalidSearchSpecError,
    NumberFilter,
    QuantityFilter,
    ReferenceFilter,
    Search,
    SearchSpec,
    StringFilter,
    TokenFilter,
)

__all__ = [
    "AND",
    "APPROXIMATE",
    "ASCENDING",
    "CONTAINS",
    "DESCENDING",
    "ENDS_BEFORE",
    "EQUAL",
    "GREATERTHAN",
    "GREATERTHAN_OR_EQUALS",
    "LESSTHAN",
    "LESSTHAN_OR_EQUALS",
    "MATCHES_EXACTLY",
    "NOT_EQUAL",
    "OR",
    "STARTS_AFTER",
    "DateFilter",
    "InvalidSearchSpecError",
    "NumberFilter",
    "QuantityFilter",
    "QueryPlan",
    "ReferenceFilter",
    "Search",
    "SearchParam",
    "SearchSpec",
    "StringFilter",
    "TokenFilter",
    "UnsupportedParameterError",
    "compile_spec",
    "get_param",
    "parse_query",
    "register_param",
]
