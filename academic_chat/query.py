"""
Query predicates for listing documents.

Queries are small immutable objects built with the helpers below
(`equal`, `search`, `or_`, `order_desc`, `limit`, ...) and evaluated against
plain document dicts by `apply_queries`. Both store implementations share
this evaluator so filtering behaves identically in tests and production.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence, Union


@dataclass(frozen=True)
class Equal:
    field: str
    value: Any

    def matches(self, document: dict) -> bool:
        actual = document.get(self.field)
        if isinstance(self.value, (list, tuple)):
            return actual in self.value
        return actual == self.value


@dataclass(frozen=True)
class Search:
    field: str
    term: str

    def matches(self, document: dict) -> bool:
        haystack = str(document.get(self.field) or "").lower()
        return all(word in haystack for word in self.term.lower().split())


@dataclass(frozen=True)
class And:
    queries: tuple

    def matches(self, document: dict) -> bool:
        return all(query.matches(document) for query in self.queries)


@dataclass(frozen=True)
class Or:
    queries: tuple

    def matches(self, document: dict) -> bool:
        return any(query.matches(document) for query in self.queries)


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Limit:
    count: int


@dataclass(frozen=True)
class Offset:
    count: int


Filter = Union[Equal, Search, And, Or]
Query = Union[Equal, Search, And, Or, OrderBy, Limit, Offset]


def equal(field: str, value: Any) -> Equal:
    return Equal(field, value)


def search(field: str, term: str) -> Search:
    return Search(field, term)


def and_(queries: Iterable[Filter]) -> And:
    return And(tuple(queries))


def or_(queries: Iterable[Filter]) -> Or:
    return Or(tuple(queries))


def order_asc(field: str) -> OrderBy:
    return OrderBy(field, descending=False)


def order_desc(field: str) -> OrderBy:
    return OrderBy(field, descending=True)


def limit(count: int) -> Limit:
    if count < 0:
        raise ValueError("limit must be non-negative")
    return Limit(count)


def offset(count: int) -> Offset:
    if count < 0:
        raise ValueError("offset must be non-negative")
    return Offset(count)


def _sort_key(value: Any) -> tuple:
    # None sorts with empty strings so mixed documents stay comparable.
    if value is None:
        return (0, "")
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


def apply_queries(documents: Iterable[dict], queries: Sequence[Query] = ()) -> list[dict]:
    """Filter, sort, offset and limit documents according to `queries`."""
    filters = [q for q in queries if isinstance(q, (Equal, Search, And, Or))]
    orderings = [q for q in queries if isinstance(q, OrderBy)]
    limits = [q for q in queries if isinstance(q, Limit)]
    offsets = [q for q in queries if isinstance(q, Offset)]

    results = [doc for doc in documents if all(f.matches(doc) for f in filters)]

    # Stable sorts applied from the least to the most significant ordering.
    for ordering in reversed(orderings):
        results.sort(
            key=lambda doc: _sort_key(doc.get(ordering.field)),
            reverse=ordering.descending,
        )

    if offsets:
        results = results[offsets[-1].count :]
    if limits:
        results = results[: limits[-1].count]
    return results
