"""Abstract row-scope predicates.

A predicate is a small boolean expression over dotted attribute paths of a
record (``"property.manager_id"``). It is built by a scope resolver without
any knowledge of storage, evaluated in memory with :func:`evaluate`, and
translated to a SQL clause by :mod:`proptrack.platform.security.rls`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any


class Predicate:
    __slots__ = ()


@dataclass(frozen=True, slots=True)
class MatchNothing(Predicate):
    pass


@dataclass(frozen=True, slots=True)
class MatchAll(Predicate):
    pass


@dataclass(frozen=True, slots=True)
class Equals(Predicate):
    path: str
    value: Any


@dataclass(frozen=True, slots=True)
class OneOf(Predicate):
    path: str
    values: frozenset[Any]


@dataclass(frozen=True, slots=True)
class AnyOf(Predicate):
    """True when at least one member of the collection at ``path`` satisfies ``condition``."""

    path: str
    condition: Predicate


@dataclass(frozen=True, slots=True)
class AllOf(Predicate):
    clauses: tuple[Predicate, ...]


NOTHING = MatchNothing()
EVERYTHING = MatchAll()


def one_of(path: str, values: Iterable[Any]) -> Predicate:
    resolved = frozenset(value for value in values if value is not None)
    if not resolved:
        return NOTHING
    return OneOf(path=path, values=resolved)


def all_of(*clauses: Predicate) -> Predicate:
    flattened = [clause for clause in clauses if not isinstance(clause, MatchAll)]
    if any(isinstance(clause, MatchNothing) for clause in flattened):
        return NOTHING
    if not flattened:
        return EVERYTHING
    if len(flattened) == 1:
        return flattened[0]
    return AllOf(clauses=tuple(flattened))


def evaluate(predicate: Predicate, record: Any) -> bool:
    """Evaluate a predicate against an ORM object, dataclass or mapping."""

    if isinstance(predicate, MatchNothing):
        return False
    if isinstance(predicate, MatchAll):
        return True
    if isinstance(predicate, Equals):
        return _resolve(record, predicate.path) == predicate.value
    if isinstance(predicate, OneOf):
        return _resolve(record, predicate.path) in predicate.values
    if isinstance(predicate, AnyOf):
        members = _resolve(record, predicate.path) or []
        return any(evaluate(predicate.condition, member) for member in members)
    if isinstance(predicate, AllOf):
        return all(evaluate(clause, record) for clause in predicate.clauses)
    raise TypeError(f"Unsupported predicate: {predicate!r}")


def _resolve(record: Any, path: str) -> Any:
    current = record
    for segment in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(segment)
        else:
            current = getattr(current, segment, None)
    return current
