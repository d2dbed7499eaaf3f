from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, and_, false, true
from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql import Select

from proptrack import audit
from proptrack.metrics import observe_scope_denied
from proptrack.platform.security.context import Principal
from proptrack.platform.security.errors import AuthorizationError
from proptrack.platform.security.predicates import (
    AllOf,
    AnyOf,
    Equals,
    MatchAll,
    MatchNothing,
    OneOf,
    Predicate,
    evaluate,
)


def apply_scope_filter(query: Select[Any], model: type[Any], predicate: Predicate) -> Select[Any]:
    """Restrict a select over ``model`` to the rows matched by ``predicate``."""

    if isinstance(predicate, MatchAll):
        return query
    return query.where(compile_predicate(predicate, model))


def compile_predicate(predicate: Predicate, model: type[Any]) -> ColumnElement[bool]:
    """Translate an abstract predicate into a SQLAlchemy boolean clause.

    Dotted paths walk mapped relationships: scalar relationships become
    ``has()`` and collections become ``any()`` sub-queries.
    """

    if isinstance(predicate, MatchNothing):
        return false()
    if isinstance(predicate, MatchAll):
        return true()
    if isinstance(predicate, Equals):
        return _compile_path(model, predicate.path, lambda column: column == predicate.value)
    if isinstance(predicate, OneOf):
        if not predicate.values:
            return false()
        values = sorted(predicate.values, key=str)
        return _compile_path(model, predicate.path, lambda column: column.in_(values))
    if isinstance(predicate, AnyOf):
        condition = predicate.condition
        return _compile_path(
            model,
            predicate.path,
            lambda collection: collection.any(compile_predicate(condition, collection.property.mapper.class_)),
        )
    if isinstance(predicate, AllOf):
        return and_(*(compile_predicate(clause, model) for clause in predicate.clauses))
    raise TypeError(f"Unsupported predicate: {predicate!r}")


def _compile_path(model: type[Any], path: str, leaf: Any) -> ColumnElement[bool]:
    head, _, rest = path.partition(".")
    attribute: InstrumentedAttribute[Any] = getattr(model, head)
    if not rest:
        return leaf(attribute)

    target = attribute.property.mapper.class_
    inner = _compile_path(target, rest, leaf)
    if attribute.property.uselist:
        return attribute.any(inner)
    return attribute.has(inner)


def ensure_in_scope(
    resource: str,
    predicate: Predicate,
    record: Any,
    principal: Principal,
    *,
    action: str = "read",
) -> None:
    """Raise when a record loaded by id falls outside the principal's scope."""

    if evaluate(predicate, record):
        return

    role = principal.role.value if principal.role is not None else "unknown"
    observe_scope_denied(resource=resource, action=action, role=role)
    audit.record(
        actor_user_id=principal.id,
        entity_type="security.rls",
        entity_id=str(getattr(record, "id", "unknown")),
        action="rls.denied",
        before=None,
        after={"resource": resource, "action": action, "role": role},
        correlation_id=principal.correlation_id,
    )
    raise AuthorizationError("Access denied")
