from proptrack.platform.security.context import Principal, Role
from proptrack.platform.security.errors import AuthorizationError, ForbiddenFieldError
from proptrack.platform.security.fls import validate_field_write
from proptrack.platform.security.predicates import (
    EVERYTHING,
    NOTHING,
    AllOf,
    AnyOf,
    Equals,
    MatchAll,
    MatchNothing,
    OneOf,
    Predicate,
    all_of,
    evaluate,
    one_of,
)
from proptrack.platform.security.rls import apply_scope_filter, compile_predicate, ensure_in_scope

__all__ = [
    "Principal",
    "Role",
    "AuthorizationError",
    "ForbiddenFieldError",
    "validate_field_write",
    "Predicate",
    "MatchAll",
    "MatchNothing",
    "Equals",
    "OneOf",
    "AnyOf",
    "AllOf",
    "EVERYTHING",
    "NOTHING",
    "all_of",
    "one_of",
    "evaluate",
    "apply_scope_filter",
    "compile_predicate",
    "ensure_in_scope",
]
