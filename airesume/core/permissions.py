"""Scope vocabulary, authorization checks, and permission-set editing rules.

Scopes are strings of three shapes:

* ``<verb>`` such as ``read``; grants the verb on every category of the
  key's own resume.
* ``<verb>:all`` such as ``write:all``; the global form of a verb.
* ``<category>:<verb>`` such as ``resume:read``; grants one verb on one
  category.

Unknown strings are rejected at the boundary rather than carried along.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

VERBS: tuple[str, ...] = ("read", "write", "delete")
CATEGORIES: frozenset[str] = frozenset(
    {
        "resume",
        "profile",
        "experience",
        "education",
        "skills",
        "projects",
        "certifications",
        "analytics",
        "contact",
        "ai",
        "api_keys",
    }
)
GLOBAL_QUALIFIER = "all"
ADMIN_GRANT = "admin"


class InvalidPermissionsError(ValueError):
    """Raised when a permission set cannot be persisted."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidScopeError(InvalidPermissionsError):
    """Raised for scope strings outside the vocabulary."""

    def __init__(self, scope: str) -> None:
        super().__init__(f"Unrecognized permission scope: {scope!r}.")
        self.scope = scope


@dataclass(frozen=True)
class Scope:
    """Parsed scope: a verb, an optional category, and a global flag."""

    verb: str
    category: str | None = None
    is_global: bool = False

    def __str__(self) -> str:
        if self.is_global:
            return f"{self.verb}:{GLOBAL_QUALIFIER}"
        if self.category is not None:
            return f"{self.category}:{self.verb}"
        return self.verb

    def covers(self, verb: str, category: str | None) -> bool:
        """Return True when this scope satisfies a ``(category, verb)`` request."""
        if self.verb != verb:
            return False
        if self.is_global or self.category is None:
            return True
        return self.category == category


def parse_scope(value: str | Scope) -> Scope:
    """Parse a scope string, rejecting anything outside the vocabulary."""
    if isinstance(value, Scope):
        return value
    text = value.strip()
    parts = text.split(":")
    if len(parts) == 1 and parts[0] in VERBS:
        return Scope(verb=parts[0])
    if len(parts) == 2:
        left, right = parts
        if left in VERBS and right == GLOBAL_QUALIFIER:
            return Scope(verb=left, is_global=True)
        if left in CATEGORIES and right in VERBS:
            return Scope(verb=right, category=left)
    raise InvalidScopeError(value)


def _known_scopes(permissions: Iterable[str]) -> list[Scope]:
    """Parse stored scopes, ignoring strings that grant nothing."""
    scopes: list[Scope] = []
    for raw in permissions:
        try:
            scopes.append(parse_scope(raw))
        except InvalidScopeError:
            continue
    return scopes


def _validate_request(verb: str, category: str | None) -> None:
    if verb not in VERBS:
        raise InvalidScopeError(verb)
    if category is not None and category not in CATEGORIES:
        raise InvalidScopeError(f"{category}:{verb}")


def granted_by(
    permissions: Iterable[str],
    is_admin: bool,
    verb: str,
    category: str | None = None,
) -> list[str]:
    """List the grants that satisfy a request, in evaluation order."""
    _validate_request(verb, category)
    grants: list[str] = [ADMIN_GRANT] if is_admin else []
    grants.extend(
        str(scope) for scope in _known_scopes(permissions) if scope.covers(verb, category)
    )
    return grants


def is_authorized(
    permissions: Iterable[str],
    is_admin: bool,
    verb: str,
    category: str | None = None,
) -> bool:
    """Decide whether a key's permissions allow ``verb`` on ``category``."""
    _validate_request(verb, category)
    if is_admin:
        return True
    scopes = _known_scopes(permissions)
    if any(scope.is_global and scope.verb == verb for scope in scopes):
        return True
    return any(scope.covers(verb, category) for scope in scopes)


def toggle_scope(permissions: Sequence[str], scope: str | Scope, enabled: bool) -> list[str]:
    """Apply one form toggle; the most recent toggle wins.

    Enabling a global scope drops every narrower scope of the same verb, and
    enabling a narrow scope drops the global scope of that verb. The result
    may be empty; emptiness is rejected by ``normalize_permissions``.
    """
    target = parse_scope(scope)
    current = [parse_scope(raw) for raw in permissions]
    if not enabled:
        return [str(item) for item in current if item != target]

    if target.is_global:
        kept = [item for item in current if item.verb != target.verb]
    else:
        kept = [item for item in current if not (item.is_global and item.verb == target.verb)]
    if target not in kept:
        kept.append(target)
    return [str(item) for item in kept]


def normalize_permissions(permissions: Iterable[str]) -> list[str]:
    """Validate and canonicalize a permission set before persistence.

    Duplicates are removed and, where a global scope and narrower scopes of
    the same verb were submitted together, only the global scope is kept.
    """
    parsed: list[Scope] = []
    for raw in permissions:
        scope = parse_scope(raw)
        if scope not in parsed:
            parsed.append(scope)

    global_verbs = {scope.verb for scope in parsed if scope.is_global}
    normalized = [
        str(scope) for scope in parsed if scope.is_global or scope.verb not in global_verbs
    ]
    if not normalized:
        raise InvalidPermissionsError("At least one permission is required.")
    return normalized
