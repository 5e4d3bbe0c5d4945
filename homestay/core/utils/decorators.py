"""Access-control helpers for the JSON API."""

from __future__ import annotations

from functools import wraps
from typing import Callable, FrozenSet, Iterable, List, Optional, TypeVar

from flask import jsonify
from flask_jwt_extended import get_jwt, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException

F = TypeVar("F", bound=Callable)

ADMIN_ROLE = "admin"


def _roles() -> FrozenSet[str]:
    return frozenset((get_jwt() or {}).get("roles") or ())


def visible_child_ids() -> Optional[List[str]]:
    """
    Children the caller may see, from the optional `children` JWT claim.

    None means unrestricted: the claim is absent or the caller is an admin.
    """
    children = (get_jwt() or {}).get("children")
    if children is None or ADMIN_ROLE in _roles():
        return None
    return [str(child_id) for child_id in children]


def can_access_child(child_id: str) -> bool:
    visible = visible_child_ids()
    return visible is None or str(child_id) in visible


def require_roles(required_roles: Iterable[str]):
    """Reject the request with 401/403 unless the JWT carries every role (admins pass)."""
    required = frozenset(required_roles)

    def decorator(fn: F) -> F:
        @wraps(fn)
        def wrapper(*args, **kwargs):  # type: ignore[misc]
            try:
                verify_jwt_in_request()
            except JWTExtendedException:
                return jsonify({"ok": False, "error": "unauthorized"}), 401
            roles = _roles()
            if ADMIN_ROLE not in roles and not required <= roles:
                return jsonify({"ok": False, "error": "forbidden"}), 403
            return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
