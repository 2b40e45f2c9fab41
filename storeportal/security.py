"""Role checks and request authentication for the portal API."""
from __future__ import annotations

from typing import AbstractSet, Callable, Iterable, Optional

from fastapi import Request

from .errors import Forbidden, Unauthenticated
from .models import Portal, Role, ScopedUser, User
from .sessions import resolve_session


def authorize(user: Optional[User], allowed_roles: AbstractSet[Role]) -> Optional[ScopedUser]:
    """Return the scoped user when ``user`` holds one of ``allowed_roles``.

    Pure decision function: no lookups happen here. ``ironhand`` users are
    scoped as managers of their own stores.
    """

    if user is None or user.role not in allowed_roles:
        return None
    manager_id = user.id if user.role is Role.IRONHAND else None
    return ScopedUser(user=user, store_number=user.store_number, manager_id=manager_id)


def is_master(user: Optional[User]) -> bool:
    return user is not None and user.portal is Portal.MASTER


def current_user(request: Request) -> Optional[User]:
    state = request.app.state
    return resolve_session(request, state.database, state.session_cookie)


def require_session(request: Request) -> User:
    user = current_user(request)
    if user is None:
        raise Unauthenticated()
    return user


def require_roles(*roles: Role | str | Iterable[Role]) -> Callable[[Request], ScopedUser]:
    """Build a dependency that admits only the given roles.

    Both a missing session and a disallowed role are rejected with 403.
    """

    allowed = frozenset(_flatten(roles))
    if not allowed:
        raise ValueError("At least one role must be allowed")

    def dependency(request: Request) -> ScopedUser:
        scoped = authorize(current_user(request), allowed)
        if scoped is None:
            raise Forbidden()
        return scoped

    return dependency


def require_master(request: Request) -> User:
    user = current_user(request)
    if user is None or not is_master(user):
        raise Unauthenticated()
    return user


def _flatten(roles: Iterable[Role | Iterable[Role]]) -> Iterable[Role]:
    for item in roles:
        if isinstance(item, str):
            yield Role.parse(item)
        else:
            yield from (Role.parse(value) for value in item)


__all__ = [
    "authorize",
    "current_user",
    "is_master",
    "require_master",
    "require_roles",
    "require_session",
]
