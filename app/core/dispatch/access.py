"""
Role checks for dispatch operations.

Admins may do everything.  Users may create, view and update jobs but may
not delete jobs or manage subcontractors and accounts.
"""
from __future__ import annotations

from app.core.dispatch.domain import Actor, Role
from app.core.errors import AuthorizationError


def assert_role(actor: Actor, required: Role, *, action: str = "perform this action") -> None:
    if required == Role.ADMIN and not actor.is_admin:
        raise AuthorizationError(f"Admin role required to {action}")
