"""
permissions.py — Role-based permission table.

PERMISSIONS maps (role, resource, action) to one of three rules:

  ALLOW             — always granted
  DENY              — always refused (same effect as a missing entry, but
                      documents an explicit decision)
  Predicate(check)  — granted when check(actor, data) is true; refused when
                      no data is supplied

has_permission() is an OR over the actor's roles and denies by default.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from backend.app.constants import Role


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Deny:
    pass


@dataclass(frozen=True)
class Predicate:
    check: Callable[[Any, Any], bool]


ALLOW = Allow()
DENY = Deny()

Rule = Allow | Deny | Predicate


class Resource:
    USERS     = "users"
    DASHBOARD = "dashboard"
    ORDERS    = "orders"


class Action:
    VIEW        = "view"
    CREATE      = "create"
    UPDATE      = "update"
    DELETE      = "delete"
    CHANGE_ROLE = "change_role"
    VIEW_NOTES  = "view_notes"


def _is_self(actor, data) -> bool:
    """`data` is the target user (or anything with an `id`)."""
    target_id = data.get("id") if isinstance(data, dict) else getattr(data, "id", None)
    return target_id is not None and target_id == actor.id


PERMISSIONS: dict[tuple[Role, str, str], Rule] = {
    # SUPER_ADMIN: full control over accounts and the dashboard.
    (Role.SUPER_ADMIN, Resource.USERS, Action.VIEW):        ALLOW,
    (Role.SUPER_ADMIN, Resource.USERS, Action.CREATE):      ALLOW,
    (Role.SUPER_ADMIN, Resource.USERS, Action.UPDATE):      ALLOW,
    (Role.SUPER_ADMIN, Resource.USERS, Action.DELETE):      ALLOW,
    (Role.SUPER_ADMIN, Resource.USERS, Action.CHANGE_ROLE): ALLOW,
    (Role.SUPER_ADMIN, Resource.USERS, Action.VIEW_NOTES):  ALLOW,
    (Role.SUPER_ADMIN, Resource.DASHBOARD, Action.VIEW):    ALLOW,
    (Role.SUPER_ADMIN, Resource.ORDERS, Action.VIEW):       ALLOW,
    (Role.SUPER_ADMIN, Resource.ORDERS, Action.UPDATE):     ALLOW,

    # ORDER_MANAGER: reads customer accounts to fulfil orders, never edits them.
    (Role.ORDER_MANAGER, Resource.USERS, Action.VIEW):      ALLOW,
    (Role.ORDER_MANAGER, Resource.USERS, Action.UPDATE):    Predicate(_is_self),
    (Role.ORDER_MANAGER, Resource.USERS, Action.DELETE):    DENY,
    (Role.ORDER_MANAGER, Resource.ORDERS, Action.VIEW):     ALLOW,
    (Role.ORDER_MANAGER, Resource.ORDERS, Action.UPDATE):   ALLOW,

    # CUSTOMER: own account only.
    (Role.CUSTOMER, Resource.USERS, Action.VIEW):           Predicate(_is_self),
    (Role.CUSTOMER, Resource.USERS, Action.UPDATE):         Predicate(_is_self),
    (Role.CUSTOMER, Resource.USERS, Action.DELETE):         Predicate(_is_self),

    # GUEST: browsing only.
    (Role.GUEST, Resource.USERS, Action.VIEW):              DENY,
}


def roles_of(actor) -> tuple[Role, ...]:
    roles = getattr(actor, "roles", None)
    if roles:
        return tuple(Role(r) for r in roles)
    role = getattr(actor, "role", None)
    return (Role(role),) if role is not None else ()


def _evaluate(rule: Rule | None, actor, data) -> bool:
    if rule is None or isinstance(rule, Deny):
        return False
    if isinstance(rule, Allow):
        return True
    return data is not None and bool(rule.check(actor, data))


def has_permission(actor, resource: str, action: str, data=None) -> bool:
    """True if any of the actor's roles grants `action` on `resource`."""
    if actor is None:
        return False
    return any(
        _evaluate(PERMISSIONS.get((role, resource, action)), actor, data)
        for role in roles_of(actor)
    )
