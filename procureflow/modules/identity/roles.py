from __future__ import annotations

from enum import IntEnum
from typing import Any


class Role(IntEnum):
    """Actor roles, ordered from least to most privileged."""

    VIEWER = 1
    VENDOR = 2
    EVALUATOR = 3
    PROCUREMENT_OFFICER = 4
    APPROVER = 5
    ADMIN = 6


_ALIASES = {
    "viewer": Role.VIEWER,
    "readonly": Role.VIEWER,
    "vendor": Role.VENDOR,
    "supplier": Role.VENDOR,
    "evaluator": Role.EVALUATOR,
    "procurementofficer": Role.PROCUREMENT_OFFICER,
    "officer": Role.PROCUREMENT_OFFICER,
    "buyer": Role.PROCUREMENT_OFFICER,
    "approver": Role.APPROVER,
    "manager": Role.APPROVER,
    "admin": Role.ADMIN,
    "administrator": Role.ADMIN,
}


def normalize_role(value: Any) -> Role:
    """
    Normalize a role to its canonical member.
    Accepts Role members, names in any case (`procurement_officer`,
    `Procurement-Officer`) and common variants. Unknown or empty values are
    treated as VIEWER.
    """
    if isinstance(value, Role):
        return value
    s = str(value or "").strip()
    if not s:
        return Role.VIEWER
    low = s.lower().replace("_", "").replace("-", "").replace(" ", "")
    return _ALIASES.get(low, Role.VIEWER)


def has_at_least(role: Any, minimum: Any) -> bool:
    return normalize_role(role) >= normalize_role(minimum)


def is_admin(role: Any) -> bool:
    return normalize_role(role) == Role.ADMIN
