from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .roles import Role, normalize_role


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated caller, as supplied by the identity provider."""

    id: str
    role: Role = Role.VIEWER
    name: str | None = None
    department: str | None = None

    @classmethod
    def of(cls, id: str, role: Any = None, **kwargs: Any) -> "Actor":
        return cls(id=str(id), role=normalize_role(role), **kwargs)

    def to_audit(self) -> dict[str, Any]:
        return {"id": self.id, "role": self.role.name, "name": self.name}
