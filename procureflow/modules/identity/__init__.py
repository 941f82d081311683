from .actor import Actor
from .roles import Role, has_at_least, is_admin, normalize_role

__all__ = ["Actor", "Role", "has_at_least", "is_admin", "normalize_role"]
