from .entity_store import EntityStore

__all__ = ["EntityStore"]
