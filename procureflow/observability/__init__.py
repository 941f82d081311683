from .context import correlation_scope, get_correlation_id
from .logging import configure_logging, get_logger

__all__ = ["configure_logging", "correlation_scope", "get_correlation_id", "get_logger"]
