from .aggregator import AnalyticsService, aggregate, time_bucket

__all__ = ["AnalyticsService", "aggregate", "time_bucket"]
