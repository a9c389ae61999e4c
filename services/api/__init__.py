"""
HTTP API: the /metrics SSE route and its middlewares.
"""

from .server import MetricsAPI, MetricsQuery, create_app

__all__ = ["MetricsAPI", "MetricsQuery", "create_app"]
