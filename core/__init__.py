"""
Metrics Stream Core Components

Provides foundational infrastructure shared by the services:
- Configuration loaded from the environment
- Application errors with HTTP-equivalent status codes
- Circuit breaker for upstream API resilience
- TTL cache for data source results
"""

from .cache import MemoryCache
from .circuit_breaker import CircuitBreaker, CircuitState
from .config import Config
from .errors import AppError

__all__ = ["AppError", "CircuitBreaker", "CircuitState", "Config", "MemoryCache"]
