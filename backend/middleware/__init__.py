# Middleware package
# middleware/__init__.py
"""Middleware components for request processing"""

from .auth import get_current_user
from .rate_limit import RateLimiter, rate_limit_check
from .logging import LoggingMiddleware, StructuredLogger
from .metrics import MetricsMiddleware, MetricsCollector

__all__ = [
    'get_current_user',
    'RateLimiter', 'rate_limit_check',
    'LoggingMiddleware', 'StructuredLogger',
    'MetricsMiddleware', 'MetricsCollector'
]
