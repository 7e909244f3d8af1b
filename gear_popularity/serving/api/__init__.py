"""
API Module
"""
from .middleware import RequestLoggingMiddleware, RateLimitMiddleware

__all__ = [
    "RequestLoggingMiddleware",
    "RateLimitMiddleware",
]
