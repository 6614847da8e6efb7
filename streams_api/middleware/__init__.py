# ABOUTME: Middleware package initialization with all middleware components
# ABOUTME: Exports timeout, rate limiting, logging, and CORS middleware for the FastAPI service

from .timeout import TimeoutMiddleware
from .rate_limit import RateLimitMiddleware, InMemoryRateLimiter, RateWindow, get_client_ip, get_client_key
from .logging import LoggingMiddleware
from .cors import EnhancedCORSMiddleware, validate_cors_origins

__all__ = [
    "TimeoutMiddleware",
    "RateLimitMiddleware",
    "InMemoryRateLimiter",
    "RateWindow",
    "LoggingMiddleware",
    "EnhancedCORSMiddleware",
    "get_client_ip",
    "get_client_key",
    "validate_cors_origins",
]
