# ABOUTME: CORS middleware for browser dashboards reading the concurrent streams API
# ABOUTME: Builds a policy from settings and exposes the request ID and rate limit headers to scripts

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from urllib.parse import urlsplit

from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from streams_api.config import get_settings

logger = logging.getLogger(__name__)

# GET for reads, PUT for SDP publishes
ALLOWED_METHODS = ["GET", "OPTIONS", "PUT"]

ALLOWED_HEADERS = ["Accept", "Authorization", "Content-Type", "X-Request-ID"]

EXPOSED_HEADERS = [
    "X-Request-ID",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "Retry-After",
]


@dataclass
class CORSPolicy:
    """
    Cross-origin policy for the API.

    Bearer tokens travel in the Authorization header, so cookies are never
    needed and credentials stay off unless explicitly requested.
    """
    allow_origins: List[str] = field(default_factory=list)
    allow_methods: List[str] = field(default_factory=lambda: list(ALLOWED_METHODS))
    allow_headers: List[str] = field(default_factory=lambda: list(ALLOWED_HEADERS))
    expose_headers: List[str] = field(default_factory=lambda: list(EXPOSED_HEADERS))
    allow_credentials: bool = False
    max_age: int = 600

    @classmethod
    def from_settings(cls) -> "CORSPolicy":
        origins = validate_cors_origins(get_settings().cors_allow_origins)
        if not origins:
            logger.warning("No CORS origins configured - cross-origin browser reads are disabled")
        return cls(allow_origins=origins)


class EnhancedCORSMiddleware:
    """Starlette's CORSMiddleware driven by a CORSPolicy (settings by default)."""

    def __init__(
        self,
        app: ASGIApp,
        allow_origins: Optional[Sequence[str]] = None,
        policy: Optional[CORSPolicy] = None,
    ):
        if policy is None:
            if allow_origins is None:
                policy = CORSPolicy.from_settings()
            else:
                policy = CORSPolicy(allow_origins=validate_cors_origins(list(allow_origins)))

        if policy.allow_credentials and "*" in policy.allow_origins:
            raise ValueError("CORS credentials cannot be combined with a wildcard origin")

        self.policy = policy
        self.cors_middleware = CORSMiddleware(
            app,
            allow_origins=policy.allow_origins,
            allow_methods=policy.allow_methods,
            allow_headers=policy.allow_headers,
            allow_credentials=policy.allow_credentials,
            expose_headers=policy.expose_headers,
            max_age=policy.max_age,
        )

        logger.info(
            "CORS middleware configured",
            extra={
                "allow_origins": policy.allow_origins,
                "allow_methods": policy.allow_methods,
                "allow_credentials": policy.allow_credentials,
            }
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.cors_middleware(scope, receive, send)


def validate_cors_origins(origins: List[str]) -> List[str]:
    """
    Keep well-formed origins (scheme://host[:port]) and the wildcard.

    Trailing slashes are dropped; entries with a path, query or a non-http
    scheme are discarded with a warning.
    """
    validated = []

    for origin in origins:
        origin = origin.strip().rstrip("/")
        if not origin:
            continue

        if origin == "*":
            logger.warning("Wildcard CORS origin configured - any site may read API responses")
            validated.append(origin)
            continue

        parts = urlsplit(origin)
        if parts.scheme not in ("http", "https") or not parts.netloc or parts.path or parts.query:
            logger.warning(f"Ignoring invalid CORS origin: {origin}")
            continue

        if origin not in validated:
            validated.append(origin)

    return validated
