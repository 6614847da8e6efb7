# ABOUTME: Rate limiting middleware for FastAPI with per-client burst and sustained limits
# ABOUTME: Uses a lock-guarded in-memory sliding window store with bypass for health and metrics endpoints

import math
import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple
from collections import deque
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse

from streams_api.core.auth import token_fingerprint
from streams_api.dependencies import get_token_store
from streams_api.models.errors import RateLimitExceededError
from streams_api.models.responses import ErrorResponse
from streams_api.monitoring.metrics import PrometheusMetrics

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request.

    Checks X-Forwarded-For header first, then falls back to client IP.
    """
    # Check for forwarded IP (common in load balancer setups)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in case of multiple proxies
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


def is_known_token(token: str) -> bool:
    return get_token_store().knows(token)


def get_client_key(request: Request, token_known: Callable[[str], bool] = is_known_token) -> str:
    """
    Rate limit identity: a bearer token with a grant, else the client IP.

    Unknown tokens share their IP's budget so minting fresh tokens does not
    buy fresh budgets.
    """
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() == "bearer" and token and token_known(token):
        return f"token:{token_fingerprint(token)}"
    return f"ip:{get_client_ip(request)}"


@dataclass(frozen=True)
class RateWindow:
    name: str
    limit: int
    seconds: int


@dataclass
class WindowState:
    window: RateWindow
    remaining: int
    reset_at: float  # epoch seconds when the oldest counted request expires


@dataclass
class RateDecision:
    allowed: bool
    windows: List[WindowState]
    retry_after: Optional[int] = None
    blocked_by: Optional[str] = None

    @property
    def tightest(self) -> WindowState:
        """Window with the fewest remaining requests; reported in headers."""
        return min(self.windows, key=lambda state: (state.remaining, -state.window.seconds))


class InMemoryRateLimiter:
    """
    In-memory rate limiter using a sliding window per client and window.

    ``check`` prunes, decides and records under one lock, so concurrent
    bursts from the same client cannot undercount. Rejected requests are not
    recorded. Expired histories are swept once per shortest window. For
    distributed deployments the store would move to Redis.
    """

    def __init__(self, windows: Sequence[RateWindow], clock: Callable[[], float] = time.time):
        if not windows:
            raise ValueError("At least one rate window is required")
        self.windows = list(windows)
        self._clock = clock
        self._lock = threading.Lock()
        self.requests: Dict[Tuple[str, str], Deque[float]] = {}
        self._window_seconds = {window.name: window.seconds for window in self.windows}
        self._sweep_interval = min(self._window_seconds.values())
        self._last_sweep = clock()

    def check(self, key: str) -> RateDecision:
        now = self._clock()

        with self._lock:
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)

            histories = []
            for window in self.windows:
                history = self.requests.get((key, window.name)) or deque()
                window_start = now - window.seconds
                while history and history[0] <= window_start:
                    history.popleft()
                histories.append((window, history))

            blocked = [(window, history) for window, history in histories if len(history) >= window.limit]
            for window, history in histories:
                if not blocked:
                    history.append(now)
                if history:
                    self.requests[(key, window.name)] = history
                else:
                    self.requests.pop((key, window.name), None)

            states = [
                WindowState(
                    window=window,
                    remaining=max(0, window.limit - len(history)),
                    reset_at=(history[0] + window.seconds) if history else now + window.seconds,
                )
                for window, history in histories
            ]

        if not blocked:
            return RateDecision(allowed=True, windows=states)

        # The request may proceed once every exhausted window frees a slot
        retry_at = max(history[0] + window.seconds for window, history in blocked)
        blocking_window = max(blocked, key=lambda item: item[1][0] + item[0].seconds)[0]
        return RateDecision(
            allowed=False,
            windows=states,
            retry_after=max(1, math.ceil(retry_at - now)),
            blocked_by=blocking_window.name,
        )

    def _sweep(self, now: float) -> None:
        """Drop histories whose entries have all expired; caller holds the lock."""
        for (key, name), history in list(self.requests.items()):
            window_start = now - self._window_seconds[name]
            while history and history[0] <= window_start:
                history.popleft()
            if not history:
                del self.requests[(key, name)]
        self._last_sweep = now

    def reset(self) -> None:
        with self._lock:
            self.requests.clear()


def rate_limit_headers(decision: RateDecision) -> Dict[str, str]:
    state = decision.tightest
    return {
        "X-RateLimit-Limit": str(state.window.limit),
        "X-RateLimit-Remaining": str(state.remaining),
        "X-RateLimit-Reset": str(math.ceil(state.reset_at)),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting middleware with per-client burst and sustained limits.

    Defaults: 100 requests per minute and 1000 requests per hour. Health
    and metrics endpoints are exempt. Throttled clients recover
    automatically as their windows roll over.
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 100,
        requests_per_hour: int = 1000,
        limiter: Optional[InMemoryRateLimiter] = None,
        token_known: Callable[[str], bool] = is_known_token,
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.exempt_paths = {"/healthz", "/readyz", "/metrics"}
        self.token_known = token_known
        self.rate_limiter = limiter or InMemoryRateLimiter([
            RateWindow("minute", requests_per_minute, 60),
            RateWindow("hour", requests_per_hour, 3600),
        ])
        self.metrics = PrometheusMetrics()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exempt_paths:
            logger.debug(f"Exempting {request.url.path} from rate limiting")
            return await call_next(request)

        client_key = get_client_key(request, self.token_known)
        request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "")

        decision = self.rate_limiter.check(client_key)
        headers = rate_limit_headers(decision)

        if not decision.allowed:
            self.metrics.record_rate_limited(decision.blocked_by or "unknown")
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "request_id": request_id,
                    "client": client_key,
                    "method": request.method,
                    "path": request.url.path,
                    "window": decision.blocked_by,
                    "retry_after": decision.retry_after,
                }
            )

            error = RateLimitExceededError(
                (
                    f"Rate limit exceeded. Maximum {self.requests_per_minute} requests per minute "
                    f"and {self.requests_per_hour} requests per hour."
                ),
                details=[{"field": "requests", "issue": f"{decision.blocked_by} limit reached"}],
            )
            error_response = ErrorResponse.build(
                code=error.code,
                message=error.message,
                request_id=request_id,
                details=error.details,
            )

            headers.update({
                "X-Request-ID": request_id,
                "Retry-After": str(decision.retry_after),
            })

            return JSONResponse(
                status_code=429,
                content=error_response.to_content(),
                headers=headers
            )

        response = await call_next(request)

        for name, value in headers.items():
            response.headers[name] = value

        return response
