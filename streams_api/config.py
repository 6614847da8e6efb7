# ABOUTME: Configuration system for the Concurrent Streams API with environment variable handling
# ABOUTME: Provides Settings singleton with validation of rate limits, cache window, regions and token grants

import json
import os
from typing import Any, Dict, List, Literal, Optional

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

API_VERSION = "1.0.0"

# Pagination bounds for the collection endpoint
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 100

# Aggregates older than this are never served from cache
MAX_CACHE_TTL_SEC = 60


class Settings:
    """
    Configuration settings for the Concurrent Streams API.
    Singleton class that loads configuration from environment variables
    with validation and defaults.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        # Always re-initialize to pick up environment changes
        self._log_level = self._get_log_level()
        self._log_json = self._get_log_json()
        self._cors_allow_origins = self._get_cors_allow_origins()
        self._timeout_sec = self._get_timeout_sec()
        self._rate_limit_requests_per_minute = self._get_rate_limit_requests_per_minute()
        self._rate_limit_requests_per_hour = self._get_rate_limit_requests_per_hour()
        self._cache_ttl_sec = self._get_cache_ttl_sec()
        self._valid_regions = self._get_valid_regions()
        self._aggregation_url = self._get_aggregation_url()
        self._aggregation_timeout_sec = self._get_aggregation_timeout_sec()
        self._snapshot_file = self._get_snapshot_file()
        self._api_tokens = self._get_api_tokens()
        self._host = os.getenv("HOST", "0.0.0.0")
        self._port = self._get_port()

    @classmethod
    def _reset_instance(cls):
        """Reset singleton instance for testing purposes only."""
        cls._instance = None

    def _get_log_level(self) -> Literal["debug", "info", "warning", "error", "critical"]:
        """Get and validate LOG_LEVEL environment variable."""
        log_level = os.getenv("LOG_LEVEL", "info").lower()

        valid_levels = ["debug", "info", "warning", "error", "critical"]

        if log_level not in valid_levels:
            raise ValueError(
                f"Invalid log level: {log_level}. "
                f"Valid levels: {', '.join(valid_levels)}"
            )

        return log_level

    def _get_port(self) -> int:
        """Get and validate PORT environment variable."""
        port = int(os.getenv("PORT", "8000"))

        if not 0 < port < 65536:
            raise ValueError("PORT must be between 1 and 65535")

        return port

    def _get_log_json(self) -> bool:
        return os.getenv("LOG_JSON", "true").strip().lower() not in ("0", "false", "no")

    def _get_cors_allow_origins(self) -> List[str]:
        """Parse comma-separated CORS_ALLOW_ORIGINS environment variable."""
        origins_str = os.getenv("CORS_ALLOW_ORIGINS", "")

        if not origins_str.strip():
            return []

        return [origin.strip() for origin in origins_str.split(",") if origin.strip()]

    def _get_timeout_sec(self) -> float:
        """Get and validate TIMEOUT_SEC environment variable."""
        timeout_sec = float(os.getenv("TIMEOUT_SEC", "30"))

        if timeout_sec <= 0:
            raise ValueError("TIMEOUT_SEC must be positive")

        return timeout_sec

    def _get_rate_limit_requests_per_minute(self) -> int:
        """Get and validate RATE_LIMIT_REQUESTS_PER_MINUTE environment variable."""
        requests_per_minute = int(os.getenv("RATE_LIMIT_REQUESTS_PER_MINUTE", "100"))

        if requests_per_minute <= 0:
            raise ValueError("RATE_LIMIT_REQUESTS_PER_MINUTE must be positive")

        return requests_per_minute

    def _get_rate_limit_requests_per_hour(self) -> int:
        """Get and validate RATE_LIMIT_REQUESTS_PER_HOUR environment variable."""
        requests_per_hour = int(os.getenv("RATE_LIMIT_REQUESTS_PER_HOUR", "1000"))

        if requests_per_hour <= 0:
            raise ValueError("RATE_LIMIT_REQUESTS_PER_HOUR must be positive")

        return requests_per_hour

    def _get_cache_ttl_sec(self) -> float:
        """Get and validate CACHE_TTL_SEC; 0 disables caching."""
        cache_ttl = float(os.getenv("CACHE_TTL_SEC", "30"))

        if cache_ttl < 0 or cache_ttl > MAX_CACHE_TTL_SEC:
            raise ValueError(
                f"CACHE_TTL_SEC must be between 0 and {MAX_CACHE_TTL_SEC} seconds"
            )

        return cache_ttl

    def _get_valid_regions(self) -> List[int]:
        """Parse comma-separated VALID_REGIONS into region codes."""
        regions_str = os.getenv("VALID_REGIONS", "1,2,3,4,5,6,7,8")

        try:
            regions = sorted({int(code.strip()) for code in regions_str.split(",") if code.strip()})
        except ValueError:
            raise ValueError(f"VALID_REGIONS must be a comma-separated list of integers: {regions_str}")

        if not regions:
            raise ValueError("VALID_REGIONS must name at least one region code")

        return regions

    def _get_aggregation_url(self) -> Optional[str]:
        url = os.getenv("AGGREGATION_URL", "").strip()

        if not url:
            return None

        if not (url.startswith("http://") or url.startswith("https://")):
            raise ValueError(f"AGGREGATION_URL must be an http(s) URL: {url}")

        return url

    def _get_aggregation_timeout_sec(self) -> float:
        """Get and validate AGGREGATION_TIMEOUT_SEC environment variable."""
        timeout = float(os.getenv("AGGREGATION_TIMEOUT_SEC", "10"))

        if timeout <= 0:
            raise ValueError("AGGREGATION_TIMEOUT_SEC must be positive")

        return timeout

    def _get_snapshot_file(self) -> Optional[str]:
        return os.getenv("SNAPSHOT_FILE", "").strip() or None

    def _get_api_tokens(self) -> Dict[str, Dict[str, Any]]:
        """
        Parse API_TOKENS, a JSON object mapping bearer tokens to grants.

        Example:
            {"s3cret": {"principal": "ssaiA", "roles": ["ssai"]}}
        """
        raw = os.getenv("API_TOKENS", "").strip()

        if not raw:
            return {}

        try:
            tokens = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"API_TOKENS is not valid JSON: {e}")

        if not isinstance(tokens, dict) or not all(isinstance(grant, dict) for grant in tokens.values()):
            raise ValueError("API_TOKENS must be a JSON object of token -> grant objects")

        return tokens

    # Properties to provide immutable access
    @property
    def log_level(self) -> str:
        return self._log_level

    @property
    def log_json(self) -> bool:
        return self._log_json

    @property
    def cors_allow_origins(self) -> List[str]:
        return self._cors_allow_origins.copy()  # Return copy to prevent mutation

    @property
    def timeout_sec(self) -> float:
        return self._timeout_sec

    @property
    def rate_limit_requests_per_minute(self) -> int:
        return self._rate_limit_requests_per_minute

    @property
    def rate_limit_requests_per_hour(self) -> int:
        return self._rate_limit_requests_per_hour

    @property
    def cache_ttl_sec(self) -> float:
        return self._cache_ttl_sec

    @property
    def valid_regions(self) -> List[int]:
        return self._valid_regions.copy()

    @property
    def aggregation_url(self) -> Optional[str]:
        return self._aggregation_url

    @property
    def aggregation_timeout_sec(self) -> float:
        return self._aggregation_timeout_sec

    @property
    def snapshot_file(self) -> Optional[str]:
        return self._snapshot_file

    @property
    def api_tokens(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._api_tokens)

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def api_version(self) -> str:
        return API_VERSION


# Global function to get settings instance
def get_settings() -> Settings:
    """Get the global settings instance."""
    return Settings()
