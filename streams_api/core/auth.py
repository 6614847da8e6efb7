# ABOUTME: Bearer token authentication and role capabilities for the Concurrent Streams API
# ABOUTME: Resolves presented tokens to principals whose roles grant read or publish capabilities

import hashlib
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from streams_api.models.errors import (
    ExpiredTokenError,
    InsufficientPermissionsError,
    InvalidTokenError,
    MissingCredentialsError,
)

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Parties that consume or supply concurrent streams data."""

    SSAI = "ssai"
    PUBLISHER = "publisher"
    DSP = "dsp"
    SDP = "sdp"


class Capability(str, Enum):
    STREAMS_READ = "streams:read"
    STREAMS_PUBLISH = "streams:publish"


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.SSAI: frozenset({Capability.STREAMS_READ}),
    Role.PUBLISHER: frozenset({Capability.STREAMS_READ}),
    Role.DSP: frozenset({Capability.STREAMS_READ}),
    Role.SDP: frozenset({Capability.STREAMS_READ, Capability.STREAMS_PUBLISH}),
}


class TokenGrant(BaseModel):
    """What a configured bearer token grants."""

    principal: str = Field(min_length=1)
    roles: List[Role] = Field(default_factory=list)
    sdp: Optional[str] = None
    expires_at: Optional[float] = None  # epoch seconds


class Principal(BaseModel):
    id: str
    roles: List[Role]
    capabilities: FrozenSet[Capability]
    sdp: Optional[str] = None

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.has(capability):
            logger.warning(
                "Capability check failed",
                extra={"principal": self.id, "capability": capability.value},
            )
            raise InsufficientPermissionsError(
                details=[{"field": "Authorization", "issue": f"missing capability {capability.value}"}]
            )


def capabilities_for(roles: List[Role]) -> FrozenSet[Capability]:
    granted = set()
    for role in roles:
        granted |= ROLE_CAPABILITIES.get(role, frozenset())
    return frozenset(granted)


def token_fingerprint(token: str) -> str:
    """Stable, non-reversible identifier for a token, safe for logs and rate-limit keys."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Pull the token out of an Authorization header value."""
    if authorization is None or not authorization.strip():
        raise MissingCredentialsError()

    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidTokenError("Authorization header must use the Bearer scheme.")
    return token.strip()


class TokenStore:
    """
    Table of accepted bearer tokens.

    Token issuance happens elsewhere; this store only answers whether a
    presented token is known and unexpired.
    """

    def __init__(self, grants: Optional[Mapping[str, TokenGrant]] = None, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._grants: Dict[str, TokenGrant] = dict(grants or {})

    @classmethod
    def from_config(cls, raw_grants: Mapping[str, Mapping[str, Any]]) -> "TokenStore":
        grants = {}
        for token, raw in raw_grants.items():
            try:
                grants[token] = TokenGrant.model_validate(raw)
            except ValidationError as e:
                raise ValueError(f"Invalid grant for token {token_fingerprint(token)}: {e}")
        logger.info(f"Loaded {len(grants)} API token grants")
        return cls(grants)

    def knows(self, token: str) -> bool:
        """True when ``token`` has a grant, expired or not."""
        with self._lock:
            return token in self._grants

    def authenticate(self, authorization: Optional[str]) -> Principal:
        token = extract_bearer_token(authorization)

        with self._lock:
            grant = self._grants.get(token)

        if grant is None:
            logger.warning("Unknown bearer token", extra={"token": token_fingerprint(token)})
            raise InvalidTokenError()

        if grant.expires_at is not None and grant.expires_at <= self._clock():
            logger.info("Expired bearer token", extra={"principal": grant.principal})
            raise ExpiredTokenError()

        return Principal(
            id=grant.principal,
            roles=list(grant.roles),
            capabilities=capabilities_for(grant.roles),
            sdp=grant.sdp,
        )
