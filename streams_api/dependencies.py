# ABOUTME: Dependency injection functions for FastAPI
# ABOUTME: Provides the StreamsService singleton, the authenticated principal and validated query parameters
from typing import Optional

from fastapi import Depends, Header, Request

from streams_api.config import get_settings
from streams_api.core.auth import Principal, TokenStore
from streams_api.core.streams_service import StreamsService
from streams_api.core.validation import validate_streams_query
from streams_api.models.requests import StreamsQuery

_token_store: Optional[TokenStore] = None


def get_streams_service() -> StreamsService:
    """Dependency injection function for StreamsService"""
    return StreamsService.instance()


def get_token_store() -> TokenStore:
    """Token store built once from API_TOKENS."""
    global _token_store
    if _token_store is None:
        _token_store = TokenStore.from_config(get_settings().api_tokens)
    return _token_store


def set_token_store(store: Optional[TokenStore]) -> None:
    """Install a token store; None rebuilds from settings on next use."""
    global _token_store
    _token_store = store


def get_principal(
    authorization: Optional[str] = Header(None),
    token_store: TokenStore = Depends(get_token_store),
) -> Principal:
    return token_store.authenticate(authorization)


def get_streams_query(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: StreamsService = Depends(get_streams_service),
) -> StreamsQuery:
    """Validated query parameters; authentication is resolved first."""
    return validate_streams_query(request.query_params, service.valid_regions)
