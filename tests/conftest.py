# ABOUTME: Pytest configuration and shared fixtures
# ABOUTME: Builds an app wired to an in-memory SDP store, a fixed token table and sample viewership data
import pytest
from fastapi.testclient import TestClient

from streams_api.config import Settings
from streams_api.core.aggregation import InMemoryAggregationReader
from streams_api.core.auth import Role, TokenGrant, TokenStore
from streams_api.core.streams_service import StreamsService
from streams_api.dependencies import set_token_store
from streams_api.models.streams import StreamsData

READER_TOKEN = "reader-token"
SDP_TOKEN = "sdp-token"
EXPIRED_TOKEN = "expired-token"
NO_ROLE_TOKEN = "no-role-token"

EVENT_START = 1_700_000_000_000
EVENT_END = 1_700_007_200_000

SETTINGS_ENV_VARS = [
    "LOG_LEVEL",
    "LOG_JSON",
    "CORS_ALLOW_ORIGINS",
    "TIMEOUT_SEC",
    "RATE_LIMIT_REQUESTS_PER_MINUTE",
    "RATE_LIMIT_REQUESTS_PER_HOUR",
    "CACHE_TTL_SEC",
    "VALID_REGIONS",
    "AGGREGATION_URL",
    "AGGREGATION_TIMEOUT_SEC",
    "SNAPSHOT_FILE",
    "API_TOKENS",
    "HOST",
    "PORT",
]


def auth(token: str = READER_TOKEN) -> dict:
    return {"Authorization": f"Bearer {token}"}


def sample_reports() -> list:
    return [
        {
            "sdp": "sdpA",
            "mediastreams": [
                {
                    "content": {"id": "live-1", "title": "Championship Final"},
                    "eventstart": EVENT_START,
                    "eventend": EVENT_END,
                    "streamcount": [
                        {"region": 1, "sstreams": 140000, "cstreams": 400000},
                        {"region": 2, "sstreams": 5000, "cstreams": 1000},
                    ],
                },
                {
                    "content": {"id": "live-2", "title": "Pre-game Show"},
                    "eventstart": str(EVENT_START + 60_000),
                    "eventend": str(EVENT_END),
                    "streamcount": [{"region": "2", "sstreams": "300"}],
                },
            ],
        },
        {
            "sdp": "sdpB",
            "mediastreams": [
                {
                    "content": {"id": "live-3", "title": "Evening News"},
                    "eventstart": EVENT_START,
                    "eventend": EVENT_END,
                    "streamcount": [{"region": 3, "cstreams": 42}],
                },
            ],
        },
    ]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Clear settings variables and reset singletons around each test."""
    for var in SETTINGS_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    Settings._reset_instance()
    StreamsService._reset_instance()
    set_token_store(None)
    yield
    StreamsService._reset_instance()
    set_token_store(None)


@pytest.fixture
def token_store():
    return TokenStore({
        READER_TOKEN: TokenGrant(principal="ssaiA", roles=[Role.SSAI]),
        SDP_TOKEN: TokenGrant(principal="sdpA-publisher", roles=[Role.SDP], sdp="sdpA"),
        EXPIRED_TOKEN: TokenGrant(principal="old", roles=[Role.DSP], expires_at=1.0),
        NO_ROLE_TOKEN: TokenGrant(principal="nobody", roles=[]),
    })


@pytest.fixture
def store():
    reader = InMemoryAggregationReader()
    for report in sample_reports():
        reader.publish(StreamsData.model_validate(report), captured_at=EVENT_START + 120_000)
    return reader


@pytest.fixture
def service(store):
    return StreamsService(reader=store, store=store, valid_regions=range(1, 9))


@pytest.fixture
def app(service, token_store):
    from streams_api.main import create_app

    StreamsService.configure(service)
    set_token_store(token_store)
    return create_app(Settings())


@pytest.fixture
def client(app):
    return TestClient(app)
