# ABOUTME: Integration tests for the concurrent streams endpoints using TestClient
# ABOUTME: Covers filtering, pagination, single-content lookup, publishing, auth and the error envelope
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import (
    EVENT_END,
    EVENT_START,
    EXPIRED_TOKEN,
    NO_ROLE_TOKEN,
    SDP_TOKEN,
    auth,
)
from streams_api.models.errors import AggregationUnavailableError


def event_ids(body: dict) -> list:
    return [
        media["content"]["id"]
        for report in body["streamsdata"]
        for media in report["mediastreams"]
    ]


class TestHealthEndpoints:

    def test_health_check(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_readiness_check(self, client):
        response = client.get("/readyz")
        assert response.status_code == 200
        data = response.json()
        assert data["ready"] is True
        assert data["reader"] == "memory"
        assert data["cache_ttl_sec"] == 0.0

    def test_metrics_exposition(self, client):
        client.get("/v1/concurrentstreams", headers=auth())
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "streams_requests_total" in response.text


class TestCollectionEndpoint:

    def test_lists_all_events_grouped_by_sdp(self, client):
        response = client.get("/v1/concurrentstreams", headers=auth())

        assert response.status_code == 200
        body = response.json()
        assert body["version"] == "1.0.0"
        assert body["timestamp"] == EVENT_START + 120_000
        assert [report["sdp"] for report in body["streamsdata"]] == ["sdpA", "sdpB"]
        assert event_ids(body) == ["live-1", "live-2", "live-3"]
        assert body["pagination"] == {"limit": 50, "offset": 0, "total": 3, "hasMore": False}

    def test_numeric_strings_are_emitted_as_numbers(self, client):
        body = client.get("/v1/concurrentstreams?sdp=sdpA", headers=auth()).json()
        pregame = body["streamsdata"][0]["mediastreams"][1]

        assert pregame["eventstart"] == EVENT_START + 60_000
        assert pregame["eventend"] == EVENT_END
        assert pregame["streamcount"] == [{"region": 2, "sstreams": 300}]

    def test_region_scenario_returns_single_count(self, client):
        response = client.get("/v1/concurrentstreams?requestor=ssaiA&region=1", headers=auth())

        assert response.status_code == 200
        body = response.json()
        assert event_ids(body) == ["live-1"]
        counts = body["streamsdata"][0]["mediastreams"][0]["streamcount"]
        assert counts == [{"region": 1, "sstreams": 140000, "cstreams": 400000}]
        assert body["pagination"]["total"] == 1
        assert body["pagination"]["hasMore"] is False

    def test_sdp_filter(self, client):
        body = client.get("/v1/concurrentstreams?sdp=sdpB", headers=auth()).json()
        assert event_ids(body) == ["live-3"]
        assert body["pagination"]["total"] == 1

    def test_region_without_events_returns_empty_page(self, client):
        body = client.get("/v1/concurrentstreams?region=8", headers=auth()).json()
        assert body["streamsdata"] == []
        assert body["pagination"] == {"limit": 50, "offset": 0, "total": 0, "hasMore": False}

    def test_pages_concatenate_without_gaps_or_duplicates(self, client):
        pages = []
        for offset in range(0, 3):
            body = client.get(f"/v1/concurrentstreams?limit=1&offset={offset}", headers=auth()).json()
            assert body["pagination"]["total"] == 3
            assert body["pagination"]["hasMore"] == (offset + 1 < 3)
            pages.extend(event_ids(body))

        assert pages == ["live-1", "live-2", "live-3"]

    def test_total_counts_events_not_sdp_groups(self, client):
        body = client.get("/v1/concurrentstreams?limit=2", headers=auth()).json()
        assert len(body["streamsdata"]) == 1
        assert body["pagination"]["total"] == 3
        assert body["pagination"]["hasMore"] is True

    def test_limit_zero_is_allowed(self, client):
        body = client.get("/v1/concurrentstreams?limit=0", headers=auth()).json()
        assert body["streamsdata"] == []
        assert body["pagination"]["hasMore"] is True

    def test_limit_hundred_is_allowed(self, client):
        response = client.get("/v1/concurrentstreams?limit=100", headers=auth())
        assert response.status_code == 200
        assert response.json()["pagination"]["limit"] == 100

    @pytest.mark.parametrize("query", [
        "limit=101",
        "limit=-1",
        "offset=-1",
        "limit=ten",
        "region=99",
        "region=north",
    ])
    def test_invalid_query_parameters_are_rejected(self, client, query):
        response = client.get(f"/v1/concurrentstreams?{query}", headers=auth())

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_FIELD_VALUE"
        assert error["details"][0]["field"] == query.split("=")[0]
        assert error["requestId"] == response.headers["X-Request-ID"]

    def test_validation_happens_before_reading(self, client, service):
        service.reader = AsyncMock()
        response = client.get("/v1/concurrentstreams?limit=500", headers=auth())

        assert response.status_code == 400
        service.reader.read.assert_not_called()

    def test_requestor_defaults_to_principal(self, client, service, store):
        service.reader = AsyncMock(wraps=store)
        service.reader.name = "memory"
        client.get("/v1/concurrentstreams", headers=auth())

        stream_filter = service.reader.read.call_args[0][0]
        assert stream_filter.requestor == "ssaiA"


class TestSingleContentEndpoint:

    def test_returns_one_event(self, client):
        response = client.get("/v1/concurrentstreams/live-3", headers=auth())

        assert response.status_code == 200
        body = response.json()
        assert event_ids(body) == ["live-3"]
        assert body["streamsdata"][0]["sdp"] == "sdpB"
        assert "pagination" not in body

    def test_unknown_content_is_not_found(self, client):
        response = client.get("/v1/concurrentstreams/no-such-event", headers=auth())

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "RESOURCE_NOT_FOUND"
        assert error["details"] == [{"field": "contentId", "issue": "unknown content id"}]

    def test_region_filter_applies(self, client):
        response = client.get("/v1/concurrentstreams/live-1?region=2", headers=auth())

        counts = response.json()["streamsdata"][0]["mediastreams"][0]["streamcount"]
        assert counts == [{"region": 2, "sstreams": 5000, "cstreams": 1000}]


class TestAuthentication:

    def test_missing_authorization_header(self, client):
        response = client.get("/v1/concurrentstreams")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "MISSING_CREDENTIALS"
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert "X-Request-ID" in response.headers

    def test_unknown_token(self, client):
        response = client.get("/v1/concurrentstreams", headers=auth("not-a-token"))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_wrong_scheme(self, client):
        response = client.get("/v1/concurrentstreams", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_expired_token(self, client):
        response = client.get("/v1/concurrentstreams", headers=auth(EXPIRED_TOKEN))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "EXPIRED_TOKEN"

    def test_principal_without_read_capability(self, client):
        response = client.get("/v1/concurrentstreams", headers=auth(NO_ROLE_TOKEN))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"

    def test_auth_is_checked_before_query_validation(self, client):
        response = client.get("/v1/concurrentstreams?limit=500")
        assert response.status_code == 401


class TestPublishEndpoint:

    @pytest.fixture
    def report(self):
        return {
            "mediastreams": [
                {
                    "content": {"id": "live-9"},
                    "eventstart": "2023-11-14T22:13:20Z",
                    "eventend": EVENT_END,
                    "streamcount": [{"region": 4, "sstreams": "10", "cstreams": 20}],
                }
            ]
        }

    def test_publish_replaces_sdp_report(self, client, report):
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth(SDP_TOKEN))

        assert response.status_code == 202
        assert response.json()["sdp"] == "sdpA"
        assert response.json()["accepted"] == 1

        body = client.get("/v1/concurrentstreams?sdp=sdpA", headers=auth()).json()
        assert event_ids(body) == ["live-9"]
        media = body["streamsdata"][0]["mediastreams"][0]
        assert media["eventstart"] == EVENT_START
        assert media["streamcount"] == [{"region": 4, "sstreams": 10, "cstreams": 20}]

    def test_reader_role_cannot_publish(self, client, report):
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth())
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"

    def test_sdp_cannot_publish_for_another_sdp(self, client, report):
        response = client.put("/v1/sdp/sdpB/concurrentstreams", json=report, headers=auth(SDP_TOKEN))
        assert response.status_code == 403

    def test_body_sdp_must_match_path(self, client, report):
        report["sdp"] = "sdpB"
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth(SDP_TOKEN))

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "sdp"

    def test_malformed_json(self, client):
        response = client.put(
            "/v1/sdp/sdpA/concurrentstreams",
            content=b'{"mediastreams": [',
            headers={**auth(SDP_TOKEN), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_JSON"

    def test_missing_required_field(self, client):
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json={"sdp": "sdpA"}, headers=auth(SDP_TOKEN))

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "MISSING_REQUIRED_FIELD"
        assert error["details"][0]["field"] == "mediastreams"

    def test_malformed_timestamp(self, client, report):
        report["mediastreams"][0]["eventstart"] = "yesterday"
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth(SDP_TOKEN))

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_DATE_FORMAT"
        assert error["details"][0]["field"] == "mediastreams.0.eventstart"

    def test_stream_count_without_totals(self, client, report):
        report["mediastreams"][0]["streamcount"] = [{"region": 4}]
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth(SDP_TOKEN))

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_FIELD_VALUE"
        assert error["details"][0]["field"] == "mediastreams.0.streamcount.0"

    def test_event_window_must_be_ordered(self, client, report):
        report["mediastreams"][0]["eventend"] = EVENT_START - 1
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth(SDP_TOKEN))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_FIELD_VALUE"

    def test_unknown_region_is_rejected(self, client, report):
        report["mediastreams"][0]["streamcount"][0]["region"] = 42
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth(SDP_TOKEN))

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "mediastreams.0.streamcount.0.region"

    def test_publish_disabled_without_store(self, client, service, report):
        service.store = None
        response = client.put("/v1/sdp/sdpA/concurrentstreams", json=report, headers=auth(SDP_TOKEN))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


class TestErrorEnvelope:

    def test_unknown_path(self, client):
        response = client.get("/v1/unknown", headers=auth())

        assert response.status_code == 404
        body = response.json()
        assert set(body["error"]) == {"code", "message", "details", "requestId"}
        assert body["error"]["code"] == "RESOURCE_NOT_FOUND"

    def test_collection_is_read_only(self, client):
        response = client.post("/v1/concurrentstreams", json={}, headers=auth())
        assert response.status_code == 405
        assert response.json()["error"]["code"] == "METHOD_NOT_ALLOWED"

    def test_request_id_is_echoed(self, client):
        response = client.get("/v1/concurrentstreams", headers={**auth(), "X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_reader_failure_is_service_unavailable(self, client, service):
        service.reader = AsyncMock()
        service.reader.name = "mock"
        service.reader.read.side_effect = AggregationUnavailableError()

        response = client.get("/v1/concurrentstreams", headers=auth())

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"
        assert "Retry-After" not in response.headers
        assert client.get("/readyz").json()["ready"] is False

    def test_reader_retry_after_is_forwarded(self, client, service):
        service.reader = AsyncMock()
        service.reader.name = "mock"
        service.reader.read.side_effect = AggregationUnavailableError(retry_after=15)

        response = client.get("/v1/concurrentstreams", headers=auth())

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "15"

    def test_unexpected_reader_error_does_not_leak(self, client, service):
        service.reader = AsyncMock()
        service.reader.name = "mock"
        service.reader.read.side_effect = RuntimeError("db password is hunter2")

        response = client.get("/v1/concurrentstreams", headers=auth())

        assert response.status_code == 503
        assert "hunter2" not in response.text

    def test_internal_error_is_generic(self, app):
        from streams_api.dependencies import get_streams_service

        def broken_service():
            raise RuntimeError("secret internals")

        app.dependency_overrides[get_streams_service] = broken_service
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/v1/concurrentstreams", headers=auth())

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "secret" not in response.text


class TestRateLimitHeaders:

    def test_success_carries_rate_limit_headers(self, client):
        response = client.get("/v1/concurrentstreams", headers=auth())

        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"
        assert int(response.headers["X-RateLimit-Reset"]) > 0

    def test_101st_request_in_a_minute_is_throttled(self, client):
        for _ in range(100):
            assert client.get("/v1/concurrentstreams", headers=auth()).status_code == 200

        response = client.get("/v1/concurrentstreams", headers=auth())

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_made_up_tokens_draw_on_the_caller_ip_budget(self, client):
        statuses = [
            client.get("/v1/concurrentstreams", headers=auth(f"fake-{i}")).status_code
            for i in range(150)
        ]

        assert set(statuses[:100]) == {401}
        assert set(statuses[100:]) == {429}

    def test_known_token_is_not_charged_for_made_up_tokens(self, client):
        for i in range(100):
            client.get("/v1/concurrentstreams", headers=auth(f"fake-{i}"))

        assert client.get("/v1/concurrentstreams", headers=auth()).status_code == 200
