import json
import pytest
import requests
import responses

from unittest.mock import patch

from launch_gate.config import Config
from launch_gate.gate_state import CONFIG_NO_MORE_REQUESTS_KEY, GateConfig
from launch_gate.remote_config import (
    ConfigRequest,
    ConfigResponse,
    ConfigVerdict,
    RemoteConfigClient,
    device_locale_identifier,
)


# --- Mock Constants ---
ENDPOINT = "https://config.mock.example/config.php"

CONVERSION = {
    "af_status": "Non-organic",
    "media_source": "tiktok",
    "is_organic_conversion": False,
}


# ========
# FIXTURES
# ========
@pytest.fixture
def client(state):
    return RemoteConfigClient(state, endpoint=ENDPOINT, locale_provider=lambda: "en_GB")

@pytest.fixture
def attributed_state(state):
    state.store_conversion_record(CONVERSION)
    state.store_push_token("fcm-token-123")
    state.store_attribution_id("af-456")
    return state


# ===================================
# TEST GROUP: Short-circuits (P2)
# ===================================

@responses.activate
def test_breaker_set_declines_without_network(client, attributed_state):
    attributed_state.disable_config_requests()

    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.DECLINED
    assert len(responses.calls) == 0


@responses.activate
def test_missing_conversion_declines_and_trips_breaker(client, state):
    """Absent conversion → DECLINED + breaker; second call declines without a request"""
    first = client.request_config()
    second = client.request_config()

    assert first.verdict == ConfigVerdict.DECLINED
    assert second.verdict == ConfigVerdict.DECLINED
    assert state.config_requests_disabled() is True
    assert len(responses.calls) == 0


@responses.activate
def test_non_object_conversion_is_treated_as_missing(client, state):
    state.set("conversion_data", ["not", "an", "object"])

    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.DECLINED
    assert state.config_requests_disabled() is True
    assert len(responses.calls) == 0


# ===================================
# TEST GROUP: Request payload
# ===================================

@responses.activate
def test_request_merges_conversion_with_owned_fields(client, attributed_state):
    """Owned fields overwrite colliding conversion keys; others pass through"""
    attributed_state.store_conversion_record(
        {**CONVERSION, "bundle_id": "com.spoofed", "locale": "xx_XX"}
    )
    responses.add(
        responses.POST,
        ENDPOINT,
        json={"ok": True, "url": "https://x", "expires": 1700000000},
        status=200,
    )

    client.request_config()

    request = responses.calls[0].request
    body = json.loads(request.body)
    assert request.headers["Content-Type"] == "application/json"
    assert body["af_status"] == "Non-organic"
    assert body["media_source"] == "tiktok"
    assert body["push_token"] == "fcm-token-123"
    assert body["af_id"] == "af-456"
    assert body["bundle_id"] == Config.BUNDLE_ID
    assert body["os"] == Config.OS_TAG
    assert body["store_id"] == Config.STORE_ID
    assert body["locale"] == "en_GB"
    assert body["firebase_project_id"] == Config.FIREBASE_PROJECT_ID


def test_missing_identifiers_default_to_empty_strings(state):
    client = RemoteConfigClient(state, endpoint=ENDPOINT, locale_provider=lambda: "en_US")

    payload = client.build_request({"a": 1}).to_payload()

    assert payload["push_token"] == ""
    assert payload["af_id"] == ""
    assert payload["a"] == 1


def test_to_payload_does_not_mutate_conversion():
    conversion = {"os": "Android"}
    request = ConfigRequest(
        conversion=conversion,
        push_token="",
        af_id="",
        bundle_id="b",
        os="iOS",
        store_id="s",
        locale="en_US",
        firebase_project_id="f",
    )

    assert request.to_payload()["os"] == "iOS"
    assert conversion == {"os": "Android"}


# ===================================
# TEST GROUP: Granted (P4)
# ===================================

@responses.activate
def test_granted_response_persists_config_and_clears_breaker(client, attributed_state):
    responses.add(
        responses.POST,
        ENDPOINT,
        json={"ok": True, "url": "https://x", "expires": 1700000000},
        status=200,
    )

    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.GRANTED
    assert outcome.url == "https://x"
    assert outcome.expires_at == 1700000000
    assert attributed_state.gate_config() == GateConfig(url="https://x", expires_at=1700000000)
    assert attributed_state.config_requests_disabled() is False
    assert CONFIG_NO_MORE_REQUESTS_KEY not in attributed_state.snapshot()


# ===================================
# TEST GROUP: Failures (P5)
# ===================================

@pytest.mark.parametrize(
    "status_code, body",
    [
        # ❌ Server error
        (500, '{"ok": true, "url": "https://x", "expires": 1}'),

        # ❌ Not found
        (404, ""),

        # ❌ Empty body on 200
        (200, ""),

        # ❌ Not JSON
        (200, "<html>oops</html>"),

        # ❌ JSON but not an object
        (200, '["https://x"]'),
    ],
)
@responses.activate
def test_transport_and_parse_failures_trip_breaker(status_code, body, client, attributed_state):
    responses.add(responses.POST, ENDPOINT, body=body, status=status_code)

    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.FAILED
    assert attributed_state.config_requests_disabled() is True
    assert attributed_state.gate_config() is None


@responses.activate
def test_connection_error_trips_breaker(client, attributed_state):
    responses.add(
        responses.POST,
        ENDPOINT,
        body=requests.exceptions.ConnectionError("Boom"),
    )

    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.FAILED
    assert attributed_state.config_requests_disabled() is True


@patch("launch_gate.remote_config.requests.post", side_effect=requests.exceptions.Timeout("slow"))
def test_timeout_trips_breaker(mock_post, client, attributed_state):
    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.FAILED
    assert attributed_state.config_requests_disabled() is True
    assert mock_post.call_args.kwargs["timeout"] == client.timeout


@pytest.mark.parametrize(
    "response_body",
    [
        # ok false
        {"ok": False, "url": "https://x", "expires": 1},

        # missing url
        {"ok": True, "expires": 1},

        # missing expires
        {"ok": True, "url": "https://x"},

        # string expires is not coerced
        {"ok": True, "url": "https://x", "expires": "1700000000"},

        # string ok is not coerced
        {"ok": "true", "url": "https://x", "expires": 1},

        # numeric ok is not coerced
        {"ok": 1, "url": "https://x", "expires": 1},

        # bool expires is not a number
        {"ok": True, "url": "https://x", "expires": True},

        # non-string url
        {"ok": True, "url": 42, "expires": 1},
    ],
)
@responses.activate
def test_declined_shapes_trip_breaker(response_body, client, attributed_state):
    responses.add(responses.POST, ENDPOINT, json=response_body, status=200)

    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.DECLINED
    assert attributed_state.config_requests_disabled() is True
    assert attributed_state.gate_config() is None


@pytest.mark.parametrize(
    "raw_body",
    [
        # non-finite numbers are valid for json.loads but not timestamps
        '{"ok": true, "url": "https://x", "expires": Infinity}',
        '{"ok": true, "url": "https://x", "expires": -Infinity}',
        '{"ok": true, "url": "https://x", "expires": NaN}',

        # too large for a float
        '{"ok": true, "url": "https://x", "expires": 1' + "0" * 400 + "}",
    ],
)
@responses.activate
def test_non_finite_expires_is_declined(raw_body, client, attributed_state):
    responses.add(responses.POST, ENDPOINT, body=raw_body, status=200)

    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.DECLINED
    assert attributed_state.config_requests_disabled() is True
    assert attributed_state.gate_config() is None


@responses.activate
def test_second_request_after_failure_is_short_circuited(client, attributed_state):
    responses.add(responses.POST, ENDPOINT, status=503)

    client.request_config()
    outcome = client.request_config()

    assert outcome.verdict == ConfigVerdict.DECLINED
    assert len(responses.calls) == 1


# ===================================
# TEST GROUP: Response parsing
# ===================================

def test_config_response_accepts_float_expires():
    response = ConfigResponse.from_json({"ok": True, "url": "https://x", "expires": 12.5})

    assert response.is_grant
    assert response.expires == 12.5


def test_device_locale_identifier_empty_when_unknown(monkeypatch):
    monkeypatch.setattr("launch_gate.remote_config.locale.getlocale", lambda: (None, None))

    assert device_locale_identifier() == ""
