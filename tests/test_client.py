"""
Tests for the WHOOP client: login, token refresh, 401 retry and pagination
"""

import asyncio
import base64
import json
import time

import httpx
import pytest

from whoop_client import (
    AuthContext,
    WhoopAPIError,
    WhoopAuthError,
    WhoopClient,
    WhoopConfig,
    decode_token_claims,
)

BASE = "https://whoop.test"
LOGIN_PATH = "/auth-service/v3/whoop"


def make_token(claims):
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"header.{payload}.signature"


def login_response(token="tok-1", expires_in=86400):
    return httpx.Response(200, json={
        "AuthenticationResult": {
            "AccessToken": make_token({"custom:user_id": "123", "custom:account_id": "acc", "n": token}),
            "ExpiresIn": expires_in,
        }
    })


class FakeWhoop:
    """Routes requests for a MockTransport and records what it saw."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []
        self.logins = 0

    def __call__(self, request):
        self.calls.append(request)
        if request.url.path == LOGIN_PATH:
            self.logins += 1
            return login_response(f"tok-{self.logins}")
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404)
        return handler(request) if callable(handler) else httpx.Response(200, json=handler)


def make_client(fake, auth=None, email="me@example.com"):
    config = WhoopConfig(email=email, password="secret", base_url=BASE, timezone="Europe/London")
    return WhoopClient(config, auth=auth, transport=httpx.MockTransport(fake))


def fresh_auth():
    return AuthContext(access_token="existing", expires_at=time.time() + 3600, user_id="123")


def test_decode_token_claims():
    assert decode_token_claims(make_token({"custom:user_id": "42"})) == {"custom:user_id": "42"}
    assert decode_token_claims("not-a-jwt") == {}


def test_auth_context_expiry_window():
    auth = AuthContext(access_token="t", expires_at=1000)
    assert auth.expires_within(300, now=800)
    assert not auth.expires_within(300, now=600)


def test_request_logs_in_when_no_token():
    fake = FakeWhoop({"/developer/v2/user/profile/basic": {"first_name": "Sam"}})
    client = make_client(fake)

    profile = asyncio.run(client.get_user_profile())

    assert profile == {"first_name": "Sam"}
    assert fake.logins == 1
    assert client.auth.user_id == "123"
    assert client.auth.account_id == "acc"
    login = fake.calls[0]
    assert login.headers["X-Amz-Target"] == "AWSCognitoIdentityProviderService.InitiateAuth"
    assert json.loads(login.content)["AuthParameters"]["USERNAME"] == "me@example.com"


def test_request_sends_app_headers():
    fake = FakeWhoop({"/home-service/v1/widget/overview": {}})
    client = make_client(fake, auth=fresh_auth())

    asyncio.run(client.get_widget_overview())

    sent = fake.calls[-1]
    assert sent.headers["Authorization"] == "Bearer existing"
    assert sent.headers["X-WHOOP-Time-Zone"] == "Europe/London"
    assert fake.logins == 0


def test_expiring_token_is_refreshed_before_request():
    fake = FakeWhoop({"/home-service/v1/widget/overview": {}})
    stale = AuthContext(access_token="old", expires_at=time.time() + 60)
    client = make_client(fake, auth=stale)

    asyncio.run(client.get_widget_overview())

    assert fake.logins == 1
    assert client.auth is not stale
    assert fake.calls[-1].headers["Authorization"] != "Bearer old"


def test_401_triggers_one_relogin_and_retry():
    responses = iter([httpx.Response(401), httpx.Response(200, json={"ok": True})])
    fake = FakeWhoop({"/home-service/v1/widget/overview": lambda request: next(responses)})
    client = make_client(fake, auth=fresh_auth())

    assert asyncio.run(client.get_widget_overview()) == {"ok": True}
    assert fake.logins == 1


def test_second_401_raises():
    fake = FakeWhoop({"/home-service/v1/widget/overview": lambda request: httpx.Response(401)})
    client = make_client(fake, auth=fresh_auth())

    with pytest.raises(WhoopAPIError) as excinfo:
        asyncio.run(client.get_widget_overview())
    assert excinfo.value.status_code == 401
    assert fake.logins == 1


def test_error_status_raises_with_path():
    fake = FakeWhoop({"/home-service/v1/widget/overview": lambda request: httpx.Response(500)})
    client = make_client(fake, auth=fresh_auth())

    with pytest.raises(WhoopAPIError) as excinfo:
        asyncio.run(client.get_widget_overview())
    assert excinfo.value.status_code == 500
    assert excinfo.value.path == "/home-service/v1/widget/overview"


def test_login_failure_raises_auth_error():
    def reject(request):
        return httpx.Response(400, json={"message": "Incorrect username or password."})

    client = WhoopClient(WhoopConfig(email="a", password="b", base_url=BASE), transport=httpx.MockTransport(reject))

    with pytest.raises(WhoopAuthError):
        asyncio.run(client.login())


def test_missing_credentials_raise_auth_error():
    client = make_client(FakeWhoop(), email=None)
    with pytest.raises(WhoopAuthError):
        asyncio.run(client.ensure_auth())


def test_fetch_paginated_follows_next_token():
    seen = []

    def recovery(request):
        params = request.url.params
        seen.append((params.get("limit"), params.get("nextToken"), params.get("end")))
        page = len(seen)
        records = [{"id": f"{page}-{i}"} for i in range(int(params["limit"]))]
        return httpx.Response(200, json={"records": records, "next_token": f"page-{page + 1}"})

    fake = FakeWhoop({"/developer/v2/recovery": recovery})
    client = make_client(fake, auth=fresh_auth())

    records = asyncio.run(client.get_recovery_v2(60, end="2025-02-26T23:59:59.999Z"))

    assert len(records) == 60
    assert [limit for limit, _, _ in seen] == ["25", "25", "10"]
    assert [token for _, token, _ in seen] == [None, "page-2", "page-3"]
    assert all(end == "2025-02-26T23:59:59.999Z" for _, _, end in seen)


def test_fetch_paginated_stops_without_next_token():
    fake = FakeWhoop({"/developer/v2/cycle": {"records": [{"id": 1}, {"id": 2}]}})
    client = make_client(fake, auth=fresh_auth())

    records = asyncio.run(client.get_cycles_v2(30))

    assert records == [{"id": 1}, {"id": 2}]
    assert len([c for c in fake.calls if c.url.path == "/developer/v2/cycle"]) == 1


@pytest.mark.parametrize("getter, args, path", [
    ("get_home", ("2025-02-26",), "/home-service/v1/home"),
    ("get_deep_dive_recovery", ("2025-02-26",), "/home-service/v1/deep-dive/recovery"),
    ("get_deep_dive_strain", ("2025-02-26",), "/home-service/v1/deep-dive/strain"),
    ("get_sleep_last_night", ("2025-02-26",), "/home-service/v1/deep-dive/sleep/last-night"),
    ("get_recovery_calendar", ("2025-02-15",), "/home-service/v1/calendar/recovery"),
    ("get_healthspan", ("2025-02-26",), "/healthspan-service/v1/healthspan/bff"),
    ("get_health_tab", (), "/health-tab-bff/v1/health-tab"),
    ("get_behavior_impact", (), "/behavior-impact-service/v1/impact"),
    ("get_body_measurements", (), "/developer/v2/user/measurement/body"),
])
def test_internal_getters_hit_their_endpoints(getter, args, path):
    fake = FakeWhoop({path: {"ok": True}})
    client = make_client(fake, auth=fresh_auth())

    assert asyncio.run(getattr(client, getter)(*args)) == {"ok": True}
    assert fake.calls[-1].url.path == path
    if args:
        assert fake.calls[-1].url.params["date"] == args[0]
