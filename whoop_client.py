"""Async client for the WHOOP developer v2 API and the internal app API."""

import base64
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.prod.whoop.com"
COGNITO_CLIENT_ID = "37365lrcda1js3fapqfe2n40eh"
APP_USER_AGENT = "WHOOP/5.430.0 (iOS; 17.0)"
PAGE_SIZE = 25
# Re-login when the token has less than this many seconds left
REFRESH_MARGIN = 5 * 60


class WhoopAPIError(Exception):
    """A WHOOP endpoint answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None, path: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.path = path


class WhoopAuthError(WhoopAPIError):
    """Credential exchange failed or returned no token."""


@dataclass(frozen=True)
class WhoopConfig:
    email: Optional[str] = None
    password: Optional[str] = None
    base_url: str = DEFAULT_API_BASE
    timezone: str = "UTC"
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "WhoopConfig":
        return cls(
            email=os.getenv("WHOOP_EMAIL"),
            password=os.getenv("WHOOP_PASSWORD"),
            base_url=os.getenv("WHOOP_API_BASE", DEFAULT_API_BASE).rstrip("/"),
            timezone=os.getenv("WHOOP_TIMEZONE", "UTC"),
            timeout=float(os.getenv("WHOOP_HTTP_TIMEOUT", "30")),
        )


@dataclass(frozen=True)
class AuthContext:
    """Bearer token plus the identity claims carried in it."""

    access_token: str
    expires_at: float
    user_id: Optional[str] = None
    account_id: Optional[str] = None

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at - now < seconds


def decode_token_claims(token: str) -> Dict[str, Any]:
    """Read the (unverified) payload segment of a JWT."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (IndexError, ValueError):
        return {}
    return claims if isinstance(claims, dict) else {}


class WhoopClient:
    """Fetches WHOOP data on behalf of one account.

    The client owns an AuthContext which it replaces whenever the token is
    missing, about to expire, or rejected with a 401.
    """

    def __init__(self, config: WhoopConfig, auth: Optional[AuthContext] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.auth = auth
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.config.timeout)

    # Auth

    async def login(self) -> AuthContext:
        """Exchange email/password for a bearer token."""
        if not self.config.email or not self.config.password:
            raise WhoopAuthError("WHOOP_EMAIL and WHOOP_PASSWORD are required")

        headers = {
            "Accept": "*/*",
            "Content-Type": "application/x-amz-json-1.1",
            "X-Amz-Target": "AWSCognitoIdentityProviderService.InitiateAuth",
            "User-Agent": APP_USER_AGENT,
        }
        body = {
            "AuthParameters": {"USERNAME": self.config.email, "PASSWORD": self.config.password},
            "ClientId": COGNITO_CLIENT_ID,
            "AuthFlow": "USER_PASSWORD_AUTH",
        }

        async with self._http() as client:
            response = await client.post(
                f"{self.config.base_url}/auth-service/v3/whoop",
                headers=headers,
                content=json.dumps(body),
            )

        if response.status_code != 200:
            raise WhoopAuthError(f"Login failed: {response.status_code}", response.status_code)

        result = response.json().get("AuthenticationResult")
        if not result or not result.get("AccessToken"):
            raise WhoopAuthError("Login failed: no authentication result")

        claims = decode_token_claims(result["AccessToken"])
        self.auth = AuthContext(
            access_token=result["AccessToken"],
            expires_at=time.time() + float(result.get("ExpiresIn", 0)),
            user_id=claims.get("custom:user_id"),
            account_id=claims.get("custom:account_id"),
        )
        logger.info(f"Logged in to WHOOP (user {self.auth.user_id or 'unknown'})")
        return self.auth

    async def ensure_auth(self) -> AuthContext:
        if self.auth is None or self.auth.expires_within(REFRESH_MARGIN):
            return await self.login()
        return self.auth

    # HTTP

    def _headers(self, auth: AuthContext) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {auth.access_token}",
            "Accept": "*/*",
            "User-Agent": APP_USER_AGENT,
            "Content-Type": "application/json",
            "X-WHOOP-Device-Platform": "iOS",
            "X-WHOOP-Time-Zone": self.config.timezone,
            "Locale": "en_US",
        }

    async def request(self, path: str) -> Any:
        """GET a path, re-authenticating once if the token is rejected."""
        auth = await self.ensure_auth()
        url = f"{self.config.base_url}{path}"

        async with self._http() as client:
            response = await client.get(url, headers=self._headers(auth))
            if response.status_code == 401:
                logger.info(f"401 from {path}, logging in again")
                auth = await self.login()
                response = await client.get(url, headers=self._headers(auth))

        if response.is_error:
            raise WhoopAPIError(f"WHOOP API {response.status_code}: {path}", response.status_code, path)
        return response.json()

    async def fetch_paginated(self, base_path: str, limit: int, end: Optional[str] = None) -> List[Dict[str, Any]]:
        """Collect up to ``limit`` records from a paginated developer endpoint."""
        records: List[Dict[str, Any]] = []
        next_token = None

        while len(records) < limit:
            batch = min(limit - len(records), PAGE_SIZE)
            path = f"{base_path}?limit={batch}"
            if end:
                path += f"&end={quote(end)}"
            if next_token:
                path += f"&nextToken={quote(next_token)}"

            data = await self.request(path)
            page = data.get("records") or []
            records.extend(page)

            next_token = data.get("next_token") or data.get("nextToken")
            if not next_token or not page:
                break

        return records[:limit]

    # Internal app API

    async def get_home(self, date: str) -> Any:
        return await self.request(f"/home-service/v1/home?date={date}")

    async def get_deep_dive_recovery(self, date: str) -> Any:
        return await self.request(f"/home-service/v1/deep-dive/recovery?date={date}")

    async def get_deep_dive_strain(self, date: str) -> Any:
        return await self.request(f"/home-service/v1/deep-dive/strain?date={date}")

    async def get_sleep_last_night(self, date: str) -> Any:
        return await self.request(f"/home-service/v1/deep-dive/sleep/last-night?date={date}")

    async def get_widget_overview(self) -> Any:
        return await self.request("/home-service/v1/widget/overview")

    async def get_recovery_calendar(self, date: str) -> Any:
        return await self.request(f"/home-service/v1/calendar/recovery?date={date}")

    async def get_healthspan(self, date: str) -> Any:
        return await self.request(f"/healthspan-service/v1/healthspan/bff?date={date}")

    async def get_health_tab(self) -> Any:
        return await self.request("/health-tab-bff/v1/health-tab")

    async def get_behavior_impact(self) -> Any:
        return await self.request("/behavior-impact-service/v1/impact")

    # Developer v2 API

    async def get_recovery_v2(self, limit: int = 7, end: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.fetch_paginated("/developer/v2/recovery", limit, end)

    async def get_sleep_v2(self, limit: int = 7, end: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.fetch_paginated("/developer/v2/activity/sleep", limit, end)

    async def get_workouts_v2(self, limit: int = 7, end: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.fetch_paginated("/developer/v2/activity/workout", limit, end)

    async def get_cycles_v2(self, limit: int = 7, end: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.fetch_paginated("/developer/v2/cycle", limit, end)

    async def get_body_measurements(self) -> Dict[str, Any]:
        return await self.request("/developer/v2/user/measurement/body")

    async def get_user_profile(self) -> Dict[str, Any]:
        return await self.request("/developer/v2/user/profile/basic")
