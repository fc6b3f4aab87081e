"""YouTube adapter (YouTube Data API v3 + Google OAuth).

YouTube has no follow concept; only subscription checks are supported.
"""

from __future__ import annotations

import logging
import re
from typing import ClassVar
from urllib.parse import urlencode

import httpx

from shared.errors import LinkError
from shared.models.credential import Credential, Platform, TokenExchange
from shared.models.verification import CheckResult, VerificationKind

from .base import DEFAULT_TIMEOUT, PlatformAdapter, TokenRefreshResult, json_object

logger = logging.getLogger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

_CHANNEL_ID_RE = re.compile(r"^UC[\w-]{22}$")


class YouTubeAdapter(PlatformAdapter):
    """Subscription checks for the authenticated YouTube account."""

    platform: ClassVar[Platform] = Platform.YOUTUBE
    supported_kinds: ClassVar[frozenset[VerificationKind]] = frozenset(
        {VerificationKind.YOUTUBE_SUBSCRIPTION}
    )

    SCOPES = ["https://www.googleapis.com/auth/youtube.readonly"]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        api_key: str = "",
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(http=http, timeout=timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.api_key = api_key

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.SCOPES),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenExchange:
        try:
            response = await self._http.post(
                GOOGLE_TOKEN_URL,
                data={
                    "grant_type": "authorization_code",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "code": code,
                },
            )
        except httpx.TimeoutException as e:
            raise LinkError(self.platform.value, "timeout") from e
        except httpx.HTTPError as e:
            raise LinkError(self.platform.value, type(e).__name__) from e

        if response.status_code != 200:
            logger.error(f"Failed to exchange Google code: {response.status_code} {response.text}")
            raise LinkError(self.platform.value, "token_exchange_failed")

        try:
            data = json_object(response)
            if not data.get("access_token"):
                raise LinkError(self.platform.value, "no_access_token")
            return TokenExchange.from_response(data)
        except (ValueError, TypeError) as e:
            raise LinkError(self.platform.value, "invalid_response") from e

    async def refresh(self, credential: Credential) -> TokenRefreshResult:
        """Refresh an access token. Google keeps the original refresh token."""
        if not credential.refresh_token:
            return TokenRefreshResult(success=False, error="no refresh token")
        try:
            response = await self._http.post(
                GOOGLE_TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": credential.refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"Google token refresh error: {type(e).__name__}: {e}")
            return TokenRefreshResult(success=False, error=type(e).__name__)

        if response.status_code != 200:
            logger.info(f"Google token refresh failed: HTTP {response.status_code}")
            return TokenRefreshResult(success=False, error=f"HTTP {response.status_code}")

        try:
            data = json_object(response)
            if not data.get("access_token"):
                return TokenRefreshResult(success=False, error="No access_token in refresh response")
            token = TokenExchange.from_response(data)
        except (ValueError, TypeError) as e:
            logger.warning(f"Malformed Google refresh response: {type(e).__name__}: {e}")
            return TokenRefreshResult(success=False, error="invalid refresh response")
        token.refresh_token = token.refresh_token or credential.refresh_token
        return TokenRefreshResult(success=True, token=token)

    async def revoke(self, access_token: str) -> None:
        try:
            await self._http.post(GOOGLE_REVOKE_URL, params={"token": access_token})
        except httpx.HTTPError as e:
            logger.warning(f"Google token revoke failed: {type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # Channel resolution and checks
    # ------------------------------------------------------------------

    async def resolve_channel(self, name_or_id: str) -> str | None:
        """Accept a ``UC…`` channel id as-is, otherwise look up the handle."""
        value = name_or_id.strip()
        if _CHANNEL_ID_RE.match(value):
            return value
        if not self.api_key:
            logger.warning(f"Cannot resolve YouTube handle {value!r} without an API key")
            return None

        handle = value if value.startswith("@") else f"@{value}"
        try:
            response = await self._http.get(
                f"{YOUTUBE_API_BASE}/channels",
                params={"part": "id", "forHandle": handle, "key": self.api_key},
            )
        except httpx.HTTPError as e:
            logger.warning(f"YouTube handle lookup for {handle} failed: {type(e).__name__}: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"YouTube handle lookup for {handle} failed: {response.status_code}")
            return None
        try:
            items = json_object(response).get("items") or []
            return items[0]["id"] if items else None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Malformed YouTube handle lookup for {handle}: {type(e).__name__}: {e}")
            return None

    async def check_subscription(self, credential: Credential, channel_id: str) -> CheckResult:
        params = {"part": "snippet", "mine": "true", "forChannelId": channel_id}
        if self.api_key:
            params["key"] = self.api_key
        try:
            response = await self._http.get(
                f"{YOUTUBE_API_BASE}/subscriptions",
                params=params,
                headers={"Authorization": f"Bearer {credential.access_token}"},
            )
            if response.status_code != 200:
                return self._error_result(response, "subscription check")
            return CheckResult.success(bool(json_object(response).get("items")))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"YouTube subscription check error: {type(e).__name__}: {e}")
            return CheckResult.failure(f"youtube subscription check failed ({type(e).__name__})")
