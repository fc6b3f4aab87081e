"""Twitch adapter.

Token types:
- App Access Token: client-credentials token used only to resolve channel
  names to broadcaster ids. Auto-fetched and cached.
- User Access Token: the member's delegated credential, used for follow and
  subscription checks. Stored in DB, can be refreshed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import ClassVar
from urllib.parse import urlencode

import httpx

from shared.errors import LinkError
from shared.models.credential import Credential, Platform, TokenExchange
from shared.models.verification import CheckResult, VerificationKind

from .base import DEFAULT_TIMEOUT, PlatformAdapter, TokenRefreshResult, json_object

logger = logging.getLogger(__name__)

HELIX_BASE = "https://api.twitch.tv/helix"
OAUTH_BASE = "https://id.twitch.tv/oauth2"


class TwitchAdapter(PlatformAdapter):
    """Follow and tiered-subscription checks against the Helix API."""

    platform: ClassVar[Platform] = Platform.TWITCH
    supported_kinds: ClassVar[frozenset[VerificationKind]] = frozenset(
        {VerificationKind.TWITCH_FOLLOW, VerificationKind.TWITCH_SUBSCRIPTION}
    )

    SCOPES = ["user:read:follows", "user:read:subscriptions"]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(http=http, timeout=timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

        self._app_token: str | None = None
        self._app_token_expires_at: float = 0.0
        self._app_token_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Client-Id": self.client_id}

    async def _ensure_app_token(self) -> str | None:
        """Return a cached app access token, refreshing only when expired."""
        now = time.monotonic()
        if self._app_token and now < self._app_token_expires_at:
            return self._app_token

        async with self._app_token_lock:
            now = time.monotonic()
            if self._app_token and now < self._app_token_expires_at:
                return self._app_token

            try:
                response = await self._http.post(
                    f"{OAUTH_BASE}/token",
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "grant_type": "client_credentials",
                    },
                )
            except httpx.HTTPError as e:
                logger.warning(f"Error getting Twitch app access token: {type(e).__name__}: {e}")
                return None

            if response.status_code != 200:
                logger.error(f"Failed to get Twitch app token: {response.status_code}")
                return None

            try:
                data = json_object(response)
                token = data["access_token"]
                expires_in = int(data.get("expires_in", 0))
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Malformed Twitch app token response: {type(e).__name__}: {e}")
                return None

            self._app_token = token
            # Refresh 5 min before Twitch says it expires
            self._app_token_expires_at = now + max(expires_in - 300, 0)
            return self._app_token

    async def _helix_get(self, path: str, params: dict | None, token: str) -> httpx.Response:
        return await self._http.get(
            f"{HELIX_BASE}/{path}",
            params=params,
            headers=self._headers(token),
        )

    async def _own_user_id(self, credential: Credential) -> tuple[str | None, CheckResult | None]:
        """Resolve the credential owner's Twitch user id.

        Returns ``(user_id, None)`` or ``(None, failure_result)``.
        """
        response = await self._helix_get("users", None, credential.access_token)
        if response.status_code != 200:
            return None, self._error_result(response, "user lookup")
        users = json_object(response).get("data") or []
        if not users:
            return None, CheckResult.failure("twitch returned no user for this token")
        return users[0]["id"], None

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
            "force_verify": "true",
        }
        return f"{OAUTH_BASE}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenExchange:
        try:
            response = await self._http.post(
                f"{OAUTH_BASE}/token",
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
            )
        except httpx.TimeoutException as e:
            raise LinkError(self.platform.value, "timeout") from e
        except httpx.HTTPError as e:
            raise LinkError(self.platform.value, type(e).__name__) from e

        if response.status_code != 200:
            logger.error(f"Failed to exchange Twitch code: {response.status_code} {response.text}")
            raise LinkError(self.platform.value, "token_exchange_failed")

        try:
            data = json_object(response)
            if not data.get("access_token"):
                raise LinkError(self.platform.value, "no_access_token")
            return TokenExchange.from_response(data)
        except (ValueError, TypeError) as e:
            raise LinkError(self.platform.value, "invalid_response") from e

    async def refresh(self, credential: Credential) -> TokenRefreshResult:
        """Refresh a user's access token.

        Twitch may rotate the refresh token; the old one is kept if the
        response carries none.
        """
        if not credential.refresh_token:
            return TokenRefreshResult(success=False, error="no refresh token")
        try:
            response = await self._http.post(
                f"{OAUTH_BASE}/token",
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": credential.refresh_token,
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"Twitch token refresh error: {type(e).__name__}: {e}")
            return TokenRefreshResult(success=False, error=type(e).__name__)

        if response.status_code != 200:
            try:
                error_msg = json_object(response).get("message", f"HTTP {response.status_code}")
            except ValueError:
                error_msg = f"HTTP {response.status_code}"
            logger.info(f"Twitch token refresh failed: {error_msg}")
            return TokenRefreshResult(success=False, error=error_msg)

        try:
            data = json_object(response)
            if not data.get("access_token"):
                return TokenRefreshResult(success=False, error="No access_token in refresh response")
            token = TokenExchange.from_response(data)
        except (ValueError, TypeError) as e:
            logger.warning(f"Malformed Twitch refresh response: {type(e).__name__}: {e}")
            return TokenRefreshResult(success=False, error="invalid refresh response")
        token.refresh_token = token.refresh_token or credential.refresh_token
        return TokenRefreshResult(success=True, token=token)

    async def revoke(self, access_token: str) -> None:
        try:
            response = await self._http.post(
                f"{OAUTH_BASE}/revoke",
                data={"client_id": self.client_id, "token": access_token},
            )
            if response.status_code != 200:
                logger.info(f"Twitch token revoke returned {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Twitch token revoke failed: {type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # Channel resolution and checks
    # ------------------------------------------------------------------

    async def resolve_channel(self, name_or_id: str) -> str | None:
        """Look up a broadcaster id by login name (app token)."""
        login = name_or_id.strip().lstrip("@").lower()
        token = await self._ensure_app_token()
        if not token:
            return None
        try:
            response = await self._helix_get("users", {"login": login}, token)
        except httpx.HTTPError as e:
            logger.warning(f"Twitch channel lookup for {login} failed: {type(e).__name__}: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"Twitch channel lookup for {login} failed: {response.status_code}")
            return None
        try:
            users = json_object(response).get("data") or []
            if not users:
                logger.info(f"No Twitch channel found for login: {login}")
                return None
            return str(users[0]["id"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Malformed Twitch channel lookup for {login}: {type(e).__name__}: {e}")
            return None

    async def check_follow(self, credential: Credential, channel_id: str) -> CheckResult:
        try:
            user_id, failure = await self._own_user_id(credential)
            if failure:
                return failure
            response = await self._helix_get(
                "channels/followed",
                {"user_id": user_id, "broadcaster_id": channel_id},
                credential.access_token,
            )
            if response.status_code != 200:
                return self._error_result(response, "follow check")
            return CheckResult.success(bool(json_object(response).get("data")))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Twitch follow check error: {type(e).__name__}: {e}")
            return CheckResult.failure(f"twitch follow check failed ({type(e).__name__})")

    async def check_subscription(self, credential: Credential, channel_id: str) -> CheckResult:
        try:
            user_id, failure = await self._own_user_id(credential)
            if failure:
                return failure
            response = await self._helix_get(
                "subscriptions/user",
                {"broadcaster_id": channel_id, "user_id": user_id},
                credential.access_token,
            )
            # Helix answers 404 when the user is not subscribed
            if response.status_code == 404:
                return CheckResult.success(False)
            if response.status_code != 200:
                return self._error_result(response, "subscription check")

            subs = json_object(response).get("data") or []
            if not subs:
                return CheckResult.success(False)
            sub = subs[0]
            return CheckResult.success(
                True,
                tier=sub.get("tier"),
                plan_name=sub.get("plan_name"),
                is_gift=sub.get("is_gift"),
            )
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Twitch subscription check error: {type(e).__name__}: {e}")
            return CheckResult.failure(f"twitch subscription check failed ({type(e).__name__})")
