"""Uniform capability interface over external content platforms."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

import httpx

from shared.models.credential import Credential, Platform, TokenExchange
from shared.models.verification import CheckResult, VerificationKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def json_object(response: httpx.Response) -> dict:
    """Decode a JSON object body. Raises ValueError for anything else."""
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


@dataclass
class TokenRefreshResult:
    """Result of a token refresh operation."""

    success: bool
    token: TokenExchange | None = None
    error: str | None = None


class PlatformAdapter(ABC):
    """Translate one provider's API into the engine's check contract.

    Each adapter advertises the verification kinds it supports. The check
    methods never raise: every outcome is a ``CheckResult`` that is either a
    definitive answer, a request to re-authenticate (the provider rejected
    the credential) or a retryable error.
    """

    platform: ClassVar[Platform]
    supported_kinds: ClassVar[frozenset[VerificationKind]]

    def __init__(
        self,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_http:
            await self._http.aclose()

    def supports(self, kind: VerificationKind) -> bool:
        return kind in self.supported_kinds

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @abstractmethod
    def authorization_url(self, state: str) -> str:
        """Provider consent URL carrying *state*."""

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenExchange:
        """Exchange an authorization code. Raises ``LinkError`` on failure."""

    @abstractmethod
    async def refresh(self, credential: Credential) -> TokenRefreshResult:
        """Obtain a fresh access token from the credential's refresh token."""

    async def revoke(self, access_token: str) -> None:
        """Best-effort token revocation. Default: nothing to revoke."""

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @abstractmethod
    async def resolve_channel(self, name_or_id: str) -> str | None:
        """Resolve a configured channel to the provider's channel id.

        Returns None when the channel does not exist or cannot be looked up
        right now.
        """

    async def check_follow(self, credential: Credential, channel_id: str) -> CheckResult:
        return CheckResult.failure(f"{self.platform.value} has no follow check")

    async def check_subscription(self, credential: Credential, channel_id: str) -> CheckResult:
        return CheckResult.failure(f"{self.platform.value} has no subscription check")

    async def check(
        self, kind: VerificationKind, credential: Credential, channel_id: str
    ) -> CheckResult:
        """Dispatch *kind* to the matching check."""
        if not self.supports(kind):
            return CheckResult.failure(f"{kind.value} is not supported by {self.platform.value}")
        if kind.verification_type == "follow":
            return await self.check_follow(credential, channel_id)
        return await self.check_subscription(credential, channel_id)

    def _error_result(self, response: httpx.Response, what: str) -> CheckResult:
        """Map a non-success provider response to a check outcome."""
        if response.status_code == 401:
            logger.info(f"{self.platform.value} rejected credential during {what}")
            return CheckResult.reauth(f"{self.platform.value} token expired or revoked")
        logger.warning(f"{self.platform.value} {what} failed: HTTP {response.status_code}")
        if response.status_code == 429:
            return CheckResult.failure(f"{self.platform.value} rate limit reached")
        return CheckResult.failure(f"{self.platform.value} {what} failed (HTTP {response.status_code})")
