"""Tests for the verification orchestrator."""

from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from shared.errors import Unauthenticated, Unconfigured
from shared.models.credential import Platform
from shared.models.policy import CommunityPolicy
from shared.models.verification import CheckResult, CheckStatus, VerificationKind
from shared.platforms import TwitchAdapter, YouTubeAdapter
from shared.platforms.base import TokenRefreshResult
from shared.verification import VerificationOrchestrator, required_kinds
from shared.verification.orchestrator import _PlatformContext

from .conftest import NOW, token

YT = VerificationKind.YOUTUBE_SUBSCRIPTION
FOLLOW = VerificationKind.TWITCH_FOLLOW
SUB = VerificationKind.TWITCH_SUBSCRIPTION


async def _member(users, credentials, *platforms, expires_in=3600, refresh=None):
    user = await users.ensure_user("m1", "Member")
    for platform in platforms:
        await credentials.save_credential(
            user.id, platform, token(f"{platform.value}-token", refresh, expires_in), now=NOW
        )
    return user


class TestRequiredKinds:
    def test_follows_policy_flags(self):
        policy = CommunityPolicy(guild_id="g", require_youtube=False, require_twitch_sub=True)
        assert required_kinds(policy) == [FOLLOW, SUB]

    def test_nothing_required(self):
        policy = CommunityPolicy(
            guild_id="g", require_youtube=False, require_twitch_follow=False, require_twitch_sub=False
        )
        assert required_kinds(policy) == []


class TestAbort:
    @pytest.mark.asyncio
    async def test_missing_policy_is_unconfigured(self, orchestrator, users):
        await users.ensure_user("m1", "Member")
        with pytest.raises(Unconfigured):
            await orchestrator.verify("nope", "m1")

    @pytest.mark.asyncio
    async def test_missing_user_is_unauthenticated(self, orchestrator, scenario_policy):
        with pytest.raises(Unauthenticated):
            await orchestrator.verify("g1", "ghost")


class TestAggregation:
    @pytest.mark.asyncio
    async def test_nothing_required_always_passes(self, orchestrator, policies, users, yt, tw, logs):
        policies.policies["g2"] = CommunityPolicy(
            guild_id="g2", require_youtube=False, require_twitch_follow=False, require_twitch_sub=False
        )
        await users.ensure_user("m1", "Member")

        decision = await orchestrator.verify("g2", "m1")

        assert decision.all_conditions_met is True
        assert decision.results == {}
        assert yt.calls == [] and tw.calls == []
        assert logs.entries == []

    @pytest.mark.asyncio
    async def test_missing_credential_needs_auth(self, orchestrator, scenario_policy, users, yt, tw):
        await users.ensure_user("m1", "Member")

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].needs_auth
        assert decision.results[FOLLOW].needs_auth
        assert decision.all_conditions_met is False
        assert decision.needs_auth is True
        assert yt.calls == [] and tw.calls == []

    @pytest.mark.asyncio
    async def test_youtube_linked_twitch_missing(
        self, orchestrator, scenario_policy, users, credentials, yt, tw, logs
    ):
        await _member(users, credentials, Platform.YOUTUBE)

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].satisfied
        assert decision.results[FOLLOW].needs_auth
        assert SUB not in decision.results
        assert decision.all_conditions_met is False
        assert [e.result for e in logs.entries] == ["subscribed"]
        assert tw.resolved == []

    @pytest.mark.asyncio
    async def test_both_linked_and_satisfied(self, orchestrator, scenario_policy, users, credentials, yt, tw, logs):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)

        decision = await orchestrator.verify("g1", "m1")

        assert decision.all_conditions_met is True
        assert len(logs.entries) == 2
        assert {(e.platform, e.verification_type, e.result) for e in logs.entries} == {
            ("youtube", "subscription", "subscribed"),
            ("twitch", "follow", "followed"),
        }
        assert yt.calls == [(YT, "youtube-token", "id-UC1")]
        assert tw.calls == [(FOLLOW, "twitch-token", "id-foo")]

    @pytest.mark.asyncio
    async def test_negative_answer_is_not_met(self, orchestrator, scenario_policy, users, credentials, tw, logs):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        tw.outcomes[FOLLOW] = CheckResult.success(False)

        decision = await orchestrator.verify("g1", "m1")

        assert decision.all_conditions_met is False
        assert "not_followed" in [e.result for e in logs.entries]

    @pytest.mark.asyncio
    async def test_transient_error_is_not_met_but_not_reauth(
        self, orchestrator, scenario_policy, users, credentials, yt, logs
    ):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        yt.outcomes[YT] = CheckResult.failure("youtube rate limit reached")

        decision = await orchestrator.verify("g1", "m1")

        result = decision.results[YT]
        assert result.status is CheckStatus.ERROR
        assert result.error == "youtube rate limit reached"
        assert decision.needs_auth is False
        assert decision.has_errors is True
        assert decision.all_conditions_met is False
        assert [e.result for e in logs.entries if e.platform == "youtube"] == ["not_subscribed"]

    @pytest.mark.asyncio
    async def test_provider_rejection_is_logged_once(self, orchestrator, scenario_policy, users, credentials, tw, logs):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        tw.outcomes[FOLLOW] = CheckResult.reauth("twitch token expired or revoked")

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[FOLLOW].needs_auth
        assert len(tw.calls) == 1
        assert [e.result for e in logs.entries if e.platform == "twitch"] == ["not_followed"]

    @pytest.mark.asyncio
    async def test_subscription_tier_label(self, orchestrator, policies, users, credentials, logs):
        policies.policies["g3"] = CommunityPolicy(
            guild_id="g3",
            twitch_channel_name="foo",
            require_youtube=False,
            require_twitch_follow=False,
            require_twitch_sub=True,
        )
        await _member(users, credentials, Platform.TWITCH)
        orchestrator.adapters[Platform.TWITCH].outcomes[SUB] = CheckResult.success(True, tier="2000")

        decision = await orchestrator.verify("g3", "m1")

        assert decision.all_conditions_met is True
        assert [e.result for e in logs.entries] == ["subscribed_tier_2"]

    @pytest.mark.asyncio
    async def test_adapter_exception_becomes_error(self, orchestrator, scenario_policy, users, credentials, yt):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        yt.outcomes[YT] = httpx.ConnectError("boom")

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].status is CheckStatus.ERROR
        assert decision.results[FOLLOW].satisfied


class TestChannels:
    @pytest.mark.asyncio
    async def test_empty_channel_is_error_without_call(self, orchestrator, policies, users, credentials, yt, logs):
        policies.policies["g4"] = CommunityPolicy(
            guild_id="g4", youtube_channel_id="", require_twitch_follow=False
        )
        await _member(users, credentials, Platform.YOUTUBE)

        decision = await orchestrator.verify("g4", "m1")

        assert decision.results[YT].status is CheckStatus.ERROR
        assert decision.results[YT].error == "channel not configured"
        assert decision.all_conditions_met is False
        assert yt.calls == []
        assert logs.entries == []

    @pytest.mark.asyncio
    async def test_unresolvable_channel(self, orchestrator, scenario_policy, users, credentials, tw, logs):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        tw.channels["foo"] = None

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[FOLLOW].status is CheckStatus.ERROR
        assert tw.calls == []
        assert [e.platform for e in logs.entries] == ["youtube"]

    @pytest.mark.asyncio
    async def test_channel_resolved_once_per_platform(self, orchestrator, policies, users, credentials, tw):
        policies.policies["g5"] = CommunityPolicy(
            guild_id="g5",
            twitch_channel_name="foo",
            require_youtube=False,
            require_twitch_follow=True,
            require_twitch_sub=True,
        )
        await _member(users, credentials, Platform.TWITCH)

        decision = await orchestrator.verify("g5", "m1")

        assert tw.resolved == ["foo"]
        assert {kind for kind, _, _ in tw.calls} == {FOLLOW, SUB}
        assert decision.all_conditions_met is True

    @pytest.mark.asyncio
    async def test_missing_adapter_is_unsupported(self, orchestrator, scenario_policy, users, credentials):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        del orchestrator.adapters[Platform.TWITCH]

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[FOLLOW].error == "unsupported"
        assert decision.results[YT].satisfied

    @pytest.mark.asyncio
    async def test_kind_not_advertised_is_unsupported(self, orchestrator, policies, users, credentials, tw):
        policies.policies["g6"] = CommunityPolicy(
            guild_id="g6",
            twitch_channel_name="foo",
            require_youtube=False,
            require_twitch_follow=True,
            require_twitch_sub=True,
        )
        tw.supported_kinds = frozenset({FOLLOW})
        await _member(users, credentials, Platform.TWITCH)

        decision = await orchestrator.verify("g6", "m1")

        assert decision.results[SUB].error == "unsupported"
        assert decision.results[FOLLOW].satisfied
        assert [kind for kind, _, _ in tw.calls] == [FOLLOW]

    @pytest.mark.asyncio
    async def test_unprepared_context_is_error_without_call(self, orchestrator, yt):
        result, invoked = await orchestrator._check(YT, _PlatformContext(adapter=yt))

        assert result.status is CheckStatus.ERROR
        assert result.error == "not prepared"
        assert invoked is False
        assert yt.calls == []


class TestRefresh:
    @pytest.mark.asyncio
    async def test_expired_credential_is_refreshed_and_saved(self, orchestrator, scenario_policy, users, credentials, yt):
        user = await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH, refresh="r1")
        credentials.rows[(user.id, Platform.YOUTUBE)].expires_at = NOW - timedelta(minutes=1)
        yt.refresh_result = TokenRefreshResult(success=True, token=token("fresh", "r1", 3600))

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].satisfied
        assert yt.calls == [(YT, "fresh", "id-UC1")]
        saved = credentials.rows[(user.id, Platform.YOUTUBE)]
        assert saved.access_token == "fresh"
        assert saved.expires_at == NOW + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_needs_auth(self, orchestrator, scenario_policy, users, credentials, yt, logs):
        user = await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        credentials.rows[(user.id, Platform.YOUTUBE)].expires_at = NOW - timedelta(minutes=1)

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].needs_auth
        assert yt.refreshed == []
        assert yt.calls == []
        assert [e.platform for e in logs.entries] == ["twitch"]

    @pytest.mark.asyncio
    async def test_failed_refresh_needs_auth(self, orchestrator, scenario_policy, users, credentials, yt):
        user = await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH, refresh="r1")
        credentials.rows[(user.id, Platform.YOUTUBE)].expires_at = NOW - timedelta(minutes=1)
        yt.refresh_result = TokenRefreshResult(success=False, error="invalid_grant")

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].needs_auth
        assert len(yt.refreshed) == 1
        assert yt.calls == []

    @pytest.mark.asyncio
    async def test_never_expiring_credential_is_not_refreshed(self, orchestrator, scenario_policy, users, credentials, yt):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH, expires_in=None, refresh="r1")

        decision = await orchestrator.verify("g1", "m1")

        assert decision.all_conditions_met is True
        assert yt.refreshed == []


class TestTimeout:
    @pytest.mark.asyncio
    async def test_slow_check_times_out_without_blocking_others(
        self, orchestrator, scenario_policy, users, credentials, yt, logs
    ):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        orchestrator.timeout = 0.05
        yt.outcomes[YT] = 5.0

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].status is CheckStatus.ERROR
        assert decision.results[YT].error == "timed out"
        assert decision.results[FOLLOW].satisfied
        assert decision.all_conditions_met is False
        assert len(logs.entries) == 2


def _gateway_page(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="<html>gateway</html>", headers={"Content-Type": "text/html"})


def _http_adapters(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return {
        Platform.YOUTUBE: YouTubeAdapter(
            "gid", "gsecret", "http://localhost/auth/youtube/callback", "key", http=http
        ),
        Platform.TWITCH: TwitchAdapter("cid", "secret", "http://localhost/auth/twitch/callback", http=http),
    }


class TestMalformedProviderReplies:
    @pytest.fixture
    def http_orchestrator(self, users, credentials, policies, logs):
        def build(handler):
            return VerificationOrchestrator(
                users=users,
                credentials=credentials,
                policies=policies,
                logs=logs,
                adapters=_http_adapters(handler),
                timeout=0.5,
                clock=lambda: NOW,
            )

        return build

    @pytest.mark.asyncio
    async def test_youtube_handle_lookup_page_is_error(self, http_orchestrator, policies, users, credentials, logs):
        policies.policies["g7"] = CommunityPolicy(
            guild_id="g7", youtube_channel_id="@creator", require_twitch_follow=False
        )
        await _member(users, credentials, Platform.YOUTUBE)

        decision = await http_orchestrator(_gateway_page).verify("g7", "m1")

        assert decision.results[YT].status is CheckStatus.ERROR
        assert decision.all_conditions_met is False
        assert logs.entries == []

    @pytest.mark.asyncio
    async def test_twitch_app_token_page_is_error(self, http_orchestrator, policies, users, credentials):
        policies.policies["g8"] = CommunityPolicy(
            guild_id="g8", twitch_channel_name="foo", require_youtube=False
        )
        await _member(users, credentials, Platform.TWITCH)

        decision = await http_orchestrator(_gateway_page).verify("g8", "m1")

        assert decision.results[FOLLOW].status is CheckStatus.ERROR
        assert "not found" in decision.results[FOLLOW].error

    @pytest.mark.asyncio
    async def test_youtube_refresh_page_needs_auth(self, http_orchestrator, policies, users, credentials):
        policies.policies["g9"] = CommunityPolicy(
            guild_id="g9", youtube_channel_id="UC" + "a" * 22, require_twitch_follow=False
        )
        user = await _member(users, credentials, Platform.YOUTUBE, refresh="r1")
        credentials.rows[(user.id, Platform.YOUTUBE)].expires_at = NOW - timedelta(minutes=1)

        decision = await http_orchestrator(_gateway_page).verify("g9", "m1")

        assert decision.results[YT].needs_auth
        assert credentials.rows[(user.id, Platform.YOUTUBE)].access_token == "youtube-token"

    @pytest.mark.asyncio
    async def test_raising_channel_lookup_is_error(self, orchestrator, scenario_policy, users, credentials, tw):
        await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH)
        tw.resolve_channel = AsyncMock(side_effect=KeyError("id"))

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[FOLLOW].status is CheckStatus.ERROR
        assert "KeyError" in decision.results[FOLLOW].error
        assert decision.results[YT].satisfied
        assert tw.calls == []

    @pytest.mark.asyncio
    async def test_raising_refresh_needs_auth(self, orchestrator, scenario_policy, users, credentials, yt):
        user = await _member(users, credentials, Platform.YOUTUBE, Platform.TWITCH, refresh="r1")
        credentials.rows[(user.id, Platform.YOUTUBE)].expires_at = NOW - timedelta(minutes=1)
        yt.refresh = AsyncMock(side_effect=ValueError("Expecting value"))

        decision = await orchestrator.verify("g1", "m1")

        assert decision.results[YT].needs_auth
        assert decision.results[FOLLOW].satisfied
        assert yt.calls == []
