"""Verification, history and link status API routes.

Role mutation is not available over HTTP; the decision returned here is
read-only.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.core.dependencies import get_engine, http_error
from shared.errors import VerificationError
from shared.verification import VerificationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["verification"])


# ============================================
# Response Models
# ============================================


class CheckResultResponse(BaseModel):
    ok: bool
    value: bool
    needs_auth: bool
    tier: str | None = None
    plan_name: str | None = None
    is_gift: bool | None = None
    error: str | None = None


class DecisionResponse(BaseModel):
    guild_id: str
    member_id: str
    results: dict[str, CheckResultResponse]
    all_conditions_met: bool
    needs_auth: bool
    checked_at: datetime


class HistoryEntryResponse(BaseModel):
    platform: str
    verification_type: str
    result: str
    checked_at: datetime | None = None


class LinkStatusResponse(BaseModel):
    member_id: str
    platforms: dict[str, str]
    linked_since: datetime | None = None
    history: list[HistoryEntryResponse] = []


# ============================================
# Endpoints
# ============================================


@router.get("/verify/{guild_id}/{discord_id}", response_model=DecisionResponse)
async def verify_member(
    guild_id: str,
    discord_id: str,
    engine: VerificationEngine = Depends(get_engine),
) -> DecisionResponse:
    """Evaluate the guild's policy for one member."""
    try:
        decision = await engine.verify(guild_id, discord_id)
    except VerificationError as e:
        raise http_error(e) from e
    return DecisionResponse(**decision.as_dict())


@router.get("/history/{discord_id}", response_model=list[HistoryEntryResponse])
async def get_history(
    discord_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    engine: VerificationEngine = Depends(get_engine),
) -> list[HistoryEntryResponse]:
    """Most recent verification log entries, newest first."""
    entries = await engine.history(discord_id, limit=limit)
    return [
        HistoryEntryResponse(
            platform=e.platform,
            verification_type=e.verification_type,
            result=e.result,
            checked_at=e.checked_at,
        )
        for e in entries
    ]


@router.get("/status/{discord_id}", response_model=LinkStatusResponse)
async def get_link_status(
    discord_id: str,
    engine: VerificationEngine = Depends(get_engine),
) -> LinkStatusResponse:
    """Per-platform link state for a member."""
    status = await engine.status(discord_id)
    return LinkStatusResponse(**status.as_dict())
