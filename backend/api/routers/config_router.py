"""Guild verification policy API routes."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.core.dependencies import get_engine
from shared.verification import VerificationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/config", tags=["config"])


# ============================================
# Request / Response Models
# ============================================


_FLAG_FIELDS = frozenset(
    {"auto_assign_role", "require_youtube", "require_twitch_follow", "require_twitch_sub"}
)


class PolicyResponse(BaseModel):
    guild_id: str
    guild_name: str | None = None
    youtube_channel_id: str | None = None
    twitch_channel_name: str | None = None
    verified_role_id: str | None = None
    admin_role_id: str | None = None
    auto_assign_role: bool
    require_youtube: bool
    require_twitch_follow: bool
    require_twitch_sub: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PolicyUpdate(BaseModel):
    """Partial update: only the fields present in the body are written."""

    guild_name: str | None = None
    youtube_channel_id: str | None = None
    twitch_channel_name: str | None = None
    verified_role_id: str | None = None
    admin_role_id: str | None = None
    auto_assign_role: bool | None = None
    require_youtube: bool | None = None
    require_twitch_follow: bool | None = None
    require_twitch_sub: bool | None = None


class ValidationResponse(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]


class DeleteResponse(BaseModel):
    deleted: bool


# ============================================
# Endpoints
# ============================================


@router.get("/guilds", response_model=list[PolicyResponse])
async def list_guilds(engine: VerificationEngine = Depends(get_engine)) -> list[PolicyResponse]:
    policies = await engine.list_policies()
    return [PolicyResponse(**asdict(p)) for p in policies]


@router.get("/guild/{guild_id}", response_model=PolicyResponse)
async def get_guild_config(
    guild_id: str,
    engine: VerificationEngine = Depends(get_engine),
) -> PolicyResponse:
    policy = await engine.get_policy(guild_id)
    if policy is None:
        raise HTTPException(status_code=404, detail="Configuration not found")
    return PolicyResponse(**asdict(policy))


@router.post("/guild/{guild_id}", response_model=PolicyResponse)
async def update_guild_config(
    guild_id: str,
    body: PolicyUpdate,
    engine: VerificationEngine = Depends(get_engine),
) -> PolicyResponse:
    """Create the guild's policy or update the given fields."""
    # Text fields may be cleared with null; flags cannot
    fields = {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k not in _FLAG_FIELDS
    }
    try:
        policy = await engine.configure(guild_id, **fields)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return PolicyResponse(**asdict(policy))


@router.delete("/guild/{guild_id}", response_model=DeleteResponse)
async def delete_guild_config(
    guild_id: str,
    engine: VerificationEngine = Depends(get_engine),
) -> DeleteResponse:
    deleted = await engine.delete_policy(guild_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Configuration not found")
    logger.info(f"Deleted policy for guild {guild_id}")
    return DeleteResponse(deleted=True)


@router.post("/guild/{guild_id}/validate", response_model=ValidationResponse)
async def validate_guild_config(
    guild_id: str,
    engine: VerificationEngine = Depends(get_engine),
) -> ValidationResponse:
    validation = await engine.validate_policy(guild_id)
    return ValidationResponse(**validation.as_dict())
