"""OAuth redirect and callback routes for account linking"""

import html
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel

from api.core.dependencies import get_engine, http_error
from shared.errors import InvalidOAuthState, LinkError, UnsupportedPlatform
from shared.verification import VerificationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

_PLATFORM_TITLES = {"youtube": "YouTube", "twitch": "Twitch"}


class DisconnectResponse(BaseModel):
    member_id: str
    platform: str
    removed: int


# ============================================
# Helpers
# ============================================


def _page(title: str, message: str, *, success: bool, status_code: int = 200) -> HTMLResponse:
    color = "#2e7d32" if success else "#c62828"
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 4em;">
  <h1 style="color: {color};">{html.escape(title)}</h1>
  <p>{html.escape(message)}</p>
  <p>You can close this window and return to Discord.</p>
</body>
</html>"""
    return HTMLResponse(content=body, status_code=status_code)


# ============================================
# Endpoints
# ============================================


@router.get("/{platform}")
async def start_link(
    platform: str,
    discord_id: str,
    discord_username: str | None = None,
    engine: VerificationEngine = Depends(get_engine),
) -> RedirectResponse:
    """Redirect the member to the provider's consent page."""
    try:
        url = await engine.link_start(discord_id, discord_username or discord_id, platform)
    except UnsupportedPlatform as e:
        raise http_error(e) from e
    return RedirectResponse(url=url, status_code=302)


@router.get("/{platform}/callback", response_class=HTMLResponse)
async def oauth_callback(
    platform: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    engine: VerificationEngine = Depends(get_engine),
) -> HTMLResponse:
    """Handle the provider redirect and persist the credential"""
    title = _PLATFORM_TITLES.get(platform.lower(), platform)

    if error:
        logger.info(f"OAuth error from {platform}: {error}")
        return _page(f"{title} link cancelled", f"The provider reported: {error}", success=False, status_code=400)

    if not code or not state:
        logger.warning(f"{platform} callback without code or state")
        return _page(f"{title} link failed", "Missing authorization code or state.", success=False, status_code=400)

    try:
        await engine.complete_callback(platform, code, state)
    except (UnsupportedPlatform, InvalidOAuthState) as e:
        logger.warning(f"Rejected {platform} callback: {e}")
        return _page(f"{title} link failed", str(e), success=False, status_code=http_error(e).status_code)
    except LinkError as e:
        logger.error(f"{platform} code exchange failed: {e.reason}")
        return _page(
            f"{title} link failed",
            "The provider did not accept the authorization. Please try again.",
            success=False,
            status_code=http_error(e).status_code,
        )

    return _page(
        f"{title} account linked",
        "Your account is connected. Run /verify in Discord to check your role.",
        success=True,
    )


@router.delete("/{platform}/{discord_id}", response_model=DisconnectResponse)
async def disconnect_account(
    platform: str,
    discord_id: str,
    engine: VerificationEngine = Depends(get_engine),
) -> DisconnectResponse:
    """Remove the member's credential for one platform, or every platform with ``all``."""
    platform = platform.lower()
    try:
        removed = await engine.disconnect(discord_id, platform)
    except UnsupportedPlatform as e:
        raise http_error(e) from e
    return DisconnectResponse(member_id=discord_id, platform=platform, removed=removed)
