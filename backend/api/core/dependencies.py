"""Dependency injection utilities for FastAPI"""

import logging

from fastapi import HTTPException, Request

from shared.errors import (
    InvalidOAuthState,
    LinkError,
    Unauthenticated,
    Unconfigured,
    UnsupportedPlatform,
    VerificationError,
)
from shared.verification import VerificationEngine

logger = logging.getLogger(__name__)


# ============================================
# Service Dependencies
# ============================================


def get_engine(request: Request) -> VerificationEngine:
    """Get the process-wide VerificationEngine built in the lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Verification engine not ready")
    return engine


# ============================================
# Error mapping
# ============================================

_STATUS_BY_ERROR: dict[type[VerificationError], int] = {
    Unconfigured: 404,
    Unauthenticated: 404,
    UnsupportedPlatform: 400,
    InvalidOAuthState: 400,
    LinkError: 502,
}


def http_error(exc: VerificationError) -> HTTPException:
    """Translate an engine error into the matching HTTPException."""
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.error(f"Unmapped verification error: {type(exc).__name__}: {exc}")
    return HTTPException(status_code=500, detail=str(exc))
