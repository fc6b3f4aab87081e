"""Shared data models for all Rolegate backend services."""

from .credential import Credential, Platform, TokenExchange
from .policy import CommunityPolicy, PolicyValidation
from .user import User
from .verification import (
    CheckResult,
    CheckStatus,
    Decision,
    VerificationKind,
    VerificationLogEntry,
)

__all__ = [
    "CheckResult",
    "CheckStatus",
    "CommunityPolicy",
    "Credential",
    "Decision",
    "Platform",
    "PolicyValidation",
    "TokenExchange",
    "User",
    "VerificationKind",
    "VerificationLogEntry",
]
