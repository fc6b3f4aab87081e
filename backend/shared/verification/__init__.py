"""Entitlement verification engine."""

from .engine import VerificationEngine, build_engine
from .entitlement import ApplyResult, EntitlementApplier, GrantStatus, RoleManager
from .janitor import TokenJanitor
from .linking import (
    AccountLinkService,
    LinkState,
    LinkStatus,
    PendingLink,
    PendingLinkStore,
)
from .orchestrator import VerificationOrchestrator, required_kinds

__all__ = [
    "AccountLinkService",
    "ApplyResult",
    "EntitlementApplier",
    "GrantStatus",
    "LinkState",
    "LinkStatus",
    "PendingLink",
    "PendingLinkStore",
    "RoleManager",
    "TokenJanitor",
    "VerificationEngine",
    "VerificationOrchestrator",
    "build_engine",
    "required_kinds",
]
