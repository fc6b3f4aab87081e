"""Shared repository layer for all Rolegate backend services."""

from .credential import CredentialRepository
from .policy import PolicyRepository
from .user import UserRepository
from .verification_log import VerificationLogRepository

__all__ = [
    "CredentialRepository",
    "PolicyRepository",
    "UserRepository",
    "VerificationLogRepository",
]
