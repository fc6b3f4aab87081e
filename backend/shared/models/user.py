"""Data model for the users table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """Local identity anchor for a chat member.

    Created on the first account-linking attempt and never deleted by the
    engine; only the member's credentials come and go.
    """

    id: int
    discord_id: str
    display_name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
