from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    id: str
    username: str
    email: str
    password_hash: str
    is_verified: bool = False
    verify_key: Optional[str] = None
    is_admin: bool = False
    created_at: datetime = field(default_factory=_utcnow)
