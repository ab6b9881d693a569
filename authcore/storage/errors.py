from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailable(Exception):
    """Raised when a backing store times out or cannot be reached.

    Distinct from any lookup result so callers never read an outage as
    "absent" (for example, "not revoked").
    """

    def __init__(self, store: str, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.store = store
        self.message = message
        self.cause = cause


__all__ = ["ConstraintViolation", "StoreUnavailable"]
