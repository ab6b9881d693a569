from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from authcore.logging import get_logger
from authcore.storage.common import (
    compare_account_password,
    generate_verify_key,
    hash_password,
    normalize_email,
)
from authcore.storage.errors import ConstraintViolation
from authcore.storage.models import Account


class MemoryAccountStore:
    """In-process account store, persisted to a JSON file under ``fs_root``."""

    def __init__(self, fs_root: str = "/tmp/authcore", *, persist: bool = True) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        self.persist = persist
        self.fs_root = Path(fs_root)
        # RLock so helpers can be called while a public method holds the lock
        self._data_lock = threading.RLock()
        if self.persist:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "accounts.json"

    def _persist_state(self) -> None:
        if not self.persist:
            return
        payload = {
            "accounts": [
                {**asdict(acc), "created_at": acc.created_at.isoformat()}
                for acc in self.accounts.values()
            ]
        }
        path = self._state_path()
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload))
        tmp.replace(path)

    def _load_state(self) -> bool:
        path = self._state_path()
        if not path.exists():
            return False
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as exc:
            self.logger.warning("account_state_load_failed", error=str(exc), path=str(path))
            return False
        for raw in data.get("accounts", []):
            raw["created_at"] = datetime.fromisoformat(raw["created_at"])
            account = Account(**raw)
            self.accounts[account.id] = account
        self.logger.info("account_state_loaded", accounts=len(self.accounts))
        return True

    def find_by_username_or_email(self, username: str, email: str) -> Optional[Account]:
        email = normalize_email(email)
        with self._data_lock:
            return next(
                (a for a in self.accounts.values() if a.username == username or a.email == email),
                None,
            )

    def find_by_username(self, username: str) -> Optional[Account]:
        with self._data_lock:
            return next((a for a in self.accounts.values() if a.username == username), None)

    def find_by_verify_key(self, key: str) -> Optional[Account]:
        if not key:
            return None
        with self._data_lock:
            return next((a for a in self.accounts.values() if a.verify_key == key), None)

    def compare_password(self, account: Optional[Account], plaintext: str) -> bool:
        return compare_account_password(account, plaintext)

    def mark_verified(self, account: Account) -> bool:
        with self._data_lock:
            stored = self.accounts.get(account.id)
            # Key already consumed by a concurrent request
            if not stored or stored.verify_key is None or stored.verify_key != account.verify_key:
                return False
            stored.is_verified = True
            stored.verify_key = None
            account.is_verified = True
            account.verify_key = None
            self._persist_state()
            return True

    def create_pending(
        self, username: str, email: str, password: str, *, is_admin: bool = False
    ) -> Account:
        email = normalize_email(email)
        pwd_hash = hash_password(password)
        with self._data_lock:
            for existing in self.accounts.values():
                if existing.username == username:
                    raise ConstraintViolation("username already exists", {"field": "username"})
                if existing.email == email:
                    raise ConstraintViolation("email already exists", {"field": "email"})
            account = Account(
                id=str(uuid.uuid4()),
                username=username,
                email=email,
                password_hash=pwd_hash,
                is_verified=False,
                verify_key=generate_verify_key(),
                is_admin=is_admin,
            )
            self.accounts[account.id] = account
            self._persist_state()
            return account

    def set_admin(self, account_id: str, is_admin: bool = True) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            account.is_admin = is_admin
            self._persist_state()
            return account

    def ping(self) -> None:
        """Memory store is always reachable."""

    def close(self) -> None:
        """Nothing to flush; every mutation is already persisted."""


class MemoryRevocationStore:
    """Dict-backed revocation store with lazy per-entry expiry.

    Entries are dropped on read once their deadline passes and swept in bulk
    every ``sweep_interval`` seconds of store time.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 60.0,
    ) -> None:
        self._clock = clock
        self._entries: Dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        now = self._clock()
        with self._lock:
            self._entries[key] = (value, now + ttl_seconds)
            self._maybe_sweep(now)

    async def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, deadline = entry
            if deadline <= now:
                self._entries.pop(key, None)
                return None
            return value

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None when absent."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] <= now:
                return None
            return entry[1] - now

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        expired = [k for k, (_, deadline) in self._entries.items() if deadline <= now]
        for key in expired:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def ping(self) -> None:
        """Memory store is always reachable."""

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
