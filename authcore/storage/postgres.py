from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from authcore.logging import get_logger
from authcore.storage.common import (
    compare_account_password,
    generate_verify_key,
    hash_password,
    normalize_email,
)
from authcore.storage.errors import ConstraintViolation, StoreUnavailable
from authcore.storage.models import Account

_ACCOUNT_COLUMNS = (
    "id, username, email, password_hash, is_verified, verify_key, is_admin, created_at"
)


class PostgresAccountStore:
    """Account records in the ``app_user`` table."""

    def __init__(self, dsn: str, *, pool: Any = None, ensure_schema: bool = True) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = pool or ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        if ensure_schema:
            self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[Any]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except (psycopg.OperationalError, PoolTimeout) as exc:
            self.logger.error("account_store_unavailable", error=str(exc))
            raise StoreUnavailable("postgres", "account store unavailable", cause=exc) from exc

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_user (
                    id UUID PRIMARY KEY,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL,
                    password_hash TEXT NOT NULL,
                    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
                    verify_key TEXT,
                    is_admin BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    CONSTRAINT app_user_username_key UNIQUE (username),
                    CONSTRAINT app_user_email_key UNIQUE (email)
                )
                """
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS app_user_verify_key_idx "
                "ON app_user (verify_key) WHERE verify_key IS NOT NULL"
            )

    @staticmethod
    def _row_to_account(row: Optional[dict]) -> Optional[Account]:
        if not row:
            return None
        return Account(
            id=str(row["id"]),
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_verified=bool(row.get("is_verified")),
            verify_key=row.get("verify_key"),
            is_admin=bool(row.get("is_admin")),
            created_at=row["created_at"],
        )

    def find_by_username_or_email(self, username: str, email: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM app_user WHERE username = %s OR email = %s LIMIT 1",
                (username, normalize_email(email)),
            ).fetchone()
        return self._row_to_account(row)

    def find_by_username(self, username: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM app_user WHERE username = %s",
                (username,),
            ).fetchone()
        return self._row_to_account(row)

    def find_by_verify_key(self, key: str) -> Optional[Account]:
        if not key:
            return None
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM app_user WHERE verify_key = %s",
                (key,),
            ).fetchone()
        return self._row_to_account(row)

    def compare_password(self, account: Optional[Account], plaintext: str) -> bool:
        return compare_account_password(account, plaintext)

    def mark_verified(self, account: Account) -> bool:
        if not account.verify_key:
            return False
        # Single statement so two requests with the same key cannot both win
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET is_verified = TRUE, verify_key = NULL "
                "WHERE id = %s AND verify_key = %s RETURNING id",
                (account.id, account.verify_key),
            ).fetchone()
        if not row:
            return False
        account.is_verified = True
        account.verify_key = None
        return True

    def create_pending(
        self, username: str, email: str, password: str, *, is_admin: bool = False
    ) -> Account:
        account = Account(
            id=str(uuid.uuid4()),
            username=username,
            email=normalize_email(email),
            password_hash=hash_password(password),
            is_verified=False,
            verify_key=generate_verify_key(),
            is_admin=is_admin,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO app_user (id, username, email, password_hash, is_verified, "
                    "verify_key, is_admin, created_at) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                    (
                        account.id,
                        account.username,
                        account.email,
                        account.password_hash,
                        account.is_verified,
                        account.verify_key,
                        account.is_admin,
                        account.created_at,
                    ),
                )
        except errors.UniqueViolation as exc:
            constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
            field = "username" if "username" in constraint else "email"
            raise ConstraintViolation(f"{field} already exists", {"field": field}) from exc
        return account

    def set_admin(self, account_id: str, is_admin: bool = True) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE app_user SET is_admin = %s WHERE id = %s RETURNING {_ACCOUNT_COLUMNS}",
                (is_admin, account_id),
            ).fetchone()
        return self._row_to_account(row)

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()
