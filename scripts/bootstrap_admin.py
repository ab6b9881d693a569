#!/usr/bin/env python3
"""Create a verified admin account for initial setup.

Usage:
    ADMIN_USERNAME=admin ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=Secure123! \
        python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --username admin --email admin@example.com --password Secure123!

Environment Variables:
    ADMIN_USERNAME: Username for the admin account (4-20 characters)
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account (8-20 characters)
    DATABASE_URL: PostgreSQL connection string (memory store is used if unset)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def bootstrap_admin(username: str, email: str, password: str, dry_run: bool = False, store=None) -> dict:
    """Create, promote or leave alone the named admin account.

    Returns a dict with ``user_id``, ``username`` and a ``status`` of
    ``created``, ``promoted``, ``already_admin`` or ``dry_run``.
    """
    # Deferred so env defaults from main() apply before settings load
    from authcore.service.auth import check_password, check_username

    if store is None:
        from authcore.service.runtime import get_runtime

        store = get_runtime().store

    username = check_username(username)
    password = check_password(password)
    existing = store.find_by_username_or_email(username, email)
    if existing:
        if existing.username != username:
            raise ValueError(f"email {email} belongs to another account")
        if existing.is_admin and existing.is_verified:
            return {"user_id": existing.id, "username": username, "status": "already_admin"}
        if dry_run:
            return {"user_id": existing.id, "username": username, "status": "dry_run"}
        if not existing.is_verified:
            store.mark_verified(existing)
        store.set_admin(existing.id, True)
        return {"user_id": existing.id, "username": username, "status": "promoted"}

    if dry_run:
        return {"user_id": None, "username": username, "status": "dry_run"}

    account = store.create_pending(username, email, password)
    store.mark_verified(account)
    store.set_admin(account.id, True)
    return {"user_id": account.id, "username": username, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for authcore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--username", default=os.environ.get("ADMIN_USERNAME"))
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    for name in ("username", "email", "password"):
        if not getattr(args, name):
            print(f"Error: --{name} or ADMIN_{name.upper()} environment variable required")
            sys.exit(1)

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/authcore-bootstrap"
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    # Revocation storage is irrelevant here
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = bootstrap_admin(args.username, args.email, args.password, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    messages = {
        "created": "Admin account created",
        "promoted": "Existing account promoted to admin",
        "already_admin": "No changes needed - account is already an admin",
        "dry_run": "[DRY RUN] No changes made",
    }
    print(f"{messages[result['status']]}: {result['username']} (id: {result['user_id']})")


if __name__ == "__main__":
    main()
