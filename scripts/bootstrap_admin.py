#!/usr/bin/env python3
"""Create or promote an ADMIN principal.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='Secure-Passw0rd' python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password 'Secure-Passw0rd'

Environment Variables:
    ADMIN_EMAIL: Email for the admin principal
    ADMIN_PASSWORD: Password for the admin principal
    ADMIN_NAME: Optional display name
    DATABASE_URL: PostgreSQL connection string (the memory store is used if unset)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_PASSWORD_LENGTH = 12


def validate_password(password: str) -> bool:
    """At least twelve characters drawn from three or more character classes."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return False
    classes = [
        any(c.isupper() for c in password),
        any(c.islower() for c in password),
        any(c.isdigit() for c in password),
        any(not c.isalnum() for c in password),
    ]
    return sum(classes) >= 3


async def bootstrap_admin(
    email: str, password: str, *, name: str | None = None, dry_run: bool = False
) -> dict:
    # config is read only after main() has filled in the environment
    from viureview.config import Settings
    from viureview.service.runtime import Runtime
    from viureview.storage.models import Role

    email = email.strip().lower()
    runtime = Runtime(Settings.from_env())
    try:
        existing = runtime.store.get_user_by_email(email)
        if existing:
            if existing.role == Role.ADMIN.value:
                return {"user_id": existing.id, "email": email, "status": "already_admin"}
            if dry_run:
                return {"user_id": existing.id, "email": email, "status": "dry_run"}
            runtime.store.update_user_role(existing.id, Role.ADMIN.value)
            await runtime.auth.set_password(existing.id, password)
            return {"user_id": existing.id, "email": email, "status": "promoted"}

        if dry_run:
            return {"user_id": None, "email": email, "status": "dry_run"}
        user = runtime.store.create_user(email, name, role=Role.ADMIN.value)
        await runtime.auth.set_password(user.id, password)
        return {"user_id": user.id, "email": email, "status": "created"}
    finally:
        await runtime.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin principal for the VIU review API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD)",
    )
    parser.add_argument("--name", default=os.environ.get("ADMIN_NAME"), help="Display name")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)
    if not validate_password(args.password):
        print(f"Error: password must be at least {MIN_PASSWORD_LENGTH} characters")
        print("       with 3+ character classes (upper, lower, digits, symbols)")
        sys.exit(1)

    os.environ.setdefault("SHARED_FS_ROOT", "/tmp/viureview-bootstrap")
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: using the memory store (set DATABASE_URL for persistence)")
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(
            bootstrap_admin(args.email, args.password, name=args.name, dry_run=args.dry_run)
        )
    except Exception as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    status = result["status"]
    if status == "created":
        print(f"Created admin {result['email']} (id: {result['user_id']})")
    elif status == "promoted":
        print(f"Promoted {result['email']} to admin (id: {result['user_id']})")
    elif status == "already_admin":
        print(f"{result['email']} is already an admin; nothing to do")
    else:
        print(f"[DRY RUN] would create or promote {result['email']}")


if __name__ == "__main__":
    main()
