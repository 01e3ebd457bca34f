#!/usr/bin/env python3
"""Bootstrap an admin member for initial setup.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_NICKNAME=admin ADMIN_PASSWORD=SecurePassword123! \
        python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@example.com --nickname admin \
        --password SecurePassword123!

Environment Variables:
    ADMIN_EMAIL: Email for the admin member
    ADMIN_NICKNAME: Nickname for the admin member (default: admin)
    ADMIN_PASSWORD: Password for the admin member (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_admin_password(password: str) -> bool:
    """Admin passwords need 12+ characters from at least three character classes."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


async def bootstrap_admin(
    email: str, nickname: str, password: str, dry_run: bool = False
) -> dict:
    """Create an admin member or promote the existing one.

    Returns:
        dict with account_id, email, and status
        ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Import here so the environment is configured before settings load
    from blur.service.runtime import get_runtime
    from blur.service.validation import SignupData
    from blur.storage.models import Role

    runtime = get_runtime()
    normalized = email.strip().lower()
    existing = runtime.store.get_account_by_email(normalized)

    if existing:
        if existing.role == Role.ADMIN:
            print(f"Member {normalized} already exists as admin (id: {existing.id})")
            return {"account_id": existing.id, "email": normalized, "status": "already_admin"}

        if dry_run:
            print(f"[DRY RUN] Would promote existing member {normalized} to admin")
            return {"account_id": existing.id, "email": normalized, "status": "dry_run"}

        await runtime.auth.set_account_role(existing.id, Role.ADMIN)
        print(f"Promoted existing member {normalized} to admin (id: {existing.id})")
        return {"account_id": existing.id, "email": normalized, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin member: {normalized}")
        return {"account_id": None, "email": normalized, "status": "dry_run"}

    await runtime.auth.create_account(
        SignupData(email=email, nickname=nickname, password=password)
    )
    account = runtime.store.get_account_by_email(normalized)
    await runtime.auth.set_account_role(account.id, Role.ADMIN)
    print(f"Created admin member: {normalized} (id: {account.id})")
    return {"account_id": account.id, "email": normalized, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin member for Blur",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--nickname",
        default=os.environ.get("ADMIN_NICKNAME", "admin"),
        help="Admin nickname (or set ADMIN_NICKNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
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

    if not validate_admin_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if not os.environ.get("JWT_SECRET"):
        os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/blur-bootstrap"

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    from blur.service.errors import ServiceError

    try:
        result = asyncio.run(
            bootstrap_admin(args.email, args.nickname, args.password, args.dry_run)
        )
    except ServiceError as e:
        print(f"Error: {e.message} ({e.detail.get('reason')})")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin member created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  Account ID: {result['account_id']}")
    elif result["status"] == "promoted":
        print("\nExisting member promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - member is already an admin.")


if __name__ == "__main__":
    main()
