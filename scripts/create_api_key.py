#!/usr/bin/env python3
"""
Issue an API key for POST /orchestrate.

The key acts for one user; the user's full name is also the key the
orchestrator uses to find their behavioral profile. The raw key is printed
once and only its SHA-256 hash is stored.

Usage:
    uv run python scripts/create_api_key.py --name board-portal \
        --email ada@example.com --full-name "Ada Lovelace" --days 90
"""

import argparse
from datetime import UTC, datetime, timedelta

from strategist.db.engine import get_sync_session
from strategist.db.models import ApiKey
from strategist.services.auth import ORCHESTRATE_SCOPE, generate_api_key


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--name", required=True, help="Label, e.g. 'strategy-desk'")
    parser.add_argument("--email", required=True)
    parser.add_argument("--full-name", required=True)
    parser.add_argument("--role", default="user")
    parser.add_argument(
        "--scope", action="append", dest="scopes",
        help=f"Repeatable. Defaults to '{ORCHESTRATE_SCOPE}'",
    )
    parser.add_argument("--days", type=int, help="Expire after N days")
    args = parser.parse_args()

    raw_key, key_prefix, key_hash = generate_api_key()
    expires_at = (
        datetime.now(UTC) + timedelta(days=args.days) if args.days else None
    )

    with get_sync_session() as session:
        session.add(ApiKey(
            name=args.name,
            key_prefix=key_prefix,
            key_hash=key_hash,
            user_email=args.email,
            user_full_name=args.full_name,
            user_role=args.role,
            scopes=args.scopes or [ORCHESTRATE_SCOPE],
            expires_at=expires_at,
        ))

    print(f"Created key '{args.name}' ({key_prefix}...) for {args.email}")
    if expires_at:
        print(f"Expires: {expires_at.isoformat()}")
    print(f"\n  {raw_key}\n")
    print("Store it now; it cannot be shown again.")


if __name__ == "__main__":
    main()
