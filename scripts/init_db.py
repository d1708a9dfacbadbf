#!/usr/bin/env python3
"""Initialize the Ledgerly database."""

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.ledgerly.core.config import AppConfig
from src.ledgerly.core.database import DatabaseManager


def main() -> None:
    """Create tables and optionally seed a user's default account and categories."""
    parser = argparse.ArgumentParser(description="Initialize the Ledgerly database")
    parser.add_argument("--user", help="User id to seed with the default account and categories")
    args = parser.parse_args()

    config = AppConfig()
    config.ensure_dirs()

    db_manager = DatabaseManager(config)

    print("Creating database tables...")
    db_manager.create_tables()

    if args.user:
        print(f"Seeding defaults for user {args.user}...")
        created = db_manager.seed_user_defaults(args.user)
        print(f"Created {created} rows")

    print("Database initialization complete!")


if __name__ == "__main__":
    main()
