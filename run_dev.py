#!/usr/bin/env python3
"""Run Ledgerly in development mode with a seeded user."""

import os
import subprocess
import sys
from pathlib import Path

DEV_USER_ID = "dev-user"


def setup_dev_database():
    """Create tables and seed the development user if needed."""
    from src.ledgerly.core.config import AppConfig
    from src.ledgerly.core.database import DatabaseManager

    config = AppConfig()
    config.ensure_dirs()
    db_manager = DatabaseManager(config)

    db_manager.create_tables()

    created = db_manager.seed_user_defaults(DEV_USER_ID)
    if created:
        print(f"✅ Seeded {created} default rows for user '{DEV_USER_ID}'")
    else:
        print(f"✅ User '{DEV_USER_ID}' already has an account and categories")


def main():
    """Run Ledgerly in development mode."""
    # Set development environment
    os.environ.setdefault("LEDGERLY_DB_URL", "sqlite:///data/ledgerly_dev.db")
    os.environ.setdefault("LEDGERLY_DEV_PORT", "8001")
    os.environ.setdefault("LEDGERLY_HOST", "0.0.0.0")

    app_dir = Path(__file__).parent

    print("Starting Ledgerly in DEVELOPMENT mode (FastAPI)")
    print(f"📊 Database: {os.environ['LEDGERLY_DB_URL']}")
    if not os.environ.get("OPENROUTER_API_KEY"):
        print("⚠️  OPENROUTER_API_KEY is not set, AI category suggestions are disabled")

    setup_dev_database()

    port = os.environ["LEDGERLY_DEV_PORT"]
    host = os.environ["LEDGERLY_HOST"]
    print(f"📚 API docs available at: http://localhost:{port}/docs")
    print(f"🔑 Send 'X-User-Id: {DEV_USER_ID}' with API requests")
    print("-" * 50)

    try:
        subprocess.run(
            [
                sys.executable, "-m", "uvicorn", "main:create_app", "--factory",
                "--reload", "--host", host, "--port", port,
            ],
            cwd=app_dir,
        )
    except KeyboardInterrupt:
        print("\n👋 Ledgerly development mode stopped.")


if __name__ == "__main__":
    main()
