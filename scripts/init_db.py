#!/usr/bin/env python3
"""
Create the reconciliation agent's tables.

Run with: python scripts/init_db.py

Existing tables (orders, charges owned by the storefront) are left as they are.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from reconciliation_agent.core.config import load_settings  # noqa: E402
from reconciliation_agent.db import create_db_and_tables, create_engine_for_url  # noqa: E402


async def main() -> int:
    settings = load_settings()
    engine = create_engine_for_url(settings.DATABASE_URL)
    print("Creating reconciliation tables...")
    try:
        await create_db_and_tables(engine)
        print("Tables created successfully!")
        return 0
    except Exception as e:
        print(f"Error creating tables: {e}")
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
