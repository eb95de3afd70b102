#!/usr/bin/env python3
"""
Apply SQL migration files to the database, in name order.

Usage:
    python scripts/run_migration.py                      # every file in backend/migrations
    python scripts/run_migration.py backend/migrations/001_initial_schema.sql
"""
import sys
import asyncio
from pathlib import Path
from typing import List

import asyncpg

# Add backend to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from config import get_database_url  # noqa: E402  (loads backend/.env)

MIGRATIONS_DIR = backend_dir / 'migrations'


def resolve_migration_files(args: List[str]) -> List[Path]:
    if args:
        return [Path(a) for a in args]
    return sorted(MIGRATIONS_DIR.glob('*.sql'))


async def run_migrations(migration_files: List[Path]):
    database_url = get_database_url()
    if not database_url:
        print("❌ ERROR: DATABASE_URL not found in environment")
        sys.exit(1)

    missing = [str(p) for p in migration_files if not p.exists()]
    if missing:
        print(f"❌ ERROR: Migration file not found: {', '.join(missing)}")
        sys.exit(1)

    # Disable prepared statement cache for pgbouncer compatibility
    conn = await asyncpg.connect(database_url, statement_cache_size=0)
    try:
        print("✓ Connected to database")
        for migration_path in migration_files:
            print(f"Running migration: {migration_path.name}")
            async with conn.transaction():
                await conn.execute(migration_path.read_text())
            print(f"✓ {migration_path.name} applied")
    except asyncpg.PostgresError as e:
        print(f"❌ Error: {type(e).__name__}: {e}")
        sys.exit(1)
    finally:
        await conn.close()


if __name__ == "__main__":
    files = resolve_migration_files(sys.argv[1:])
    if not files:
        print(f"No migration files found in {MIGRATIONS_DIR}")
        sys.exit(1)
    asyncio.run(run_migrations(files))
