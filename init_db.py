"""Initialize the staging database schema.

Creates all tables needed by the ingestion pipeline and seeds the
institution. Run this before the first batch.
"""

import argparse
import asyncio
import sys

from etl.config import get_settings
from etl.db import StagingStore, make_engine
from etl.models import Base
from etl.pipelines.resolver import EntityKeyResolver


async def init_database(reset: bool = False):
    """Create all staging tables and the institution row."""
    settings = get_settings()
    staging = StagingStore(make_engine(settings.staging_db))
    url = settings.staging_db.url
    print(f"Initializing staging database: {url.split('@')[-1] if '@' in url else url}")

    try:
        await staging.ping()
        if reset:
            await staging.drop_schema()
            print("✓ Dropped existing tables")

        await staging.create_schema()
        if staging.dialect == "postgresql":
            print("✓ Enabled pgvector extension")
        print("✓ Created all tables")

        resolved = await EntityKeyResolver(staging).resolve_institution(
            settings.institution.name,
            settings.institution.slug,
        )
        state = "exists" if resolved.existing else "created"
        print(f"✓ Institution {settings.institution.slug} ({state}, id={resolved.id})")
    finally:
        await staging.dispose()

    print("\n✅ Database initialization complete!")
    print(f"Tables: {', '.join(Base.metadata.tables.keys())}")


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--reset", action="store_true", help="drop existing tables first")
    args = parser.parse_args()
    try:
        await init_database(reset=args.reset)
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
