#!/usr/bin/env python3
"""Initialize the PostGIS schema for the searchable provider read model."""

import asyncio

from provider_search.common.config import BaseConfig
from provider_search.provider_store.postgis import PostGisProviderRepository, TABLE


async def init_database():
    """Create the PostGIS extension, schema, table and indexes."""
    config = BaseConfig()

    print(f"Initializing provider search schema ({TABLE})")

    store = PostGisProviderRepository(
        dsn=config.search_db_dsn,
        pool_size=1,
        command_timeout=config.search_db_command_timeout,
    )

    try:
        await store.ensure_schema()
        print("✓ postgis extension enabled")
        print(f"✓ {TABLE} table and indexes created")

        if await store.health_check():
            print("✓ connection verified")

        print("Database initialization completed successfully!")

    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(init_database())
