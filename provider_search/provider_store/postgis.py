"""PostGIS implementation of the provider store.

Providers live in ``search_providers.searchable_providers`` with a
``geography(Point, 4326)`` column under a GIST index. ``ST_DWithin`` on the
geography column narrows candidates through the index; the exact, strict radius
test and the distance ordering use ``ST_DistanceSphere`` so results agree with
``provider_search.domain.geo.distance_km``.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Connectivity failures surface as ``StorageUnavailableError``; other
  statement failures as ``ProviderStoreQueryError``
- The page and count queries of one search share a read-only REPEATABLE READ
  transaction, so both see the same snapshot
"""

import asyncio
from typing import Any, List, Optional, Tuple

import asyncpg
from asyncpg import Pool
from asyncpg import exceptions as pg_exceptions
import structlog

from ..common.metrics import MetricsCollector
from ..domain.geo import GeoPoint
from ..domain.models import (
    SearchableProvider,
    SearchableProviderId,
    SearchQuery,
    SearchResult,
    SubscriptionTier,
)
from .base import (
    SearchableProviderRepository,
    ProviderStoreError,
    ProviderStoreQueryError,
    StorageUnavailableError,
)

logger = structlog.get_logger("provider_store.postgis")

TABLE = "search_providers.searchable_providers"

# Geography ST_DWithin measures on the spheroid; widen it so the index
# prefilter never drops a row the sphere distance would keep.
PREFILTER_SLACK = 1.01

_CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    pg_exceptions.PostgresConnectionError,
    pg_exceptions.InterfaceError,
    pg_exceptions.CannotConnectNowError,
    pg_exceptions.TooManyConnectionsError,
)

SCHEMA_SQL = f"""
CREATE EXTENSION IF NOT EXISTS postgis;

CREATE SCHEMA IF NOT EXISTS search_providers;

CREATE TABLE IF NOT EXISTS {TABLE} (
    id                UUID PRIMARY KEY,
    name              VARCHAR(200) NOT NULL,
    description       TEXT,
    location          GEOGRAPHY(POINT, 4326) NOT NULL,
    average_rating    DOUBLE PRECISION NOT NULL DEFAULT 0,
    total_reviews     INTEGER NOT NULL DEFAULT 0,
    subscription_tier SMALLINT NOT NULL DEFAULT 0,
    service_ids       UUID[] NOT NULL DEFAULT '{{}}',
    city              VARCHAR(100),
    state             VARCHAR(50),
    is_active         BOOLEAN NOT NULL DEFAULT TRUE,
    created_at        TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at        TIMESTAMP WITH TIME ZONE
);

CREATE INDEX IF NOT EXISTS ix_searchable_providers_location
    ON {TABLE} USING GIST (location);
CREATE INDEX IF NOT EXISTS ix_searchable_providers_service_ids
    ON {TABLE} USING GIN (service_ids);
CREATE INDEX IF NOT EXISTS ix_searchable_providers_ranking
    ON {TABLE} (subscription_tier DESC, average_rating DESC);
"""

_COLUMNS = """
    id, name, description,
    ST_Y(location::geometry) AS latitude,
    ST_X(location::geometry) AS longitude,
    average_rating, total_reviews, subscription_tier, service_ids,
    city, state, is_active, created_at, updated_at
"""

_UPSERT_SQL = f"""
    INSERT INTO {TABLE} (
        id, name, description, location, average_rating, total_reviews,
        subscription_tier, service_ids, city, state, is_active, created_at, updated_at
    )
    VALUES (
        $1, $2, $3, ST_SetSRID(ST_MakePoint($5, $4), 4326)::geography, $6, $7,
        $8, $9::uuid[], $10, $11, $12, $13, $14
    )
    ON CONFLICT (id) DO UPDATE SET
        name = EXCLUDED.name,
        description = EXCLUDED.description,
        location = EXCLUDED.location,
        average_rating = EXCLUDED.average_rating,
        total_reviews = EXCLUDED.total_reviews,
        subscription_tier = EXCLUDED.subscription_tier,
        service_ids = EXCLUDED.service_ids,
        city = EXCLUDED.city,
        state = EXCLUDED.state,
        is_active = EXCLUDED.is_active,
        updated_at = CURRENT_TIMESTAMP
"""

_UPDATE_SQL = f"""
    UPDATE {TABLE} SET
        name = $2,
        description = $3,
        location = ST_SetSRID(ST_MakePoint($5, $4), 4326)::geography,
        average_rating = $6,
        total_reviews = $7,
        subscription_tier = $8,
        service_ids = $9::uuid[],
        city = $10,
        state = $11,
        is_active = $12,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = $1
"""

_DELETE_SQL = f"DELETE FROM {TABLE} WHERE id = $1"


def to_ilike_pattern(term: Optional[str]) -> Optional[str]:
    """Escape LIKE wildcards in ``term`` and wrap it for a substring match."""
    if term is None or not term.strip():
        return None
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def build_search_sql(query: SearchQuery) -> Tuple[str, str, List[Any]]:
    """Build the page SQL, the count SQL and the shared positional arguments.

    The page SQL takes two extra trailing arguments: ``skip`` and ``take``.
    """
    args: List[Any] = [
        query.origin.longitude,
        query.origin.latitude,
        float(query.radius_km) * 1000.0 * PREFILTER_SLACK,
        float(query.radius_km),
    ]
    filters: List[str] = []

    pattern = to_ilike_pattern(query.normalized_term)
    if pattern is not None:
        args.append(pattern)
        filters.append(f"AND name ILIKE ${len(args)} ESCAPE '\\'")

    if query.service_ids:
        args.append(sorted(query.service_ids))
        filters.append(f"AND service_ids && ${len(args)}::uuid[]")

    if query.min_rating is not None:
        args.append(float(query.min_rating))
        filters.append(f"AND average_rating >= ${len(args)}")

    if query.subscription_tiers:
        args.append(sorted(int(t) for t in query.subscription_tiers))
        filters.append(f"AND subscription_tier = ANY(${len(args)}::smallint[])")

    matches_cte = f"""
        WITH matches AS (
            SELECT {_COLUMNS},
                   ST_DistanceSphere(
                       location::geometry,
                       ST_SetSRID(ST_MakePoint($1, $2), 4326)
                   ) / 1000.0 AS distance_km
            FROM {TABLE}
            WHERE is_active = true
              AND ST_DWithin(location, ST_SetSRID(ST_MakePoint($1, $2), 4326)::geography, $3)
              {' '.join(filters)}
        )
    """

    page_sql = f"""
        {matches_cte}
        SELECT * FROM matches
        WHERE distance_km < $4
        ORDER BY subscription_tier DESC, average_rating DESC, distance_km ASC, id ASC
        OFFSET ${len(args) + 1} LIMIT ${len(args) + 2}
    """

    count_sql = f"""
        {matches_cte}
        SELECT COUNT(*) FROM matches WHERE distance_km < $4
    """

    return page_sql, count_sql, args


def _row_to_provider(row: Any) -> SearchableProvider:
    return SearchableProvider(
        id=SearchableProviderId.of(row["id"]),
        name=row["name"],
        location=GeoPoint(row["latitude"], row["longitude"]),
        subscription_tier=SubscriptionTier(row["subscription_tier"]),
        rating=float(row["average_rating"]),
        total_reviews=int(row["total_reviews"]),
        service_ids=frozenset(row["service_ids"] or ()),
        description=row["description"],
        city=row["city"],
        state=row["state"],
        is_active=row["is_active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _write_args(provider: SearchableProvider) -> List[Any]:
    return [
        provider.id.value,
        provider.name,
        provider.description,
        provider.location.latitude,
        provider.location.longitude,
        provider.rating,
        provider.total_reviews,
        int(provider.subscription_tier),
        sorted(provider.service_ids),
        provider.city,
        provider.state,
        provider.is_active,
    ]


class PostGisProviderRepository(SearchableProviderRepository):
    """PostGIS-backed provider store."""

    backend_name = "postgis"

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        max_queries: int = 50000,
        command_timeout: int = 30,
        metrics: Optional[MetricsCollector] = None,
    ):
        """Configure a PostGIS-backed provider store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - max_queries: Queries per connection before recycling
        - command_timeout: Seconds to allow per DB command
        - metrics: Optional collector for store operation counts
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.max_queries = max_queries
        self.command_timeout = command_timeout
        self.metrics = metrics
        self._pool: Optional[Pool] = None
        self._pending: List[Tuple[str, SearchableProvider]] = []

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    max_queries=self.max_queries,
                    command_timeout=self.command_timeout,
                )
                logger.info("Created PostGIS connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create PostGIS connection pool", error=str(e))
                raise StorageUnavailableError(f"Failed to create connection pool: {e}") from e

        return self._pool

    def _record(self, operation: str) -> None:
        if self.metrics:
            self.metrics.record_store_operation(operation, self.backend_name)

    def _wrap_error(self, operation: str, error: Exception) -> ProviderStoreError:
        if isinstance(error, ProviderStoreError):
            return error
        if isinstance(error, _CONNECTION_ERRORS):
            logger.error("PostGIS unavailable", operation=operation, error=str(error))
            return StorageUnavailableError(f"{operation} failed: {error}")
        logger.error("PostGIS statement failed", operation=operation, error=str(error))
        return ProviderStoreQueryError(f"{operation} failed: {error}")

    async def ensure_schema(self) -> None:
        """Create the PostGIS extension, schema, table and indexes."""
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
            logger.info("Provider search schema ensured", table=TABLE)
        except Exception as e:
            raise self._wrap_error("ensure_schema", e) from e

    async def get_by_id(self, provider_id: SearchableProviderId) -> Optional[SearchableProvider]:
        """Get a committed provider."""
        self._record("get_by_id")
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM {TABLE} WHERE id = $1",
                    SearchableProviderId.of(provider_id).value,
                )
        except Exception as e:
            raise self._wrap_error("get_by_id", e) from e

        return _row_to_provider(row) if row else None

    async def search(self, query: SearchQuery) -> SearchResult:
        """Filter, rank and page providers inside one snapshot."""
        self._record("search")
        if query.radius_km <= 0:
            return SearchResult.empty()

        page_sql, count_sql, args = build_search_sql(query)

        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction(isolation="repeatable_read", readonly=True):
                    rows = await conn.fetch(page_sql, *args, query.skip, query.take)
                    total_count = await conn.fetchval(count_sql, *args)
        except Exception as e:
            raise self._wrap_error("search", e) from e

        logger.info(
            "PostGIS search completed",
            radius_km=query.radius_km,
            total_count=total_count,
            returned=len(rows)
        )

        return SearchResult(
            providers=[_row_to_provider(row) for row in rows],
            total_count=int(total_count or 0),
            distances_km=[float(row["distance_km"]) for row in rows],
        )

    async def add(self, provider: SearchableProvider) -> None:
        self._pending.append(("add", provider))

    async def update(self, provider: SearchableProvider) -> None:
        self._pending.append(("update", provider))

    async def delete(self, provider: SearchableProvider) -> None:
        self._pending.append(("delete", provider))

    async def save_changes(self) -> int:
        """Apply staged operations in one transaction.

        Staged operations are discarded whether the commit succeeds or not;
        a failed or cancelled commit rolls back and leaves the table unchanged.
        """
        pending, self._pending = self._pending, []
        if not pending:
            return 0

        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    for operation, provider in pending:
                        if operation == "add":
                            await conn.execute(
                                _UPSERT_SQL,
                                *_write_args(provider),
                                provider.created_at,
                                provider.updated_at,
                            )
                        elif operation == "update":
                            await conn.execute(_UPDATE_SQL, *_write_args(provider))
                        elif operation == "delete":
                            await conn.execute(_DELETE_SQL, provider.id.value)
        except Exception as e:
            raise self._wrap_error("save_changes", e) from e

        for _, provider in pending:
            provider.is_dirty = False

        self._record("save_changes")
        logger.info("PostGIS changes committed", operations=len(pending))
        return len(pending)

    async def health_check(self) -> bool:
        """Check if the database is reachable."""
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PostGIS connection pool")
