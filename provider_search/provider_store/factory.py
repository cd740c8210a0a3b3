"""Provider store factory.

Centralizes creation of concrete ``SearchableProviderRepository`` backends so
the worker and the query side don't depend on implementation details.
"""

from typing import Any, Dict, Optional
from enum import Enum
import structlog

from ..common.config import BaseConfig, config_to_env
from ..common.metrics import MetricsCollector
from .base import SearchableProviderRepository
from .cached import CachedProviderRepository
from .memory import InMemoryProviderRepository
from .postgis import PostGisProviderRepository

logger = structlog.get_logger("provider_store.factory")


class ProviderStoreType(Enum):
    """Supported provider store types."""
    MEMORY = "memory"
    POSTGIS = "postgis"


class ProviderStoreFactory:
    """Factory for creating provider store instances."""

    @staticmethod
    def create(
        store_type: ProviderStoreType,
        config: Dict[str, Any],
        **kwargs: Any
    ) -> SearchableProviderRepository:
        """Create a provider store instance.

        Parameters
        - store_type: A ``ProviderStoreType`` enum value
        - config: Backend-specific parameters (e.g., DSN for PostGIS)
        - kwargs: Additional optional overrides forwarded to implementation
        """
        if store_type == ProviderStoreType.POSTGIS:
            dsn = config.get("dsn")
            if not dsn:
                raise ValueError("PostGIS requires 'dsn' in config")

            return PostGisProviderRepository(
                dsn=dsn,
                pool_size=config.get("pool_size", 10),
                max_queries=config.get("max_queries", 50000),
                command_timeout=config.get("command_timeout", 30),
                **kwargs
            )

        elif store_type == ProviderStoreType.MEMORY:
            return InMemoryProviderRepository(**kwargs)

        else:
            raise ValueError(f"Unsupported provider store type: {store_type}")

    @staticmethod
    def create_from_config(config: Dict[str, Any], **kwargs: Any) -> SearchableProviderRepository:
        """Create provider store from configuration dictionary.

        Expects a ``type`` key and any implementation-specific fields.
        """
        store_type_str = config.get("type", "postgis")

        try:
            store_type = ProviderStoreType(store_type_str)
        except ValueError:
            raise ValueError(f"Unsupported provider store type: {store_type_str}")

        return ProviderStoreFactory.create(store_type, config, **kwargs)


def create_provider_store_from_env(
    env_config: Dict[str, str],
    metrics: Optional[MetricsCollector] = None,
) -> SearchableProviderRepository:
    """Create provider store from environment configuration.

    Parameters
    - env_config: A flat mapping of environment variable names to values
    - metrics: Optional collector shared by the store and its cache

    Returns
    - A ``SearchableProviderRepository``, wrapped in a Redis result cache
      when ``SEARCH_CACHE_ENABLED`` is true
    """
    backend = env_config.get("SEARCH_STORE_BACKEND", "postgis")
    cache_enabled = env_config.get("SEARCH_CACHE_ENABLED", "false").lower() == "true"

    if backend == "postgis":
        config = {
            "type": "postgis",
            "dsn": env_config.get("SEARCH_DB_DSN"),
            "pool_size": int(env_config.get("SEARCH_DB_POOL_SIZE", "10")),
            "command_timeout": int(env_config.get("SEARCH_DB_COMMAND_TIMEOUT", "30")),
        }
        if not config["dsn"]:
            raise ValueError("SEARCH_DB_DSN environment variable is required")
    elif backend == "memory":
        config = {"type": "memory"}
    else:
        raise ValueError(f"Unsupported provider store backend: {backend}")

    store = ProviderStoreFactory.create_from_config(config, metrics=metrics)
    logger.info("Provider store created", backend=store.backend_name, cache_enabled=cache_enabled)

    if cache_enabled:
        return CachedProviderRepository(
            inner=store,
            redis_url=env_config.get("SEARCH_REDIS_URL", "redis://localhost:6379"),
            ttl_seconds=int(env_config.get("SEARCH_CACHE_TTL_SECONDS", "300")),
            metrics=metrics,
        )

    return store


def create_provider_store(
    config: BaseConfig,
    metrics: Optional[MetricsCollector] = None,
) -> SearchableProviderRepository:
    """Create the provider store described by a service config."""
    return create_provider_store_from_env(config_to_env(config), metrics=metrics)
