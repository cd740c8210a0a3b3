#!/usr/bin/env python3
"""Rebuild the search read model by replaying a provider snapshot.

Reads a JSON-lines file with one searchable provider per line and publishes a
became-searchable event for each. The projection worker upserts, so running
the backfill twice is harmless.
"""

import argparse
import json
import sys
from typing import IO, Iterator, Optional, Tuple
import structlog

from provider_search.common.config import BaseConfig
from provider_search.common.events import (
    EventPublisher,
    EventType,
    ProviderBecameSearchable,
    create_event_publisher,
    parse_event,
)
from provider_search.common.logging import configure_logging

logger = structlog.get_logger("backfill_providers")


def read_snapshot(stream: IO[str]) -> Iterator[Tuple[int, ProviderBecameSearchable]]:
    """Yield ``(line_number, event)`` for every valid snapshot line.

    Blank lines are skipped; invalid lines are logged and skipped.
    """
    for line_number, line in enumerate(stream, start=1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
            event = parse_event(EventType.PROVIDER_BECAME_SEARCHABLE.value, payload)
        except (ValueError, TypeError) as e:
            logger.warning("Skipping invalid snapshot line", line=line_number, error=str(e))
            continue
        yield line_number, event


def backfill_providers(
    stream: IO[str],
    publisher: EventPublisher,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> int:
    """Publish became-searchable events; returns how many were published."""
    published = 0
    for line_number, event in read_snapshot(stream):
        if limit is not None and published >= limit:
            break
        if not dry_run:
            publisher.publish(event)
        published += 1
        logger.debug("Provider queued for indexing", line=line_number, provider_id=event.provider_id)

    logger.info("Backfill finished", published=published, dry_run=dry_run)
    return published


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Publish became-searchable events from a provider snapshot")
    parser.add_argument("--input", required=True, help="JSON-lines snapshot file ('-' for stdin)")
    parser.add_argument("--limit", type=int, default=None, help="Publish at most this many providers")
    parser.add_argument("--dry-run", action="store_true", help="Validate the snapshot without publishing")

    args = parser.parse_args()

    configure_logging("backfill_providers", "INFO", "json")

    config = BaseConfig()
    publisher = create_event_publisher(config.search_redis_url, config.search_event_channel_prefix)

    try:
        if args.input == "-":
            count = backfill_providers(sys.stdin, publisher, args.limit, args.dry_run)
        else:
            with open(args.input, encoding="utf-8") as stream:
                count = backfill_providers(stream, publisher, args.limit, args.dry_run)
    except Exception as e:
        logger.error("Backfill failed", error=str(e))
        print(f"Failed to backfill providers from {args.input}")
        sys.exit(1)
    finally:
        publisher.close()

    print(f"Published {count} provider events from {args.input}")
    sys.exit(0)


if __name__ == "__main__":
    main()
