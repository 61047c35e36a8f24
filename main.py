#!/usr/bin/env python3
"""
Price Feeds Main Entry Point

Fetches crypto and precious-metal prices through the cached, rate-limited,
retried feed layer and prints the snapshots as JSON.

Usage:
    # Fetch every domain once
    python main.py

    # Single domain, skipping the cache
    python main.py --domain crypto --force

    # Scheduled mode (refreshes at each domain's interval until Ctrl+C)
    python main.py --scheduled

Configuration comes from PRICEFEEDS_* variables, optionally in .env:
    PRICEFEEDS_STORAGE_DIR=./data/cache
    PRICEFEEDS_CRYPTO_REFRESH_INTERVAL=120
    PRICEFEEDS_LOG_LEVEL=INFO
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime

from dotenv import load_dotenv

load_dotenv()

from pricefeeds import FeedContext, FeedSnapshot, FeedsConfig
from pricefeeds.core.observability import setup_logging
from pricefeeds.data_sources.crypto import CRYPTO_DOMAIN_KEY
from pricefeeds.data_sources.metals import METALS_DOMAIN_KEY

DOMAIN_KEYS = {
    "crypto": CRYPTO_DOMAIN_KEY,
    "metals": METALS_DOMAIN_KEY,
}


def format_snapshot(snapshot: FeedSnapshot) -> str:
    """Render a snapshot as indented JSON."""
    data = snapshot.to_dict()
    data["from_cache"] = snapshot.from_cache
    if snapshot.last_updated is not None:
        data["last_updated"] = datetime.fromtimestamp(snapshot.last_updated).isoformat()
    return json.dumps(data, indent=2)


def print_status(snapshot: FeedSnapshot) -> None:
    source = "cache" if snapshot.from_cache else "network"
    print(
        f"[{snapshot.domain}] {snapshot.health_status.value.upper()} "
        f"({snapshot.valid_fields}/{snapshot.requested_fields} fields, from {source})"
    )
    if snapshot.error:
        print(f"   error: {snapshot.error}")


async def run_once(config: FeedsConfig, domain: str = None, force: bool = False):
    """Fetch once and print the snapshots"""
    async with FeedContext(config) as feeds:
        domain_key = DOMAIN_KEYS[domain] if domain else None
        if force:
            snapshots = await feeds.refetch(domain_key, force=True)
        elif domain_key:
            snapshots = {domain_key: await feeds.get(domain_key)}
        else:
            snapshots = await feeds.get_all()

        for snapshot in snapshots.values():
            print_status(snapshot)
            print(format_snapshot(snapshot))


async def run_scheduled(config: FeedsConfig, domain: str = None):
    """Refresh until interrupted, printing every new snapshot"""
    async with FeedContext(config) as feeds:
        keys = [DOMAIN_KEYS[domain]] if domain else list(feeds.orchestrators)
        for key in keys:
            feeds.subscribe(key, print_status)
            orchestrator = feeds.orchestrator(key)
            print(
                f"⏰ {orchestrator.domain.name}: every "
                f"{orchestrator.domain.settings.refresh_interval:.0f}s"
            )

        feeds.start(keys)
        # Runs until cancelled (Ctrl+C)
        await asyncio.Event().wait()


def clear_cache(config: FeedsConfig) -> None:
    feeds = FeedContext(config)
    removed = feeds.clear_cache()
    feeds.http_client.close()
    print(f"🗑️  Cleared {removed} cache entries and the stored snapshot")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Resilient crypto and metals price feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                          # Fetch all domains once
  python main.py --domain metals          # Fetch a single domain
  python main.py --force                  # Skip the cache
  python main.py --scheduled              # Poll until Ctrl+C
  python main.py --clear-cache            # Drop cached and stored prices
        """
    )

    parser.add_argument(
        "--domain", "-d",
        choices=sorted(DOMAIN_KEYS),
        help="Only fetch this domain"
    )
    parser.add_argument(
        "--scheduled", "-s",
        action="store_true",
        help="Run in scheduled mode (at each domain's refresh interval)"
    )
    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Ignore cached prices and fetch from the network"
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Clear the cache and the stored snapshot, then exit"
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: PRICEFEEDS_LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()

    try:
        config = FeedsConfig.from_env()
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(args.log_level or config.log_level, config.log_dir)

    if args.clear_cache:
        clear_cache(config)
        sys.exit(0)

    try:
        if args.scheduled:
            asyncio.run(run_scheduled(config, args.domain))
        else:
            asyncio.run(run_once(config, args.domain, args.force))

    except KeyboardInterrupt:
        print("\n\n🛑 Price feeds stopped by user")
    except Exception as e:
        print(f"\n❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
