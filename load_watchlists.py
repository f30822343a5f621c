#!/usr/bin/env python3
"""
Watchlist Loading Script

Seeds the database with the entries of a watchlist data directory
(one JSON file per list). Existing entries are refreshed in place.

Usage:
    python load_watchlists.py [--data-dir watchlist_data] [--create-tables]
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from config_manager import get_config
from watchlist import load_snapshot
from database.connection import DatabaseSessionProvider, init_db, close_db
from database.models import AuditAction
from database.repositories import AuditRepository, WatchlistRepository

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def load_watchlists(provider: DatabaseSessionProvider, data_dir: Optional[str] = None):
    """Upsert every entry of a data directory

    Returns:
        Tuple of (created, updated)
    """
    snapshot = load_snapshot(data_dir, get_config())
    entries = snapshot.entries_for(snapshot.list_codes)

    with provider.session_scope() as session:
        created, updated = WatchlistRepository(session).upsert_entries(entries)
        AuditRepository(session).log(
            action=AuditAction.DATA_UPDATE,
            resource_type="watchlist",
            details={'lists': snapshot.counts(), 'created': created, 'updated': updated},
        )
    return created, updated


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Load watchlist data into the screening database")
    parser.add_argument("--data-dir", help="Directory with watchlist JSON files")
    parser.add_argument("--create-tables", action="store_true", help="Create tables before loading")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=" * 50)
    logger.info("Watchlist Loading")
    logger.info("=" * 50)

    try:
        provider = init_db()
        if args.create_tables:
            provider.create_tables()

        created, updated = load_watchlists(provider, args.data_dir)
        logger.info(f"Entries created: {created}")
        logger.info(f"Entries updated: {updated}")
        logger.info("✓ Watchlist loading complete")
    except Exception as e:
        logger.error(f"Error loading watchlists: {e}")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()
