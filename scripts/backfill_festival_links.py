#!/usr/bin/env python3
"""
Backfill festival page links on stored tickets.

For every film that still has tickets without a link, ask the OpenAI lookup
first, fall back to the curated mapping, and update the tickets.

Usage:
    python scripts/backfill_festival_links.py
    python scripts/backfill_festival_links.py --dry-run --delay 1.0
"""

import argparse
import logging
import sys
import time

from dotenv import load_dotenv

from festival_tickets.config import load_settings
from festival_tickets.services.festival_links import FestivalLinkFinder, lookup_festival_link
from festival_tickets.services.storage import DynamoDBTicketStore, TicketStore

logger = logging.getLogger(__name__)


def backfill_festival_links(store: TicketStore, finder: FestivalLinkFinder, delay: float = 0.5,
                            dry_run: bool = False) -> dict:
    """Return counts of films found/not found and tickets updated"""
    acts = store.acts_without_festival_link()
    summary = {"processed": len(acts), "found": 0, "not_found": 0, "updated": 0}
    if not acts:
        logger.info("No tickets found without festival links.")
        return summary

    logger.info(f"Found {len(acts)} unique movies without festival links.")

    for i, act in enumerate(acts):
        logger.info(f"Processing: {act!r}...")
        festival_link = finder.find(act) or lookup_festival_link(act)

        if not festival_link:
            summary["not_found"] += 1
            logger.info("  No link found")
        else:
            summary["found"] += 1
            count = 0 if dry_run else store.set_festival_link(act, festival_link)
            summary["updated"] += count
            logger.info(f"  Found link: {festival_link} ({count} ticket(s) updated)")

        # Small delay to avoid rate limits
        if delay and i < len(acts) - 1:
            time.sleep(delay)

    return summary


def main():
    parser = argparse.ArgumentParser(description="Backfill festival page links on stored tickets")
    parser.add_argument("--delay", type=float, default=0.5, help="Seconds to wait between lookups")
    parser.add_argument("--dry-run", action="store_true", help="Look up links without updating tickets")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )

    settings = load_settings()
    store = DynamoDBTicketStore(settings.tickets_table, settings.aws_region)
    finder = FestivalLinkFinder(model=settings.openai_model)

    summary = backfill_festival_links(store, finder, delay=args.delay, dry_run=args.dry_run)

    print("\n--- Summary ---")
    print(f"Total movies processed: {summary['processed']}")
    print(f"Movies with links found: {summary['found']}")
    print(f"Movies without links: {summary['not_found']}")
    print(f"Total tickets updated: {summary['updated']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
