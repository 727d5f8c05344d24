"""
Find images in the repository that no posts or books reference.

Usage:
  python scripts/cleanup_images.py                # report only
  python scripts/cleanup_images.py --delete       # delete after confirmation
  python scripts/cleanup_images.py --repo-path .  # sweep a local checkout
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from blog_api.config import get_settings
from blog_api.dependencies import build_document_store
from blog_api.storage import LocalRepositoryStore
from blog_api.sweep import delete_orphans, find_orphans, format_age


logger = logging.getLogger(__name__)


def confirm(question: str) -> bool:
    try:
        answer = input(question)
    except EOFError:
        return False
    return answer.strip().lower() == "y"


def main() -> int:
    parser = argparse.ArgumentParser(description="Find and remove orphaned images")
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Delete orphaned images after confirmation",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Skip the confirmation prompt when deleting",
    )
    parser.add_argument(
        "--grace-days",
        type=float,
        default=None,
        help="Only report images at least this many days old",
    )
    parser.add_argument(
        "--repo-path",
        type=str,
        default=None,
        help="Sweep a local checkout instead of the configured store",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    settings = get_settings()
    if args.repo_path:
        store = LocalRepositoryStore(args.repo_path)
    else:
        store = build_document_store(settings)

    grace_days = (
        args.grace_days
        if args.grace_days is not None
        else settings.image_grace_period_days
    )
    orphans = find_orphans(
        store,
        posts_dir=settings.posts_dir,
        books_path=settings.books_path,
        images_dir=settings.images_dir,
        protected=settings.protected_images,
        grace_period=timedelta(days=grace_days),
    )

    if not orphans:
        logger.info("No orphaned images found.")
        return 0

    logger.info("Found %d orphaned image(s):", len(orphans))
    for orphan in orphans:
        logger.info("  - %s (uploaded %s)", orphan.name, format_age(orphan.age))

    if not args.delete:
        logger.info("Run with --delete to remove these images.")
        return 0

    if not args.yes and not confirm("Delete these images? [y/N]: "):
        logger.info("Cancelled.")
        return 0

    outcomes = delete_orphans(store, orphans)
    deleted = sum(1 for outcome in outcomes if outcome.deleted)
    for outcome in outcomes:
        if not outcome.deleted:
            logger.error("Failed to delete %s: %s", outcome.name, outcome.error)
    logger.info("Deleted %d of %d image(s).", deleted, len(outcomes))
    if isinstance(store, LocalRepositoryStore) and deleted:
        logger.info("Remember to commit these changes.")
    return 0 if deleted == len(outcomes) else 1


if __name__ == "__main__":
    sys.exit(main())
