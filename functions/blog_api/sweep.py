"""
Orphaned image detection.

Builds the set of image filenames referenced by posts and the book list,
compares it with the files in the images directory, and reports unreferenced,
unprotected files older than the grace period. Deletion is a separate step.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, Optional

from blog_api.codec import decode_book_list, decode_post
from blog_api.errors import NotFoundError, StoreError
from blog_api.storage import DocumentStore

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "svg")
POST_TEXT_FIELDS = ("content", "coverImage")

_IMAGE_FILE = re.compile(
    r"\.(?:%s)$" % "|".join(IMAGE_EXTENSIONS), re.IGNORECASE
)


@dataclass(frozen=True)
class ImageAsset:
    name: str
    path: str
    last_modified: datetime


@dataclass(frozen=True)
class OrphanCandidate:
    name: str
    path: str
    last_modified: datetime
    age: timedelta


@dataclass(frozen=True)
class DeletionOutcome:
    name: str
    path: str
    deleted: bool
    error: Optional[str] = None


def reference_pattern(images_dir: str) -> re.Pattern:
    return re.compile(
        r"%s/[^\"'\s()<>]+\.(?:%s)"
        % (re.escape(images_dir.strip("/")), "|".join(IMAGE_EXTENSIONS)),
        re.IGNORECASE,
    )


def _string_values(value) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _string_values(item)
    elif isinstance(value, list):
        for item in value:
            yield from _string_values(item)


def extract_references(texts: Iterable[str], images_dir: str = "images") -> set[str]:
    """
    Return the trailing filenames of image references in ``texts``. Full URLs
    match too; images in different directories sharing a name are not told
    apart.
    """
    pattern = reference_pattern(images_dir)
    referenced = set()
    for text in texts:
        for match in pattern.findall(text):
            referenced.add(match.rsplit("/", 1)[-1])
    return referenced


def list_images(store: DocumentStore, images_dir: str) -> list[ImageAsset]:
    assets = []
    for entry in store.list(images_dir):
        if not _IMAGE_FILE.search(entry.name):
            continue
        assets.append(
            ImageAsset(
                name=entry.name,
                path=entry.path,
                last_modified=store.last_modified(entry.path),
            )
        )
    return assets


def collect_referenced_images(
    store: DocumentStore, *, posts_dir: str, books_path: str, images_dir: str
) -> set[str]:
    texts: list[str] = []
    for entry in store.list(posts_dir):
        if not entry.name.endswith(".json"):
            continue
        post = decode_post(store.get(entry.path).payload, entry.path)
        for field_name in POST_TEXT_FIELDS:
            value = post.get(field_name)
            if isinstance(value, str):
                texts.append(value)

    try:
        books_doc = store.get(books_path)
    except NotFoundError:
        books_doc = None
    if books_doc is not None:
        texts.extend(_string_values(decode_book_list(books_doc.payload, books_path)))

    return extract_references(texts, images_dir)


def classify_orphans(
    assets: Iterable[ImageAsset],
    referenced: set[str],
    *,
    protected: Iterable[str],
    grace_period: timedelta,
    now: datetime,
) -> list[OrphanCandidate]:
    """
    An asset is a candidate when it is not protected, not referenced, and its
    age is at least the grace period.
    """
    protected_names = set(protected)
    candidates = []
    for asset in assets:
        if asset.name in protected_names or asset.name in referenced:
            continue
        age = now - asset.last_modified
        if age < grace_period:
            continue
        candidates.append(
            OrphanCandidate(
                name=asset.name,
                path=asset.path,
                last_modified=asset.last_modified,
                age=age,
            )
        )
    return sorted(candidates, key=lambda candidate: candidate.name)


def find_orphans(
    store: DocumentStore,
    *,
    posts_dir: str = "posts",
    books_path: str = "books/books.json",
    images_dir: str = "images",
    protected: Iterable[str] = (),
    grace_period: timedelta = timedelta(days=7),
    now: Optional[datetime] = None,
) -> list[OrphanCandidate]:
    assets = list_images(store, images_dir)
    referenced = collect_referenced_images(
        store, posts_dir=posts_dir, books_path=books_path, images_dir=images_dir
    )
    logger.info(
        "Scanned %d images against %d referenced filenames",
        len(assets),
        len(referenced),
    )
    return classify_orphans(
        assets,
        referenced,
        protected=protected,
        grace_period=grace_period,
        now=now or datetime.now(timezone.utc),
    )


def delete_orphans(
    store: DocumentStore, candidates: Iterable[OrphanCandidate]
) -> list[DeletionOutcome]:
    """Delete each candidate independently; one failure does not stop the rest."""
    outcomes = []
    for candidate in candidates:
        try:
            current = store.get(candidate.path)
            store.delete(
                candidate.path,
                current.version,
                message=f"Remove orphaned image: {candidate.name}",
            )
        except (StoreError, OSError) as exc:
            logger.warning("Failed to delete %s: %s", candidate.name, exc)
            outcomes.append(
                DeletionOutcome(
                    name=candidate.name,
                    path=candidate.path,
                    deleted=False,
                    error=str(exc),
                )
            )
            continue
        logger.info("Deleted %s", candidate.name)
        outcomes.append(
            DeletionOutcome(name=candidate.name, path=candidate.path, deleted=True)
        )
    return outcomes


def format_age(age: timedelta) -> str:
    days = age.days
    if days <= 0:
        return "today"
    if days == 1:
        return "1 day ago"
    return f"{days} days ago"
