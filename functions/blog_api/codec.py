"""
Conversions between stored payload bytes and post / book-list records.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
from typing import Any

from blog_api.errors import DocumentDecodeError

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def encode_document(record: Any) -> bytes:
    """Serialize a record as canonical JSON (sorted keys, two-space indent)."""
    text = json.dumps(record, indent=2, sort_keys=True, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def decode_document(payload: bytes, path: str = "<payload>") -> Any:
    """Parse a stored payload. Malformed content raises DocumentDecodeError."""
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DocumentDecodeError(path, str(exc)) from exc


def decode_post(payload: bytes, path: str = "<payload>") -> dict:
    record = decode_document(payload, path)
    if not isinstance(record, dict):
        raise DocumentDecodeError(path, "expected a JSON object")
    return record


def decode_book_list(payload: bytes, path: str = "<payload>") -> list:
    record = decode_document(payload, path)
    if not isinstance(record, list):
        raise DocumentDecodeError(path, "expected a JSON array")
    return record


def slugify(value: str) -> str:
    """
    Lowercase, collapse every run of non-alphanumerics into one hyphen and trim
    hyphens from both ends. Distinct titles may collide; creation reports that
    as a conflict.
    """
    return _NON_ALNUM.sub("-", (value or "").lower()).strip("-")


def is_valid_slug(slug: str | None) -> bool:
    return bool(slug) and bool(SLUG_PATTERN.match(slug))


def post_path(posts_dir: str, slug: str) -> str:
    return f"{posts_dir.rstrip('/')}/{slug}.json"


def image_filename(original_name: str, timestamp_ms: int) -> str:
    """Return ``<safe-base>-<timestamp>.<ext>`` for an uploaded image."""
    base, dot, ext = original_name.rpartition(".")
    if not dot:
        base, ext = original_name, ""
    safe_base = slugify(base)
    name = f"{safe_base}-{timestamp_ms}" if safe_base else str(timestamp_ms)
    ext = ext.lower()
    return f"{name}.{ext}" if ext else name


def git_blob_sha(payload: bytes) -> str:
    """Hash a payload the way git names blobs; used as the version token."""
    header = f"blob {len(payload)}\0".encode("ascii")
    return hashlib.sha1(header + payload).hexdigest()


def b64encode_payload(payload: bytes) -> str:
    return base64.b64encode(payload).decode("ascii")


def b64decode_payload(value: str) -> bytes:
    """Decode base64 transport content; raises ValueError when malformed."""
    # The content API wraps base64 at 60 columns.
    compact = "".join((value or "").split())
    try:
        return base64.b64decode(compact, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 content: {exc}") from exc
