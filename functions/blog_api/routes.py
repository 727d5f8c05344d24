"""
HTTP routes for posts, the book list and image uploads.

Every handler reads the document and its version, mutates it in memory and
writes it back with the version the caller supplied. Conflicts are returned
to the caller; nothing is retried here.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from blog_api.auth import require_editor
from blog_api.codec import (
    b64decode_payload,
    decode_book_list,
    decode_post,
    encode_document,
    image_filename,
    is_valid_slug,
    post_path,
    slugify,
)
from blog_api.config import Settings, get_settings
from blog_api.dependencies import get_document_store
from blog_api.errors import ConflictError, DocumentDecodeError, NotFoundError
from blog_api.schemas import (
    BooksResponse,
    CreatePostRequest,
    DeleteResponse,
    ImageUploadRequest,
    ImageUploadResponse,
    Post,
    UpdateBooksRequest,
    UpdatePostRequest,
)
from blog_api.storage import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


def _load_post(
    store: DocumentStore, settings: Settings, slug: str
) -> tuple[dict, str]:
    # A malformed slug cannot name a stored post.
    if not is_valid_slug(slug):
        raise HTTPException(status_code=404, detail="Post not found")
    path = post_path(settings.posts_dir, slug)
    try:
        document = store.get(path)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Post not found")
    return decode_post(document.payload, path), document.version


def _as_post(record: dict, path: str, sha: Optional[str] = None) -> Post:
    try:
        return Post.model_validate({**record, "sha": sha})
    except ValidationError as exc:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) for error in exc.errors()
        )
        raise DocumentDecodeError(path, f"invalid post fields: {fields}") from exc


@router.get("/books", response_model=BooksResponse)
def get_books(
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    try:
        document = store.get(settings.books_path)
    except NotFoundError:
        return BooksResponse(books=[], sha=None)
    books = decode_book_list(document.payload, document.path)
    return BooksResponse(books=books, sha=document.version)


@router.put(
    "/books", response_model=BooksResponse, dependencies=[Depends(require_editor)]
)
def update_books(
    payload: UpdateBooksRequest,
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    """Replace the whole book list; the caller's sha gates the write."""
    if payload.books is None:
        raise HTTPException(status_code=400, detail="Books array is required")
    if not payload.sha:
        raise HTTPException(status_code=400, detail="SHA is required for updates")

    try:
        sha = store.put(
            settings.books_path,
            encode_document(payload.books),
            payload.sha,
            message="Update books",
        )
    except ConflictError:
        raise HTTPException(
            status_code=409,
            detail="Books were modified since they were read; reload and retry",
        )
    return BooksResponse(books=payload.books, sha=sha)


@router.post(
    "/images",
    response_model=ImageUploadResponse,
    status_code=201,
    dependencies=[Depends(require_editor)],
)
def upload_image(
    payload: ImageUploadRequest,
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    if not payload.filename or not payload.content:
        raise HTTPException(
            status_code=400, detail="Filename and content are required"
        )
    if payload.contentType and payload.contentType not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Allowed: jpg, png, gif, webp",
        )
    try:
        data = b64decode_payload(payload.content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    filename = image_filename(payload.filename, int(time.time() * 1000))
    path = f"{settings.images_dir.strip('/')}/{filename}"
    store.put(path, data, message=f"Upload image: {filename}")
    logger.info("Uploaded image %s (%d bytes)", path, len(data))
    return ImageUploadResponse(filename=filename, url=f"/{path}")


@router.get("/posts")
def get_posts(
    slug: Optional[str] = Query(None),
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    """
    Return one post when ``slug`` is given, otherwise every post. The listing
    is not a snapshot: posts can change between the listing and each read.
    """
    if slug:
        post, version = _load_post(store, settings, slug)
        return _as_post(post, post_path(settings.posts_dir, slug), version)

    posts = []
    for entry in store.list(settings.posts_dir):
        if not entry.name.endswith(".json"):
            continue
        document = store.get(entry.path)
        post = decode_post(document.payload, entry.path)
        posts.append(_as_post(post, entry.path, document.version))
    return posts


@router.post(
    "/posts",
    response_model=Post,
    status_code=201,
    dependencies=[Depends(require_editor)],
)
def create_post(
    payload: CreatePostRequest,
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    if not payload.title or not payload.content:
        raise HTTPException(
            status_code=400, detail="Title and content are required"
        )
    slug = slugify(payload.title)
    if not slug:
        raise HTTPException(
            status_code=400, detail="Title must contain letters or digits"
        )

    post = {
        "title": payload.title,
        "slug": slug,
        "date": datetime.now(timezone.utc).date().isoformat(),
        "content": payload.content,
        "published": payload.published,
    }
    try:
        sha = store.put(
            post_path(settings.posts_dir, slug),
            encode_document(post),
            message=f"Create post: {payload.title}",
        )
    except ConflictError:
        raise HTTPException(
            status_code=409, detail="Post with this slug already exists"
        )
    return Post(**post, sha=sha)


@router.put("/posts", response_model=Post, dependencies=[Depends(require_editor)])
def update_post(
    payload: UpdatePostRequest,
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    """Merge the given fields into the stored post; omitted fields keep their values."""
    if not payload.slug or not payload.sha:
        raise HTTPException(status_code=400, detail="Slug and SHA are required")

    existing, _ = _load_post(store, settings, payload.slug)
    updated = {key: value for key, value in existing.items() if key != "sha"}
    if payload.title:
        updated["title"] = payload.title
    if payload.content is not None:
        updated["content"] = payload.content
    if payload.published is not None:
        updated["published"] = payload.published

    path = post_path(settings.posts_dir, payload.slug)
    # Checked before the write so an unusable record is never committed.
    post = _as_post(updated, path)
    try:
        sha = store.put(
            path,
            encode_document(updated),
            payload.sha,
            message=f"Update post: {updated.get('title', payload.slug)}",
        )
    except ConflictError:
        raise HTTPException(
            status_code=409,
            detail="Post was modified since it was read; reload and retry",
        )
    return post.model_copy(update={"sha": sha})


@router.delete(
    "/posts", response_model=DeleteResponse, dependencies=[Depends(require_editor)]
)
def delete_post(
    slug: Optional[str] = Query(None),
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    if not slug:
        raise HTTPException(status_code=400, detail="Slug is required")

    # Resolve the current version right before deleting.
    _, version = _load_post(store, settings, slug)
    store.delete(
        post_path(settings.posts_dir, slug), version, message=f"Delete post: {slug}"
    )
    return DeleteResponse()
