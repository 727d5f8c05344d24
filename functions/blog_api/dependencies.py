"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from blog_api.config import Settings, get_settings
from blog_api.storage import (
    DocumentStore,
    GitHubDocumentStore,
    InMemoryDocumentStore,
    LocalRepositoryStore,
)

logger = logging.getLogger(__name__)

_document_store: DocumentStore | None = None


def build_document_store(settings: Settings) -> DocumentStore:
    if settings.use_in_memory_backends:
        return InMemoryDocumentStore()
    if settings.local_repo_path:
        return LocalRepositoryStore(settings.local_repo_path)
    if settings.github_configured:
        return GitHubDocumentStore(
            owner=settings.github_owner,
            repo=settings.github_repo,
            token=settings.github_token,
            branch=settings.github_branch,
            api_url=settings.github_api_url,
            timeout=settings.request_timeout_seconds,
        )
    logger.warning(
        "GITHUB_TOKEN/GITHUB_OWNER/GITHUB_REPO not set; using an in-memory store"
    )
    return InMemoryDocumentStore()


def get_document_store() -> DocumentStore:
    """
    Return a singleton store. It holds connection state only, never documents
    read on behalf of a request.
    """
    global _document_store
    if _document_store:
        return _document_store

    _document_store = build_document_store(get_settings())
    return _document_store
