"""
Error types raised by document stores and the codec.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for failures talking to the document store."""


class NotFoundError(StoreError):
    """The requested path does not exist in the store."""

    def __init__(self, path: str):
        super().__init__(f"Not found: {path}")
        self.path = path


class ConflictError(StoreError):
    """A write or delete was rejected because the version did not match."""

    def __init__(self, path: str, message: str | None = None):
        super().__init__(message or f"Version conflict at {path}")
        self.path = path


class UpstreamError(StoreError):
    """Any other failure reported by the backing repository."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DocumentDecodeError(StoreError):
    """A stored payload could not be parsed as JSON."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not decode {path}: {reason}")
        self.path = path
