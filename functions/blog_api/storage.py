"""
Versioned document store backed by a git repository, plus in-memory and
local working-tree implementations.

Every document has an opaque version token (the git blob SHA of its bytes).
Writes to an existing path must carry the version the caller last read; a
write without a version is create-only. Stores never retry and never cache.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Protocol

import requests

from blog_api.codec import b64decode_payload, b64encode_payload, git_blob_sha
from blog_api.errors import ConflictError, NotFoundError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredDocument:
    path: str
    payload: bytes
    version: str


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    path: str


class DocumentStore(Protocol):
    """Defines the operations the API needs from the content repository."""

    def get(self, path: str) -> StoredDocument:
        ...

    def list(self, directory: str) -> list[DirectoryEntry]:
        ...

    def put(
        self,
        path: str,
        payload: bytes,
        expected_version: Optional[str] = None,
        *,
        message: Optional[str] = None,
    ) -> str:
        ...

    def delete(
        self, path: str, expected_version: str, *, message: Optional[str] = None
    ) -> None:
        ...

    def last_modified(self, path: str) -> datetime:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_version(
    path: str, current: Optional[str], expected: Optional[str]
) -> None:
    if expected is None:
        if current is not None:
            raise ConflictError(path, f"{path} already exists")
        return
    if current != expected:
        raise ConflictError(path)


@dataclass
class _MemoryEntry:
    payload: bytes
    version: str
    modified_at: datetime


@dataclass
class InMemoryDocumentStore:
    """Test double for the repository; compare-and-swap is atomic under a lock."""

    clock: Callable[[], datetime] = _utcnow
    documents: dict = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self.documents.clear()

    def get(self, path: str) -> StoredDocument:
        entry = self.documents.get(path)
        if entry is None:
            raise NotFoundError(path)
        return StoredDocument(path=path, payload=entry.payload, version=entry.version)

    def list(self, directory: str) -> list[DirectoryEntry]:
        prefix = directory.rstrip("/") + "/"
        names = set()
        for path in list(self.documents):
            if path.startswith(prefix):
                names.add(path[len(prefix):].split("/", 1)[0])
        return [DirectoryEntry(name=name, path=prefix + name) for name in sorted(names)]

    def put(
        self,
        path: str,
        payload: bytes,
        expected_version: Optional[str] = None,
        *,
        message: Optional[str] = None,
    ) -> str:
        with self._lock:
            current = self.documents.get(path)
            _check_version(path, current.version if current else None, expected_version)
            version = git_blob_sha(payload)
            self.documents[path] = _MemoryEntry(payload, version, self.clock())
            return version

    def delete(
        self, path: str, expected_version: str, *, message: Optional[str] = None
    ) -> None:
        with self._lock:
            current = self.documents.get(path)
            if current is None:
                raise NotFoundError(path)
            _check_version(path, current.version, expected_version)
            del self.documents[path]

    def last_modified(self, path: str) -> datetime:
        entry = self.documents.get(path)
        if entry is None:
            raise NotFoundError(path)
        return entry.modified_at


@dataclass
class LocalRepositoryStore:
    """
    Store over a git working tree on disk. Last-modified times come from file
    mtimes, so sweeping a fresh clone treats every file as just modified.
    """

    root: str

    def __post_init__(self):
        self._root = Path(self.root).resolve()
        self._lock = threading.Lock()

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise NotFoundError(path)
        return self._root.joinpath(*relative.parts)

    @staticmethod
    def _filesystem_error(path: str, exc: OSError) -> UpstreamError:
        logger.warning("Filesystem error on %s: %s", path, exc)
        return UpstreamError(f"{path}: {exc.strerror or exc}")

    def _current_version(self, target: Path) -> Optional[str]:
        if not target.is_file():
            return None
        return git_blob_sha(target.read_bytes())

    def get(self, path: str) -> StoredDocument:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError(path)
        try:
            payload = target.read_bytes()
        except OSError as exc:
            raise self._filesystem_error(path, exc) from exc
        return StoredDocument(path=path, payload=payload, version=git_blob_sha(payload))

    def list(self, directory: str) -> list[DirectoryEntry]:
        target = self._resolve(directory)
        if not target.is_dir():
            return []
        prefix = directory.rstrip("/")
        try:
            children = sorted(target.iterdir())
        except OSError as exc:
            raise self._filesystem_error(directory, exc) from exc
        return [
            DirectoryEntry(name=child.name, path=f"{prefix}/{child.name}")
            for child in children
        ]

    def put(
        self,
        path: str,
        payload: bytes,
        expected_version: Optional[str] = None,
        *,
        message: Optional[str] = None,
    ) -> str:
        target = self._resolve(path)
        with self._lock:
            try:
                _check_version(path, self._current_version(target), expected_version)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(payload)
            except OSError as exc:
                raise self._filesystem_error(path, exc) from exc
        logger.info("Wrote %s (%s)", path, message or "no message")
        return git_blob_sha(payload)

    def delete(
        self, path: str, expected_version: str, *, message: Optional[str] = None
    ) -> None:
        target = self._resolve(path)
        with self._lock:
            try:
                current = self._current_version(target)
                if current is None:
                    raise NotFoundError(path)
                _check_version(path, current, expected_version)
                target.unlink()
            except OSError as exc:
                raise self._filesystem_error(path, exc) from exc
        logger.info("Deleted %s (%s)", path, message or "no message")

    def last_modified(self, path: str) -> datetime:
        target = self._resolve(path)
        if not target.exists():
            raise NotFoundError(path)
        try:
            stamp = target.stat().st_mtime
        except OSError as exc:
            raise self._filesystem_error(path, exc) from exc
        return datetime.fromtimestamp(stamp, tz=timezone.utc)


@dataclass
class GitHubDocumentStore:
    """
    Store backed by the GitHub repository contents API.
    """

    owner: str
    repo: str
    token: str
    branch: Optional[str] = None
    api_url: str = "https://api.github.com"
    timeout: float = 30.0
    session: Optional[requests.Session] = None

    def __post_init__(self):
        if self.session is None:
            self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    def _url(self, suffix: str) -> str:
        return f"{self.api_url.rstrip('/')}/repos/{self.owner}/{self.repo}/{suffix}"

    def _contents_url(self, path: str) -> str:
        return self._url(f"contents/{path.strip('/')}")

    def _ref_params(self) -> dict:
        return {"ref": self.branch} if self.branch else {}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("GitHub %s %s failed: %s", method, url, exc)
            raise UpstreamError(f"GitHub request failed: {exc}") from exc

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return response.json().get("message") or response.reason
        except (ValueError, AttributeError):
            return response.text[:200] or response.reason

    def _raise_for_status(
        self, response: requests.Response, path: str, *, conflict_statuses=()
    ) -> None:
        if response.ok:
            return
        if response.status_code == 404:
            raise NotFoundError(path)
        message = self._error_message(response)
        if response.status_code in conflict_statuses:
            raise ConflictError(path, f"{path}: {message}")
        logger.warning(
            "GitHub returned %s for %s: %s", response.status_code, path, message
        )
        raise UpstreamError(message, status_code=response.status_code)

    @staticmethod
    def _json(response: requests.Response, path: str):
        try:
            return response.json()
        except ValueError as exc:
            logger.warning(
                "GitHub returned a non-JSON body (%s) for %s", response.status_code, path
            )
            raise UpstreamError(
                f"{path}: unreadable response from GitHub",
                status_code=response.status_code,
            ) from exc

    def _get_raw(self, path: str) -> bytes:
        response = self._request(
            "GET",
            self._contents_url(path),
            params=self._ref_params(),
            headers={"Accept": "application/vnd.github.raw"},
        )
        self._raise_for_status(response, path)
        return response.content

    def get(self, path: str) -> StoredDocument:
        response = self._request(
            "GET", self._contents_url(path), params=self._ref_params()
        )
        self._raise_for_status(response, path)
        data = self._json(response, path)
        if isinstance(data, list) or data.get("type") != "file":
            raise UpstreamError(f"{path} is not a file")
        if data.get("encoding") == "base64":
            try:
                payload = b64decode_payload(data.get("content", ""))
            except ValueError as exc:
                raise UpstreamError(f"{path}: {exc}") from exc
        else:
            # Files above the inline size limit come back without content.
            payload = self._get_raw(path)
        return StoredDocument(path=path, payload=payload, version=data["sha"])

    def list(self, directory: str) -> list[DirectoryEntry]:
        response = self._request(
            "GET", self._contents_url(directory), params=self._ref_params()
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, directory)
        data = self._json(response, directory)
        if not isinstance(data, list):
            raise UpstreamError(f"{directory} is not a directory")
        return [DirectoryEntry(name=item["name"], path=item["path"]) for item in data]

    def put(
        self,
        path: str,
        payload: bytes,
        expected_version: Optional[str] = None,
        *,
        message: Optional[str] = None,
    ) -> str:
        body = {
            "message": message or f"Update {path}",
            "content": b64encode_payload(payload),
        }
        if expected_version is not None:
            body["sha"] = expected_version
        if self.branch:
            body["branch"] = self.branch
        response = self._request("PUT", self._contents_url(path), json=body)
        # 422 is returned when a sha is missing for an existing file.
        self._raise_for_status(response, path, conflict_statuses=(409, 422))
        data = self._json(response, path)
        try:
            version = data["content"]["sha"]
        except (KeyError, TypeError) as exc:
            raise UpstreamError(f"{path}: commit response has no content sha") from exc
        logger.info("Committed %s at %s", path, version)
        return version

    def delete(
        self, path: str, expected_version: str, *, message: Optional[str] = None
    ) -> None:
        body = {"message": message or f"Delete {path}", "sha": expected_version}
        if self.branch:
            body["branch"] = self.branch
        response = self._request("DELETE", self._contents_url(path), json=body)
        self._raise_for_status(response, path, conflict_statuses=(409, 422))
        logger.info("Deleted %s", path)

    def last_modified(self, path: str) -> datetime:
        params = {"path": path, "per_page": 1}
        if self.branch:
            params["sha"] = self.branch
        response = self._request("GET", self._url("commits"), params=params)
        self._raise_for_status(response, path)
        commits = self._json(response, path)
        if not commits:
            raise NotFoundError(path)
        stamp = commits[0]["commit"]["committer"]["date"]
        return datetime.fromisoformat(stamp.replace("Z", "+00:00"))
