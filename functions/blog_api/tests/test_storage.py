import base64
import json
import os
import tempfile
import threading
import time
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from blog_api.codec import git_blob_sha
from blog_api.config import Settings
from blog_api.dependencies import build_document_store
from blog_api.errors import ConflictError, NotFoundError, UpstreamError
from blog_api.storage import (
    GitHubDocumentStore,
    InMemoryDocumentStore,
    LocalRepositoryStore,
)


class VersionGatingMixin:
    """Behaviour shared by every store backend."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_create_only_write(self):
        version = self.store.put("posts/a.json", b"one")
        self.assertEqual(version, git_blob_sha(b"one"))
        with self.assertRaises(ConflictError):
            self.store.put("posts/a.json", b"two")
        self.assertEqual(self.store.get("posts/a.json").payload, b"one")

    def test_put_requires_current_version(self):
        first = self.store.put("posts/a.json", b"one")
        second = self.store.put("posts/a.json", b"two", first)
        self.assertNotEqual(first, second)
        with self.assertRaises(ConflictError):
            self.store.put("posts/a.json", b"three", first)
        document = self.store.get("posts/a.json")
        self.assertEqual(document.payload, b"two")
        self.assertEqual(document.version, second)

    def test_put_with_version_on_missing_path_conflicts(self):
        with self.assertRaises(ConflictError):
            self.store.put("posts/missing.json", b"x", git_blob_sha(b"x"))

    def test_stale_reader_loses_to_concurrent_writer(self):
        self.store.put("posts/hello-world.json", b'{"title": "v1"}')
        reader_a = self.store.get("posts/hello-world.json")
        reader_b = self.store.get("posts/hello-world.json")
        self.store.put(
            "posts/hello-world.json", b'{"title": "from b"}', reader_b.version
        )
        with self.assertRaises(ConflictError):
            self.store.put(
                "posts/hello-world.json", b'{"title": "from a"}', reader_a.version
            )
        self.assertEqual(
            self.store.get("posts/hello-world.json").payload, b'{"title": "from b"}'
        )

    def test_get_missing_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.store.get("posts/nope.json")

    def test_delete(self):
        version = self.store.put("posts/a.json", b"one")
        with self.assertRaises(ConflictError):
            self.store.delete("posts/a.json", git_blob_sha(b"other"))
        self.store.delete("posts/a.json", version)
        with self.assertRaises(NotFoundError):
            self.store.get("posts/a.json")
        with self.assertRaises(NotFoundError):
            self.store.delete("posts/a.json", version)

    def test_deleted_path_can_be_created_again(self):
        version = self.store.put("posts/a.json", b"one")
        self.store.delete("posts/a.json", version)
        self.store.put("posts/a.json", b"again")
        self.assertEqual(self.store.get("posts/a.json").payload, b"again")

    def test_list(self):
        self.assertEqual(self.store.list("images"), [])
        self.store.put("images/b.png", b"b")
        self.store.put("images/a.png", b"a")
        entries = self.store.list("images")
        self.assertEqual([entry.name for entry in entries], ["a.png", "b.png"])
        self.assertEqual(entries[0].path, "images/a.png")

    def test_last_modified(self):
        self.store.put("images/a.png", b"a")
        stamp = self.store.last_modified("images/a.png")
        self.assertIsNotNone(stamp.tzinfo)
        with self.assertRaises(NotFoundError):
            self.store.last_modified("images/missing.png")


class InMemoryDocumentStoreTests(VersionGatingMixin, unittest.TestCase):
    def make_store(self):
        return InMemoryDocumentStore()

    def test_list_reports_subdirectories_once(self):
        self.store.put("posts/drafts/a.json", b"a")
        self.store.put("posts/drafts/b.json", b"b")
        self.store.put("posts/c.json", b"c")
        names = [entry.name for entry in self.store.list("posts")]
        self.assertEqual(names, ["c.json", "drafts"])

    def test_clock_sets_modification_time(self):
        stamp = datetime(2024, 5, 1, tzinfo=timezone.utc)
        store = InMemoryDocumentStore(clock=lambda: stamp)
        store.put("images/a.png", b"a")
        self.assertEqual(store.last_modified("images/a.png"), stamp)

    def test_only_one_concurrent_writer_wins(self):
        version = self.store.put("books/books.json", b"[]")
        results = []

        def write(payload):
            try:
                self.store.put("books/books.json", payload, version)
                results.append("ok")
            except ConflictError:
                results.append("conflict")

        threads = [
            threading.Thread(target=write, args=(f"[{i}]".encode(),))
            for i in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(results.count("ok"), 1)
        self.assertEqual(results.count("conflict"), 7)

    def test_reset(self):
        self.store.put("posts/a.json", b"a")
        self.store.reset()
        self.assertEqual(self.store.list("posts"), [])


class LocalRepositoryStoreTests(VersionGatingMixin, unittest.TestCase):
    def make_store(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        return LocalRepositoryStore(self._tmp.name)

    def test_paths_outside_root_are_rejected(self):
        with self.assertRaises(NotFoundError):
            self.store.get("../outside.json")
        with self.assertRaises(NotFoundError):
            self.store.put("/etc/passwd", b"x")

    def test_last_modified_uses_mtime(self):
        self.store.put("images/old.png", b"old")
        target = os.path.join(self._tmp.name, "images", "old.png")
        past = time.time() - 10 * 86400
        os.utime(target, (past, past))
        age = datetime.now(timezone.utc) - self.store.last_modified("images/old.png")
        self.assertGreaterEqual(age.days, 9)

    def test_filesystem_failures_are_upstream_errors(self):
        version = self.store.put("images/a.png", b"a")
        denied = PermissionError(13, "Permission denied")
        with patch.object(Path, "unlink", side_effect=denied):
            with self.assertRaises(UpstreamError) as ctx:
                self.store.delete("images/a.png", version)
        self.assertEqual(str(ctx.exception), "images/a.png: Permission denied")
        with patch.object(Path, "read_bytes", side_effect=denied):
            with self.assertRaises(UpstreamError):
                self.store.get("images/a.png")
        self.assertEqual(self.store.get("images/a.png").payload, b"a")


def _response(status_code, payload=None, content=None):
    response = requests.Response()
    response.status_code = status_code
    response.reason = "reason"
    response.encoding = "utf-8"
    if content is not None:
        response._content = content
    else:
        response._content = json.dumps(payload if payload is not None else {}).encode()
    return response


class GitHubDocumentStoreTests(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.store = GitHubDocumentStore(
            owner="octo",
            repo="blog",
            token="ghp_token",
            branch="main",
            session=self.session,
        )
        self.base = "https://api.github.com/repos/octo/blog"

    def test_session_headers(self):
        self.assertEqual(self.session.headers["Authorization"], "Bearer ghp_token")
        self.assertEqual(
            self.session.headers["Accept"], "application/vnd.github+json"
        )

    def test_get_decodes_wrapped_base64(self):
        encoded = base64.b64encode(b'{"title": "Hello"}').decode()
        self.session.request.return_value = _response(
            200,
            {
                "type": "file",
                "encoding": "base64",
                "content": encoded[:10] + "\n" + encoded[10:] + "\n",
                "sha": "abc123",
            },
        )
        document = self.store.get("posts/hello.json")
        self.assertEqual(document.payload, b'{"title": "Hello"}')
        self.assertEqual(document.version, "abc123")
        self.session.request.assert_called_once_with(
            "GET",
            f"{self.base}/contents/posts/hello.json",
            timeout=30.0,
            params={"ref": "main"},
        )

    def test_get_large_file_falls_back_to_raw(self):
        self.session.request.side_effect = [
            _response(
                200, {"type": "file", "encoding": "none", "content": "", "sha": "big1"}
            ),
            _response(200, content=b"\x89PNG raw bytes"),
        ]
        document = self.store.get("images/huge.png")
        self.assertEqual(document.payload, b"\x89PNG raw bytes")
        self.assertEqual(document.version, "big1")
        raw_call = self.session.request.call_args_list[1]
        self.assertEqual(
            raw_call.kwargs["headers"], {"Accept": "application/vnd.github.raw"}
        )

    def test_get_missing(self):
        self.session.request.return_value = _response(404, {"message": "Not Found"})
        with self.assertRaises(NotFoundError):
            self.store.get("posts/missing.json")

    def test_get_directory_is_an_error(self):
        self.session.request.return_value = _response(200, [])
        with self.assertRaises(UpstreamError):
            self.store.get("posts")

    def test_list_missing_directory_is_empty(self):
        self.session.request.return_value = _response(404, {"message": "Not Found"})
        self.assertEqual(self.store.list("posts"), [])

    def test_list(self):
        self.session.request.return_value = _response(
            200,
            [
                {"name": "a.json", "path": "posts/a.json", "type": "file"},
                {"name": ".gitkeep", "path": "posts/.gitkeep", "type": "file"},
            ],
        )
        entries = self.store.list("posts")
        self.assertEqual([entry.path for entry in entries], ["posts/a.json", "posts/.gitkeep"])

    def test_create_omits_sha(self):
        self.session.request.return_value = _response(201, {"content": {"sha": "new1"}})
        version = self.store.put("posts/a.json", b"data", message="Create post: A")
        self.assertEqual(version, "new1")
        method, url = self.session.request.call_args.args
        body = self.session.request.call_args.kwargs["json"]
        self.assertEqual((method, url), ("PUT", f"{self.base}/contents/posts/a.json"))
        self.assertEqual(
            body,
            {
                "message": "Create post: A",
                "content": base64.b64encode(b"data").decode(),
                "branch": "main",
            },
        )

    def test_create_on_existing_path_conflicts(self):
        self.session.request.return_value = _response(
            422, {"message": "Invalid request.\n\n\"sha\" wasn't supplied."}
        )
        with self.assertRaises(ConflictError):
            self.store.put("posts/a.json", b"data")

    def test_update_with_stale_sha_conflicts(self):
        self.session.request.return_value = _response(
            409, {"message": "posts/a.json does not match abc123"}
        )
        with self.assertRaises(ConflictError):
            self.store.put("posts/a.json", b"data", "abc123")
        body = self.session.request.call_args.kwargs["json"]
        self.assertEqual(body["sha"], "abc123")

    def test_delete(self):
        self.session.request.return_value = _response(200, {"commit": {}})
        self.store.delete("posts/a.json", "abc123", message="Delete post: a")
        method, url = self.session.request.call_args.args
        self.assertEqual(method, "DELETE")
        self.assertEqual(
            self.session.request.call_args.kwargs["json"],
            {"message": "Delete post: a", "sha": "abc123", "branch": "main"},
        )

    def test_delete_missing(self):
        self.session.request.return_value = _response(404, {"message": "Not Found"})
        with self.assertRaises(NotFoundError):
            self.store.delete("posts/a.json", "abc123")

    def test_other_failures_are_upstream_errors(self):
        self.session.request.return_value = _response(
            403, {"message": "API rate limit exceeded"}
        )
        with self.assertRaises(UpstreamError) as ctx:
            self.store.put("posts/a.json", b"data", "abc123")
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertIn("rate limit", str(ctx.exception))

    def test_network_failure_is_upstream_error(self):
        self.session.request.side_effect = requests.ConnectionError("boom")
        with self.assertRaises(UpstreamError):
            self.store.get("posts/a.json")

    def test_last_modified_uses_latest_commit(self):
        self.session.request.return_value = _response(
            200, [{"commit": {"committer": {"date": "2024-03-01T12:00:00Z"}}}]
        )
        stamp = self.store.last_modified("images/a.png")
        self.assertEqual(stamp, datetime(2024, 3, 1, 12, tzinfo=timezone.utc))
        self.assertEqual(
            self.session.request.call_args.kwargs["params"],
            {"path": "images/a.png", "per_page": 1, "sha": "main"},
        )

    def test_last_modified_without_history(self):
        self.session.request.return_value = _response(200, [])
        with self.assertRaises(NotFoundError):
            self.store.last_modified("images/a.png")

    def test_non_json_success_body_is_upstream_error(self):
        self.session.request.return_value = _response(
            200, content=b"<html>gateway</html>"
        )
        with self.assertRaises(UpstreamError) as ctx:
            self.store.get("posts/a.json")
        self.assertEqual(ctx.exception.status_code, 200)
        with self.assertRaises(UpstreamError):
            self.store.list("posts")
        with self.assertRaises(UpstreamError):
            self.store.last_modified("images/a.png")

    def test_commit_response_without_json_is_upstream_error(self):
        self.session.request.return_value = _response(201, content=b"Created")
        with self.assertRaises(UpstreamError):
            self.store.put("posts/a.json", b"data")
        self.session.request.return_value = _response(201, {"commit": {}})
        with self.assertRaises(UpstreamError):
            self.store.put("posts/a.json", b"data")


class BuildDocumentStoreTests(unittest.TestCase):
    def test_in_memory_toggle_wins(self):
        settings = Settings(
            _env_file=None,
            use_in_memory_backends=True,
            github_token="t",
            github_owner="o",
            github_repo="r",
        )
        self.assertIsInstance(build_document_store(settings), InMemoryDocumentStore)

    def test_local_repository(self):
        with tempfile.TemporaryDirectory() as root:
            settings = Settings(
                _env_file=None, use_in_memory_backends=False, local_repo_path=root
            )
            self.assertIsInstance(build_document_store(settings), LocalRepositoryStore)

    def test_github(self):
        settings = Settings(
            _env_file=None,
            use_in_memory_backends=False,
            local_repo_path=None,
            github_token="t",
            github_owner="o",
            github_repo="r",
            github_branch="main",
        )
        store = build_document_store(settings)
        self.assertIsInstance(store, GitHubDocumentStore)
        self.assertEqual((store.owner, store.repo, store.branch), ("o", "r", "main"))

    def test_unconfigured_falls_back_to_memory(self):
        settings = Settings(
            _env_file=None,
            use_in_memory_backends=False,
            local_repo_path=None,
            github_token=None,
            github_owner=None,
            github_repo=None,
        )
        self.assertIsInstance(build_document_store(settings), InMemoryDocumentStore)


if __name__ == "__main__":
    unittest.main()
