"""Tests for the attachment store and its background writers."""

import hashlib
import json
import logging
import os
import subprocess
import sys
import textwrap
import threading
import time
from collections.abc import Iterator
from pathlib import Path

import pytest
import requests

from gitlab2github.attachment_store import AttachmentStore, derive_location, unique_git_tag
from gitlab2github.models import Attachment

REPO_URL = "https://github.com/acme/widgets.git"
REPO_ID = hashlib.md5(REPO_URL.encode()).hexdigest()  # noqa: S324
SRC_DIR = Path(__file__).resolve().parents[1] / "src"


@pytest.mark.unit
class TestDeriveLocation:
    def test_location_layout(self) -> None:
        location = derive_location("pic.png", "abc123", "acme", "widgets")

        assert location.repo_id == REPO_ID
        assert location.repo_url == REPO_URL
        assert location.unique_git_tag == f"attachments-from-gitlab-{REPO_ID}"
        assert location.target_path == f".github-migration/attachments/{REPO_ID}/abc123-pic.png"
        assert location.output_file_path == str(Path("attachments") / f"widgets-{REPO_ID}" / "abc123-pic.png")
        assert location.attachment_url == (
            f"https://github.com/acme/widgets/blob/attachments-from-gitlab-{REPO_ID}"
            f"/.github-migration/attachments/{REPO_ID}/abc123-pic.png?raw=true"
        )

    def test_deterministic(self) -> None:
        assert derive_location("a", "h", "o", "r") == derive_location("a", "h", "o", "r")

    def test_same_name_different_hash(self) -> None:
        first = derive_location("a.txt", "h1", "o", "r")
        second = derive_location("a.txt", "h2", "o", "r")
        assert first.target_path != second.target_path
        assert first.unique_git_tag == second.unique_git_tag

    def test_custom_base_path(self) -> None:
        location = derive_location("a.txt", "h", "o", "r", base_path="docs/files/")
        assert location.target_path.startswith(f"docs/files/{location.repo_id}/")


@pytest.mark.unit
class TestAttachmentStore:
    def test_persist_writes_file(self, tmp_path: Path) -> None:
        out = tmp_path / "nested" / "dir" / "file.bin"
        with AttachmentStore(tmp_path) as store:
            future = store.persist(out, iter([b"abc", b"def"]))
            assert out.parent.is_dir()
            future.result(timeout=5)
            assert store.drain(timeout=5)
            assert store.open_handle_count == 0

        assert out.read_bytes() == b"abcdef"

    def test_stream_error_is_logged(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        def broken_stream() -> Iterator[bytes]:
            yield b"partial"
            raise requests.ConnectionError("connection reset")

        out = tmp_path / "broken.bin"
        store = AttachmentStore(tmp_path)
        with caplog.at_level(logging.ERROR):
            store.persist(out, broken_stream()).result(timeout=5)
            assert store.close(timeout=5)

        assert "Failed to read attachment stream" in caplog.text
        assert store.open_handle_count == 0

    def test_unwritable_path_is_logged(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        out = tmp_path / "is-a-dir"
        out.mkdir()
        store = AttachmentStore(tmp_path)
        with caplog.at_level(logging.ERROR):
            store.persist(out, iter([b"x"])).result(timeout=5)
            _ = store.close(timeout=5)

        assert "Failed to write attachment" in caplog.text
        assert store.open_handle_count == 0

    def test_drain_times_out_and_counter_stays_consistent(self, tmp_path: Path) -> None:
        release = threading.Event()
        started = threading.Event()

        def slow_stream() -> Iterator[bytes]:
            started.set()
            release.wait(timeout=10)
            yield b"done"

        store = AttachmentStore(tmp_path)
        future = store.persist(tmp_path / "slow.bin", slow_stream())
        assert started.wait(timeout=5)

        assert store.open_handle_count == 1
        assert store.drain(timeout=0.1, poll_interval=0.05) is False

        release.set()
        future.result(timeout=5)
        assert store.drain(timeout=5) is True
        assert store.open_handle_count == 0
        _ = store.close()

    def test_manifest_groups_by_repository(self, tmp_path: Path) -> None:
        store = AttachmentStore(tmp_path)
        tag = unique_git_tag(REPO_ID)
        store.register(REPO_ID, REPO_URL, tag, Attachment("https://u/1", "t/1", "f/1"))
        store.register(REPO_ID, REPO_URL, tag, Attachment("https://u/2", "t/2", "f/2"))

        manifest_path = tmp_path / "attachments.json"
        store.flush(manifest_path)
        _ = store.close()

        manifest = json.loads(manifest_path.read_text())
        assert list(manifest) == [REPO_ID]
        assert manifest[REPO_ID]["repoUrl"] == REPO_URL
        assert manifest[REPO_ID]["uniqueGitTag"] == tag
        assert manifest[REPO_ID]["attachments"] == [
            {"attachmentUrl": "https://u/1", "targetPath": "t/1", "filePath": "f/1"},
            {"attachmentUrl": "https://u/2", "targetPath": "t/2", "filePath": "f/2"},
        ]

    def test_drain_without_pending_work(self, tmp_path: Path) -> None:
        store = AttachmentStore(tmp_path)
        assert store.drain(timeout=0) is True
        _ = store.close()


class TrackedStream:
    """Byte stream that remembers whether it was closed."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.chunks)

    def close(self) -> None:
        self.closed = True


@pytest.mark.unit
class TestAttachmentStoreShutdown:
    def test_stream_is_closed_after_write(self, tmp_path: Path) -> None:
        stream = TrackedStream([b"abc"])
        with AttachmentStore(tmp_path) as store:
            future = store.persist(tmp_path / "a.bin", stream)
            assert future is not None
            future.result(timeout=5)

        assert stream.closed
        assert (tmp_path / "a.bin").read_bytes() == b"abc"

    def test_stream_is_closed_when_file_cannot_be_opened(self, tmp_path: Path) -> None:
        out = tmp_path / "is-a-dir"
        out.mkdir()
        stream = TrackedStream([b"x"])
        with AttachmentStore(tmp_path) as store:
            future = store.persist(out, stream)
            assert future is not None
            future.result(timeout=5)

        assert stream.closed

    def test_unusable_directory_is_logged(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        blocker = tmp_path / "file"
        blocker.write_bytes(b"")
        stream = TrackedStream([b"x"])
        store = AttachmentStore(tmp_path)

        with caplog.at_level(logging.ERROR):
            assert store.persist(blocker / "sub" / "a.bin", stream) is None
        assert store.close(timeout=5)

        assert stream.closed
        assert "Failed to create the directory for attachment" in caplog.text

    def test_close_stops_a_stalled_writer(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        waiting = threading.Event()
        release = threading.Event()

        def stalled_stream() -> Iterator[bytes]:
            yield b"first"
            waiting.set()
            release.wait(timeout=10)
            yield b"second"

        out = tmp_path / "stalled.bin"
        store = AttachmentStore(tmp_path)
        future = store.persist(out, stalled_stream())
        assert future is not None
        assert waiting.wait(timeout=5)

        with caplog.at_level(logging.WARNING):
            assert store.close(timeout=0.1) is False
            release.set()
            future.result(timeout=5)

        assert "Stopped writing attachment" in caplog.text
        assert out.read_bytes() == b"first"
        assert store.open_handle_count == 0

    def test_submit_after_close_is_rejected(self, tmp_path: Path) -> None:
        store = AttachmentStore(tmp_path)
        assert store.close(timeout=0)
        with pytest.raises(RuntimeError, match="already closed"):
            _ = store.submit(print)

    def test_process_exits_while_a_write_is_stuck(self, tmp_path: Path) -> None:
        script = textwrap.dedent(
            f"""
            import sys
            import time

            from gitlab2github.attachment_store import AttachmentStore

            def stalled():
                time.sleep(60)
                yield b"late"

            store = AttachmentStore({str(tmp_path)!r})
            store.persist({str(tmp_path / "stuck.bin")!r}, stalled())
            print("drained", store.close(timeout=0.5))
            sys.exit(1)
            """
        )
        python_path = os.pathsep.join(p for p in (str(SRC_DIR), os.environ.get("PYTHONPATH", "")) if p)

        started = time.monotonic()
        completed = subprocess.run(  # noqa: S603
            [sys.executable, "-c", script],
            capture_output=True,
            text=True,
            timeout=30,
            env={**os.environ, "PYTHONPATH": python_path},
            check=False,
        )

        assert time.monotonic() - started < 15
        assert completed.returncode == 1
        assert "drained False" in completed.stdout
