"""Content-addressed storage of migrated attachments.

Attachments are written below an output root, grouped per target repository,
and listed in a JSON manifest. A downstream step commits the files into the
target repository under ``uniqueGitTag`` so that the rewritten links resolve.

Disk writes run on a small group of worker threads so that the migration can
continue with the next record while files are still being written. The group
is joined with a timeout at the end of the run (see :meth:`AttachmentStore.drain`).
Workers are daemon threads: once :meth:`AttachmentStore.close` gave up on a
stalled write, the process can exit without waiting for it.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, wait
from pathlib import Path
from typing import Any, Final

import requests

from . import hashing
from .models import Attachment, AttachmentLocation, RepositoryAttachmentGroup

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_TARGET_BASE_PATH: Final[str] = ".github-migration/attachments"
DEFAULT_DRAIN_TIMEOUT: Final[float] = 30.0
DRAIN_POLL_INTERVAL: Final[float] = 2.0

_Task = tuple[Future[Any], Callable[..., Any], tuple[Any, ...]]


def unique_git_tag(repo_id: str) -> str:
    return f"attachments-from-gitlab-{repo_id}"


def derive_location(
    file_name: str,
    file_hash: str,
    target_owner: str,
    target_repo: str,
    *,
    base_path: str = DEFAULT_TARGET_BASE_PATH,
    output_root: str | Path = "attachments",
    web_url: str = hashing.DEFAULT_GITHUB_WEB_URL,
) -> AttachmentLocation:
    """Derive where an attachment is stored and under which URL it will be reachable.

    Pure function of its inputs. ``repo_id`` depends only on the target
    repository, so every attachment of a repository ends up under the same git
    tag; prefixing the file name with ``file_hash`` keeps same-named files from
    different uploads apart.
    """
    repo_url = hashing.canonical_repo_url(target_owner, target_repo, web_url)
    repo_id = hashing.repository_id(repo_url)
    tag = unique_git_tag(repo_id)

    hash_plus_name = f"{file_hash}-{file_name}"
    target_path = f"{base_path.rstrip('/')}/{repo_id}/{hash_plus_name}"
    output_file_path = Path(output_root) / f"{target_repo}-{repo_id}" / hash_plus_name
    attachment_url = f"{web_url.rstrip('/')}/{target_owner}/{target_repo}/blob/{tag}/{target_path}?raw=true"

    return AttachmentLocation(
        repo_id=repo_id,
        repo_url=repo_url,
        unique_git_tag=tag,
        attachment_url=attachment_url,
        target_path=target_path,
        output_file_path=str(output_file_path),
    )


def close_stream(byte_stream: Iterable[bytes]) -> None:
    """Release the connection behind ``byte_stream`` if it holds one."""
    close = getattr(byte_stream, "close", None)
    if callable(close):
        close()


class AttachmentStore:
    """Persists attachment streams and keeps the attachment table for the manifest.

    Construct at run start, call :meth:`flush` once all attachments are issued
    and :meth:`close` (or use it as a context manager) before exiting.
    """

    _output_root: Path
    _groups: dict[str, RepositoryAttachmentGroup]
    _max_workers: int
    _workers: list[threading.Thread]
    _tasks: queue.SimpleQueue[_Task | None]
    _pending: set[Future[Any]]
    _streams: dict[int, Iterable[bytes]]
    _lock: threading.Lock
    _closed: threading.Event
    _open_handles: int

    def __init__(self, output_root: str | Path, *, max_workers: int = 4) -> None:
        self._output_root = Path(output_root)
        self._groups = {}
        self._max_workers = max_workers
        self._workers = []
        self._tasks = queue.SimpleQueue()
        self._pending = set()
        self._streams = {}
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._open_handles = 0

    def __enter__(self) -> AttachmentStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def output_root(self) -> Path:
        return self._output_root

    @property
    def open_handle_count(self) -> int:
        with self._lock:
            return self._open_handles

    @property
    def groups(self) -> dict[str, RepositoryAttachmentGroup]:
        return self._groups

    def derive_location(
        self,
        file_name: str,
        file_hash: str,
        target_owner: str,
        target_repo: str,
        *,
        base_path: str = DEFAULT_TARGET_BASE_PATH,
        web_url: str = hashing.DEFAULT_GITHUB_WEB_URL,
    ) -> AttachmentLocation:
        return derive_location(
            file_name,
            file_hash,
            target_owner,
            target_repo,
            base_path=base_path,
            output_root=self._output_root,
            web_url=web_url,
        )

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future[Any]:  # noqa: ANN401
        """Run ``fn`` in the store's task group; it is joined by :meth:`drain`."""
        if self._closed.is_set():
            msg = "Attachment store is already closed"
            raise RuntimeError(msg)

        future: Future[Any] = Future()
        with self._lock:
            self._pending.add(future)
            if len(self._workers) < self._max_workers:
                worker = threading.Thread(
                    target=self._work, name=f"attachment-writer-{len(self._workers)}", daemon=True
                )
                self._workers.append(worker)
                worker.start()
        future.add_done_callback(self._discard)
        self._tasks.put((future, fn, args))
        return future

    def _work(self) -> None:
        while True:
            task = self._tasks.get()
            if task is None:
                return
            future, fn, args = task
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except Exception as e:  # noqa: BLE001 - handed to the caller through the future
                future.set_exception(e)
            else:
                future.set_result(result)

    def _discard(self, future: Future[Any]) -> None:
        with self._lock:
            self._pending.discard(future)

    def persist(self, output_file_path: str | Path, byte_stream: Iterable[bytes]) -> Future[Any] | None:
        """Write ``byte_stream`` to ``output_file_path`` in the background.

        Returns once the write is scheduled, or None when it could not be.
        Read and write errors are logged and never raised; the caller's
        reference substitution stands either way. ``byte_stream`` is closed
        once the write ends, however it ends.
        """
        path = Path(output_file_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.exception(f"Failed to create the directory for attachment {path}")
            close_stream(byte_stream)
            return None

        with self._lock:
            self._streams[id(byte_stream)] = byte_stream
        return self.submit(self._write, path, byte_stream)

    def _write(self, path: Path, byte_stream: Iterable[bytes]) -> None:
        try:
            self._copy(path, byte_stream)
        finally:
            with self._lock:
                _ = self._streams.pop(id(byte_stream), None)
            close_stream(byte_stream)

    def _copy(self, path: Path, byte_stream: Iterable[bytes]) -> None:
        try:
            handle = path.open("wb")
        except OSError:
            logger.exception(f"Failed to write attachment to {path}")
            return

        with self._lock:
            self._open_handles += 1
        try:
            chunks: Iterator[bytes] = iter(byte_stream)
            while True:
                try:
                    chunk = next(chunks)
                except StopIteration:
                    break
                except (requests.RequestException, OSError):
                    logger.exception(f"Failed to read attachment stream for {path}")
                    return
                if self._closed.is_set():
                    logger.warning(f"Stopped writing attachment to {path}; the store was closed")
                    return
                try:
                    handle.write(chunk)
                except OSError:
                    logger.exception(f"Failed to write attachment to {path}")
                    return
            logger.debug(f"Finished writing attachment to {path}")
        finally:
            handle.close()
            with self._lock:
                self._open_handles -= 1

    def register(self, repo_id: str, repo_url: str, unique_git_tag: str, attachment: Attachment) -> None:
        """Append ``attachment`` to the group of ``repo_id``, creating the group on first use."""
        group = self._groups.get(repo_id)
        if group is None:
            self._groups[repo_id] = RepositoryAttachmentGroup(
                repo_url=repo_url, unique_git_tag=unique_git_tag, attachments=[attachment]
            )
        else:
            group.attachments.append(attachment)

    def to_manifest(self) -> dict[str, dict[str, object]]:
        return {repo_id: group.to_manifest() for repo_id, group in self._groups.items()}

    def flush(self, path: str | Path) -> None:
        """Write the attachment table as JSON to ``path``."""
        manifest_path = Path(path)
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_path.write_text(json.dumps(self.to_manifest(), indent=2), encoding="utf-8")
        logger.debug(f"Updated attachments file at {manifest_path}")

    def drain(self, timeout: float = DEFAULT_DRAIN_TIMEOUT, poll_interval: float = DRAIN_POLL_INTERVAL) -> bool:
        """Wait for all background writes, giving up after ``timeout`` seconds.

        Returns True when everything finished in time.
        """
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                pending = set(self._pending)
            if not pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.error(
                    f"Timed out while waiting for {len(pending)} attachment writes "
                    f"({self.open_handle_count} open file handles). Stop waiting."
                )
                return False
            logger.info(f"Waiting for {len(pending)} attachment writes ({self.open_handle_count} open file handles)...")
            _ = wait(pending, timeout=min(poll_interval, remaining))

    def close(self, timeout: float = DEFAULT_DRAIN_TIMEOUT) -> bool:
        """Drain outstanding writes and shut the task group down.

        Writes still running after ``timeout`` are told to stop and their
        streams are closed; nothing waits for them afterwards.
        """
        drained = self.drain(timeout)
        self._closed.set()

        with self._lock:
            pending = list(self._pending)
            streams = list(self._streams.values())
            worker_count = len(self._workers)
        for future in pending:
            _ = future.cancel()
        for stream in streams:
            try:
                close_stream(stream)
            except (requests.RequestException, OSError, ValueError) as e:
                logger.warning(f"Could not close a stalled attachment stream: {e}")
        for _ in range(worker_count):
            self._tasks.put(None)
        return drained
