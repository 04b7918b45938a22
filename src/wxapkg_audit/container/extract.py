"""Concurrent extraction of container members to disk.

A single producer feeds :class:`ArchiveEntry` items into a bounded queue and
``workers`` consumer threads write them out. Every entry counts down a shared
latch exactly once, whether it was written, skipped or failed, so the caller
can wait for completion independently of the worker count.
"""
from __future__ import annotations

import logging
import os
import queue
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from wxapkg_audit.container.format import ArchiveEntry
from wxapkg_audit.errors import BoundsViolation, UnsafeEntryPath

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 5
QUEUE_CAPACITY = 100
POLL_TIMEOUT = 0.2
SHUTDOWN_GRACE = 5 * 60.0


class _Countdown:
    """Latch released once ``count`` completions have been reported."""

    def __init__(self, count: int) -> None:
        self._count = count
        self._cond = threading.Condition()

    def count_down(self) -> None:
        with self._cond:
            if self._count > 0:
                self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    def wait(self, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)


@dataclass
class ExtractionResult:
    scheduled: int
    written: int = 0
    skipped: int = 0
    failed: int = 0
    warnings: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def record_written(self) -> None:
        with self._lock:
            self.written += 1

    def record_skipped(self, message: str) -> None:
        with self._lock:
            self.skipped += 1
            self.warnings.append(message)

    def record_failed(self, message: str) -> None:
        with self._lock:
            self.failed += 1
            self.warnings.append(message)


def _target_path(root: Path, name: str) -> Path:
    if "\x00" in name:
        raise UnsafeEntryPath(f"Entry path contains a NUL byte: {name!r}")
    relative = name.replace("\\", "/").lstrip("/")
    try:
        target = (root / relative).resolve()
    except ValueError as exc:
        raise UnsafeEntryPath(f"Entry path is not usable: {name!r} ({exc})") from exc
    if target == root or root not in target.parents:
        raise UnsafeEntryPath(f"Entry path escapes output directory: {name}")
    return target


def _write_entry(entry: ArchiveEntry, data: bytes, root: Path) -> None:
    if entry.end > len(data):
        raise BoundsViolation(
            f"Entry data out of range: {entry.name} (offset={entry.offset}, size={entry.size}, buffer={len(data)})"
        )
    target = _target_path(root, entry.name)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data[entry.offset : entry.end])


def extract_entries(
    entries: Sequence[ArchiveEntry],
    data: bytes,
    output_root: os.PathLike[str] | str,
    workers: int = DEFAULT_WORKERS,
    *,
    queue_size: int = QUEUE_CAPACITY,
    poll_timeout: float = POLL_TIMEOUT,
    shutdown_timeout: float = SHUTDOWN_GRACE,
) -> ExtractionResult:
    """Write ``entries`` from ``data`` below ``output_root`` using ``workers`` threads."""

    if workers < 1:
        raise ValueError(f"workers must be at least 1, got {workers}")

    root = Path(output_root)
    root.mkdir(parents=True, exist_ok=True)
    root = root.resolve()

    result = ExtractionResult(scheduled=len(entries))
    if not entries:
        return result

    pending: queue.Queue[ArchiveEntry] = queue.Queue(maxsize=queue_size)
    produced = threading.Event()
    aborted = threading.Event()
    remaining = _Countdown(len(entries))

    def produce() -> None:
        try:
            for entry in entries:
                while True:
                    if aborted.is_set():
                        return
                    try:
                        pending.put(entry, timeout=poll_timeout)
                    except queue.Full:
                        continue
                    break
        finally:
            produced.set()

    def consume() -> None:
        while not aborted.is_set():
            if produced.is_set() and pending.empty():
                return
            try:
                entry = pending.get(timeout=poll_timeout)
            except queue.Empty:
                continue
            try:
                _write_entry(entry, data, root)
            except (BoundsViolation, UnsafeEntryPath) as exc:
                logger.warning("Skipping entry: %s", exc)
                result.record_skipped(str(exc))
            except (OSError, ValueError) as exc:
                logger.warning("Failed to write %r: %s", entry.name, exc)
                result.record_failed(f"Extraction error for {entry.name!r}: {exc}")
            else:
                logger.debug("Extracted %s (%d bytes)", entry.name, entry.size)
                result.record_written()
            finally:
                remaining.count_down()

    executor = ThreadPoolExecutor(max_workers=workers + 1, thread_name_prefix="wxapkg-extract")
    futures = [executor.submit(produce)]
    futures.extend(executor.submit(consume) for _ in range(workers))

    # A dead thread releases the others instead of leaving them blocked on the queue.
    while not remaining.wait(timeout=poll_timeout):
        if any(f.done() and f.exception() is not None for f in futures):
            aborted.set()
            break

    done, not_done = wait(futures, timeout=shutdown_timeout, return_when=FIRST_EXCEPTION)
    executor.shutdown(wait=False, cancel_futures=True)
    if not_done:
        logger.warning("%d extraction thread(s) still running after %.0fs grace period", len(not_done), shutdown_timeout)
    for future in done:
        exc = future.exception()
        if exc is not None:
            raise exc

    return result


__all__ = [
    "DEFAULT_WORKERS",
    "ExtractionResult",
    "POLL_TIMEOUT",
    "QUEUE_CAPACITY",
    "SHUTDOWN_GRACE",
    "extract_entries",
]
