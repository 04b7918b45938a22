"""Decompile a wxapkg package and scan it for leaked endpoints and secrets.

One :class:`Decompiler` handles one package::

    decoder -> (decrypt and retry on failure) -> extraction -> lookup -> scan

Every stage appends human readable :class:`AppInfoRecord` rows so the caller
can replay what happened, including failures that did not stop the run.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from wxapkg_audit.container.extract import DEFAULT_WORKERS, extract_entries
from wxapkg_audit.container.format import decode_container, package_kind
from wxapkg_audit.crypto.envelope import decrypt, is_encrypted
from wxapkg_audit.errors import DecryptionFailure, InvalidContainerFormat, IOFailure
from wxapkg_audit.lookup import AppMetadata, LookupFn, lookup_app_info
from wxapkg_audit.scanner.leaks import scan_tree
from wxapkg_audit.scanner.patterns import PatternConfig, PatternLike
from wxapkg_audit.scanner.results import EndpointFinding, LeakFindings, SensitiveFinding

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"\bwx[a-f0-9]{16}\b")
UNKNOWN_IDENTIFIER = "unknown_appid"
PACKAGE_SUFFIX = ".wxapkg"


class RunState(Enum):
    INIT = "init"
    VALIDATING_FILE = "validating-file"
    EXTRACTING_IDENTIFIER = "extracting-identifier"
    PREPARING_OUTPUT_DIR = "preparing-output-dir"
    DIRECT_UNPACK = "direct-unpack"
    NEEDS_DECRYPTION = "needs-decryption"
    DECRYPTING = "decrypting"
    RETRY_UNPACK = "retry-unpack"
    UNPACKED = "unpacked"
    FAILED = "failed"
    METADATA_LOOKUP = "metadata-lookup"
    LEAK_DETECTION = "leak-detection"
    DONE = "done"
    ERROR = "error"


TERMINAL_STATES = frozenset({RunState.DONE, RunState.FAILED, RunState.ERROR})


@dataclass(frozen=True)
class AppInfoRecord:
    label: str
    value: str


class AppInfoLog:
    """Ordered, append-only list of records. Duplicate labels are kept."""

    def __init__(self) -> None:
        self._records: list[AppInfoRecord] = []
        self._lock = threading.Lock()

    def add(self, label: str, value: str) -> None:
        record = AppInfoRecord(label, value)
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> tuple[AppInfoRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def __iter__(self) -> Iterator[AppInfoRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def extract_identifier(path: os.PathLike[str] | str) -> str:
    """Return the ``wx`` + 16 hex identifier found in ``path``."""

    match = IDENTIFIER_PATTERN.search(os.fspath(path))
    return match.group(0) if match else UNKNOWN_IDENTIFIER


class Decompiler:
    def __init__(
        self,
        source_path: os.PathLike[str] | str,
        output_root: os.PathLike[str] | str,
        workers: int = DEFAULT_WORKERS,
        endpoint_pattern: PatternLike | None = None,
        sensitive_patterns: Mapping[str, PatternLike] | None = None,
        suffix_blacklist: Iterable[str] | None = None,
        prefix_blacklist: Iterable[str] | None = None,
        *,
        config: PatternConfig | None = None,
        lookup: LookupFn = lookup_app_info,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.source_path = Path(source_path)
        self.output_root = Path(output_root)
        self.workers = workers
        self.config = config or PatternConfig.from_overrides(
            endpoint_pattern=endpoint_pattern,
            sensitive_patterns=sensitive_patterns,
            suffix_blacklist=suffix_blacklist,
            prefix_blacklist=prefix_blacklist,
        )
        self._lookup = lookup
        self._log = AppInfoLog()
        self._findings = LeakFindings()
        self._state = RunState.INIT
        self.identifier = UNKNOWN_IDENTIFIER
        self.output_dir: Path | None = None
        self.file_count = 0
        self.metadata: AppMetadata | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def app_info(self) -> tuple[AppInfoRecord, ...]:
        return self._log.records

    @property
    def endpoints(self) -> tuple[EndpointFinding, ...]:
        return self._findings.endpoints

    @property
    def sensitive(self) -> tuple[SensitiveFinding, ...]:
        return self._findings.sensitive

    @property
    def package_kind(self) -> str:
        return package_kind(self.source_path)

    def _enter(self, state: RunState) -> None:
        logger.debug("%s: %s -> %s", self.source_path.name, self._state.value, state.value)
        self._state = state

    def _fail(self, state: RunState, label: str, message: str) -> RunState:
        self._log.add(label, message)
        self._enter(state)
        return state

    def run(self) -> RunState:
        """Run the whole pipeline once and return the final state."""

        if self._state is not RunState.INIT:
            raise RuntimeError("Decompiler instances are single use")

        self._enter(RunState.VALIDATING_FILE)
        if not self.source_path.is_file():
            return self._fail(RunState.ERROR, "Error", f"❌ Package file does not exist: {self.source_path}")
        try:
            raw = self.source_path.read_bytes()
        except OSError as exc:
            return self._fail(RunState.ERROR, "Error", f"❌ Unable to read package: {exc}")

        self._enter(RunState.EXTRACTING_IDENTIFIER)
        self.identifier = extract_identifier(self.source_path)
        if self.identifier == UNKNOWN_IDENTIFIER:
            self._log.add("AppID", f"Not found in path (using {UNKNOWN_IDENTIFIER})")
        else:
            self._log.add("AppID", self.identifier)

        self._enter(RunState.PREPARING_OUTPUT_DIR)
        output_dir = self.output_root / self.identifier
        if output_dir.exists():
            self._clear_previous(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return self._fail(RunState.ERROR, "Error", f"❌ Unable to create output directory: {exc}")
        self.output_dir = output_dir
        self._log.add("Output directory", str(output_dir))

        self._enter(RunState.DIRECT_UNPACK)
        self._log.add("Unpack status", f"Unpacking package: {self.source_path}")
        count = self._unpack(raw, output_dir)
        if count:
            self._log.add("Unpack result", f"✅ Unpacked directly, {count} file(s) extracted")
        else:
            self._enter(RunState.NEEDS_DECRYPTION)
            self._log.add("Unpack status", "❌ Direct unpack failed, retrying after AES decryption...")
            if not is_encrypted(raw):
                return self._fail(RunState.FAILED, "Unpack status", "❌ Package is not encrypted, unpack failed")

            self._enter(RunState.DECRYPTING)
            try:
                plaintext = decrypt(self.identifier, raw)
            except DecryptionFailure as exc:
                return self._fail(RunState.FAILED, "Decryption failed", f"❌ {exc}")
            self._log.add("AES decryption", f"✅ Encrypted package decrypted ({len(plaintext)} bytes)")

            self._enter(RunState.RETRY_UNPACK)
            count = self._unpack(plaintext, output_dir)
            if not count:
                return self._fail(RunState.FAILED, "Unpack status", "❌ Unpack still failed after AES decryption")
            self._log.add("Unpack result", f"✅ Unpacked after AES decryption, {count} file(s) extracted")

        self.file_count = count
        self._enter(RunState.UNPACKED)

        self._enter(RunState.METADATA_LOOKUP)
        self.metadata = self._query_metadata()
        for warning in self.metadata.warnings:
            self._log.add("Warning", warning)
        self._log.add("Mini program name", self.metadata.nick_name)
        self._log.add("User name", self.metadata.user_name)
        self._log.add("Description", self.metadata.description)
        self._log.add("Principal name", self.metadata.principal_name)

        self._enter(RunState.LEAK_DETECTION)
        self._log.add("Detection status", "🔍 Starting leak detection (all files are scanned)...")
        try:
            scan_tree(output_dir, self.config, self._findings)
        except (IOFailure, OSError) as exc:
            self._log.add("Error", f"❌ Leak detection failed: {exc}")
        else:
            self._log.add("Detection status", "✅ Leak detection finished")

        self._enter(RunState.DONE)
        return self._state

    def _clear_previous(self, output_dir: Path) -> None:
        try:
            if output_dir.is_dir() and not output_dir.is_symlink():
                shutil.rmtree(output_dir)
            else:
                output_dir.unlink()
        except OSError as exc:
            self._log.add("Warning", f"⚠️ Unable to remove previous output: {exc}")
        else:
            self._log.add("Cleanup", "✅ Removed previous output")

    def _unpack(self, data: bytes, output_dir: Path) -> int:
        try:
            entries = decode_container(data)
        except InvalidContainerFormat as exc:
            logger.debug("%s: %s", self.source_path.name, exc)
            return 0
        result = extract_entries(entries, data, output_dir, self.workers)
        for warning in result.warnings:
            self._log.add("Warning", warning)
        return result.scheduled

    def _query_metadata(self) -> AppMetadata:
        try:
            return self._lookup(self.identifier)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Metadata lookup for %s failed: %s", self.identifier, exc)
            return AppMetadata(appid=self.identifier, warnings=(f"Metadata lookup failed: {exc}",))


def discover_packages(root: os.PathLike[str] | str) -> list[Path]:
    """Return every ``*.wxapkg`` file below ``root`` (or ``root`` itself)."""

    base = Path(root)
    if base.is_file():
        return [base] if base.name.lower().endswith(PACKAGE_SUFFIX) else []
    if not base.is_dir():
        return []
    return sorted(
        path for path in base.rglob("*") if path.is_file() and path.name.lower().endswith(PACKAGE_SUFFIX)
    )


def run_batch(
    packages: Iterable[os.PathLike[str] | str],
    output_root: os.PathLike[str] | str,
    workers: int = DEFAULT_WORKERS,
    *,
    config: PatternConfig | None = None,
    lookup: LookupFn = lookup_app_info,
) -> list[Decompiler]:
    """Decompile ``packages`` one after another with a shared configuration."""

    resolved = config or PatternConfig.default()
    runs: list[Decompiler] = []
    for package in packages:
        decompiler = Decompiler(package, output_root, workers, config=resolved, lookup=lookup)
        state = decompiler.run()
        logger.info("%s finished in state %s", package, state.value)
        runs.append(decompiler)
    return runs


def summary_records(decompiler: Decompiler) -> list[AppInfoRecord]:
    """App info rows framed by a package header and a separator row."""

    rows = [AppInfoRecord(f"=== {decompiler.package_kind} ===", str(decompiler.source_path))]
    rows.extend(decompiler.app_info)
    rows.append(AppInfoRecord("---", "---"))
    return rows


__all__ = [
    "AppInfoLog",
    "AppInfoRecord",
    "Decompiler",
    "IDENTIFIER_PATTERN",
    "RunState",
    "TERMINAL_STATES",
    "UNKNOWN_IDENTIFIER",
    "discover_packages",
    "extract_identifier",
    "run_batch",
    "summary_records",
]
