"""Leak detection over an extracted package tree."""
from __future__ import annotations

import locale
import logging
import os
from pathlib import Path

from wxapkg_audit.errors import IOFailure
from wxapkg_audit.scanner.patterns import PatternConfig
from wxapkg_audit.scanner.results import LeakFindings

logger = logging.getLogger(__name__)


def url_suffix(url: str) -> str:
    """Return the lowercased extension of ``url`` ignoring query and fragment."""

    clean = url.split("?", 1)[0].split("#", 1)[0]
    dot = clean.rfind(".")
    if dot == -1 or dot == len(clean) - 1:
        return ""
    return clean[dot + 1 :].lower()


def is_endpoint_suppressed(url: str, config: PatternConfig) -> bool:
    if any(prefix in url for prefix in config.prefix_blacklist):
        return True
    # Only plain resource references are filtered by suffix.
    if "?" not in url:
        suffix = url_suffix(url)
        if suffix and suffix in config.suffix_blacklist:
            return True
    return False


def decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode(locale.getpreferredencoding(False), errors="replace")


def scan_text(text: str, source_file: str, config: PatternConfig, findings: LeakFindings) -> None:
    """Collect endpoint and sensitive-data findings from one file's text."""

    for match in config.endpoint_pattern.finditer(text):
        endpoint = config.endpoint_from_match(match)
        if not endpoint or is_endpoint_suppressed(endpoint, config):
            continue
        findings.add_endpoint(source_file, endpoint)

    for category, pattern in config.sensitive_patterns.items():
        for match in pattern.finditer(text):
            findings.add_sensitive(source_file, category, match.group(0))


def _relative_name(root: Path, path: Path) -> str:
    return "/" + path.relative_to(root).as_posix()


def scan_tree(
    root: os.PathLike[str] | str,
    config: PatternConfig,
    findings: LeakFindings | None = None,
) -> LeakFindings:
    """Scan every regular file below ``root``.

    Unreadable files and directories are skipped with a warning; only a
    missing or non-directory ``root`` raises :class:`IOFailure`.
    """

    base = Path(root)
    if not base.is_dir():
        raise IOFailure(f"Scan root is not a directory: {base}")
    findings = findings if findings is not None else LeakFindings()

    def _on_walk_error(exc: OSError) -> None:
        logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc)

    for dirpath, dirnames, filenames in os.walk(base, onerror=_on_walk_error):
        dirnames.sort()
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if not path.is_file() or path.is_symlink():
                continue
            try:
                data = path.read_bytes()
            except OSError as exc:
                logger.warning("Skipping unreadable file %s: %s", path, exc)
                continue
            scan_text(decode_text(data), _relative_name(base, path), config, findings)

    return findings


__all__ = [
    "decode_text",
    "is_endpoint_suppressed",
    "scan_text",
    "scan_tree",
    "url_suffix",
]
