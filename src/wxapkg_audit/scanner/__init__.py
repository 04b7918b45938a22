"""Leak scanning API."""
from __future__ import annotations

from wxapkg_audit.scanner.leaks import is_endpoint_suppressed, scan_text, scan_tree, url_suffix
from wxapkg_audit.scanner.patterns import PatternConfig, load_pattern_file
from wxapkg_audit.scanner.results import EndpointFinding, LeakFindings, SensitiveFinding

__all__ = [
    "EndpointFinding",
    "LeakFindings",
    "PatternConfig",
    "SensitiveFinding",
    "is_endpoint_suppressed",
    "load_pattern_file",
    "scan_text",
    "scan_tree",
    "url_suffix",
]
