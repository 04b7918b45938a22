"""Result data structures for leak findings."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass(frozen=True)
class EndpointFinding:
    """An endpoint-like string that survived blacklist filtering."""

    index: int
    source_file: str
    endpoint: str

    def to_dict(self) -> dict:
        return {"index": self.index, "file": self.source_file, "endpoint": self.endpoint}


@dataclass(frozen=True)
class SensitiveFinding:
    """A match of one sensitive-data category pattern."""

    source_file: str
    category: str
    matched_text: str

    def to_dict(self) -> dict:
        return {"file": self.source_file, "category": self.category, "content": self.matched_text}


@dataclass
class LeakFindings:
    """Append-only collection of findings, safe to share between threads.

    Endpoint indices are assigned here so they stay unique and increasing
    even when several scanners feed the same collection.
    """

    _endpoints: list[EndpointFinding] = field(default_factory=list, init=False)
    _sensitive: list[SensitiveFinding] = field(default_factory=list, init=False)
    _next_index: int = field(default=1, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def add_endpoint(self, source_file: str, endpoint: str) -> EndpointFinding:
        with self._lock:
            finding = EndpointFinding(index=self._next_index, source_file=source_file, endpoint=endpoint)
            self._next_index += 1
            self._endpoints.append(finding)
        return finding

    def add_sensitive(self, source_file: str, category: str, matched_text: str) -> SensitiveFinding:
        finding = SensitiveFinding(source_file=source_file, category=category, matched_text=matched_text)
        with self._lock:
            self._sensitive.append(finding)
        return finding

    @property
    def endpoints(self) -> tuple[EndpointFinding, ...]:
        with self._lock:
            return tuple(self._endpoints)

    @property
    def sensitive(self) -> tuple[SensitiveFinding, ...]:
        with self._lock:
            return tuple(self._sensitive)

    def to_dict(self) -> dict:
        return {
            "endpoints": [f.to_dict() for f in self.endpoints],
            "sensitive": [f.to_dict() for f in self.sensitive],
        }
