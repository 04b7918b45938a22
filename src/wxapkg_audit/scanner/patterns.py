"""Pattern configuration for the leak scanner.

A :class:`PatternConfig` is built once per run from caller overrides merged
with the defaults in this module and is never mutated afterwards.
"""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Union

from wxapkg_audit.errors import PatternCompileError

logger = logging.getLogger(__name__)

PatternLike = Union[str, re.Pattern]

# Endpoint variants in order of preference.
ENDPOINT_VARIANTS = ("absolute_url", "rooted_path", "relative_path", "filename")
MAX_ENDPOINT_GROUPS = 5

DEFAULT_ENDPOINT_REGEX = (
    r"""(?:"|')(?:"""
    r"""(?P<absolute_url>(?:[a-zA-Z]{1,10}://|//)[^"'/]+\.[a-zA-Z]{2,}[^"']*)"""
    r"""|(?P<rooted_path>(?:/|\.\./|\./)[^"'><,;| *()%$^/\\\[\]][^"'><,;|()]+)"""
    r"""|(?P<relative_path>[a-zA-Z0-9_\-/]+/[a-zA-Z0-9_\-/]+\.(?:[a-zA-Z]{1,4}|action)(?:[?|/][^"|']*|))"""
    r"""|(?P<filename>[a-zA-Z0-9_\-]+\.(?:php|asp|aspx|jsp|json|action|html|js|txt|xml)(?:\?[^"|']*|))"""
    r""")(?:"|')"""
)

_OCTET = r"(?:25[0-5]|2[0-4][0-9]|1[0-9][0-9]|[1-9]?[0-9])"

DEFAULT_SENSITIVE_REGEXES: Mapping[str, str] = MappingProxyType(
    {
        "WeChat session_key leak": r"(?i)\bsession_key\b",
        "AppSecret leak": r"(?i)\b\w*secret\b",
        "Mobile number": r"1[3-9]\d{9}",
        "ID card number": r"\b\d{17}[0-9Xx]\b",
        "Email address": r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,4}",
        "IP address": rf"(?<![\d.]){_OCTET}\.{_OCTET}\.{_OCTET}\.{_OCTET}(?![\d.])",
        "Licence plate": (
            r"(?<![A-Z0-9])[京津沪渝冀豫云辽黑湘皖鲁新苏浙赣鄂桂甘晋蒙陕吉闽贵粤青藏川宁琼使领]"
            r"[A-Z][A-Z0-9]{4}[A-Z0-9挂学警港澳](?![A-Z0-9])"
        ),
    }
)

DEFAULT_SUFFIX_BLACKLIST = frozenset(
    {"js", "jpg", "png", "jpeg", "gif", "svg", "wxml", "wxss", "json", "html"}
)

# MIME type literals are picked up by the path variants but are never endpoints.
DEFAULT_PREFIX_BLACKLIST = frozenset(
    {"application/", "text/", "image/", "audio/", "video/", "multipart/"}
)


def compile_pattern(value: PatternLike, what: str = "pattern") -> re.Pattern[str]:
    if isinstance(value, re.Pattern):
        return value
    try:
        return re.compile(value)
    except re.error as exc:
        raise PatternCompileError(f"Invalid {what} {value!r}: {exc}") from exc


def _endpoint_groups(pattern: re.Pattern[str]) -> tuple[int | str, ...]:
    named = tuple(name for name in ENDPOINT_VARIANTS if name in pattern.groupindex)
    if named:
        return named
    if pattern.groups:
        return tuple(range(1, min(pattern.groups, MAX_ENDPOINT_GROUPS) + 1))
    return (0,)


def _normalize_suffixes(values: Iterable[str] | None) -> frozenset[str]:
    suffixes = frozenset(
        v.strip().lower().lstrip(".") for v in (values or ()) if v and v.strip().lstrip(".")
    )
    return suffixes or DEFAULT_SUFFIX_BLACKLIST


def _normalize_prefixes(values: Iterable[str] | None) -> frozenset[str]:
    prefixes = frozenset(v.strip() for v in (values or ()) if v and v.strip())
    return prefixes or DEFAULT_PREFIX_BLACKLIST


@dataclass(frozen=True)
class PatternConfig:
    endpoint_pattern: re.Pattern[str]
    sensitive_patterns: Mapping[str, re.Pattern[str]]
    suffix_blacklist: frozenset[str]
    prefix_blacklist: frozenset[str]
    endpoint_groups: tuple[int | str, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sensitive_patterns", MappingProxyType(dict(self.sensitive_patterns)))
        object.__setattr__(self, "endpoint_groups", _endpoint_groups(self.endpoint_pattern))

    @classmethod
    def default(cls) -> PatternConfig:
        return cls.from_overrides()

    @classmethod
    def from_overrides(
        cls,
        endpoint_pattern: PatternLike | None = None,
        sensitive_patterns: Mapping[str, PatternLike] | None = None,
        suffix_blacklist: Iterable[str] | None = None,
        prefix_blacklist: Iterable[str] | None = None,
    ) -> PatternConfig:
        """Merge caller overrides with the defaults.

        Absent or empty overrides fall back to the defaults. Pattern text that
        does not compile raises :class:`PatternCompileError`.
        """

        if endpoint_pattern is None or (isinstance(endpoint_pattern, str) and not endpoint_pattern.strip()):
            endpoint = compile_pattern(DEFAULT_ENDPOINT_REGEX, "endpoint pattern")
        else:
            endpoint = compile_pattern(
                endpoint_pattern.strip() if isinstance(endpoint_pattern, str) else endpoint_pattern,
                "endpoint pattern",
            )

        sensitive_source: Mapping[str, PatternLike] = {
            label.strip(): pattern
            for label, pattern in (sensitive_patterns or {}).items()
            if label and label.strip() and not (isinstance(pattern, str) and not pattern.strip())
        }
        if not sensitive_source:
            sensitive_source = DEFAULT_SENSITIVE_REGEXES
        sensitive = {
            label: compile_pattern(pattern, f"pattern for {label!r}")
            for label, pattern in sensitive_source.items()
        }

        return cls(
            endpoint_pattern=endpoint,
            sensitive_patterns=sensitive,
            suffix_blacklist=_normalize_suffixes(suffix_blacklist),
            prefix_blacklist=_normalize_prefixes(prefix_blacklist),
        )

    def endpoint_from_match(self, match: re.Match[str]) -> str | None:
        """Return the first non-empty variant captured by ``match``."""

        for group in self.endpoint_groups:
            value = match.group(group)
            if value is not None and value.strip():
                return value.strip()
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "apiRegex": self.endpoint_pattern.pattern,
            "sensitiveRegexMap": {label: p.pattern for label, p in self.sensitive_patterns.items()},
            "suffixBlacklist": sorted(self.suffix_blacklist),
            "prefixBlacklist": sorted(self.prefix_blacklist),
        }


def parse_sensitive_text(text: str | None) -> dict[str, str]:
    """Parse ``label:regex`` lines. Only the first colon separates the two."""

    result: dict[str, str] = {}
    for line in (text or "").splitlines():
        line = line.strip()
        if not line or ":" not in line:
            continue
        label, regex = (part.strip() for part in line.split(":", 1))
        if label and regex:
            result[label] = regex
    return result or dict(DEFAULT_SENSITIVE_REGEXES)


def format_sensitive_text(patterns: Mapping[str, PatternLike] | None) -> str:
    source = patterns or DEFAULT_SENSITIVE_REGEXES
    return "\n".join(
        f"{label}:{p.pattern if isinstance(p, re.Pattern) else p}" for label, p in source.items()
    )


def parse_suffix_text(text: str | None) -> frozenset[str]:
    """Parse a comma separated suffix list such as ``"js, wxml,wxss"``."""

    return _normalize_suffixes((text or "").split(","))


def format_suffix_text(suffixes: Iterable[str] | None) -> str:
    return ",".join(sorted(suffixes or DEFAULT_SUFFIX_BLACKLIST))


def load_pattern_file(path: os.PathLike[str] | str) -> PatternConfig:
    """Load overrides from a JSON settings document.

    Recognised keys are ``apiRegex``, ``sensitiveRegexMap``,
    ``suffixBlacklist`` and ``prefixBlacklist``. A missing or unreadable
    document yields the defaults.
    """

    source = Path(path)
    try:
        document = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("Pattern file %s not found, using defaults", source)
        return PatternConfig.default()
    except (OSError, ValueError) as exc:
        logger.warning("Unable to load pattern file %s, using defaults: %s", source, exc)
        return PatternConfig.default()

    if not isinstance(document, dict):
        logger.warning("Pattern file %s is not a JSON object, using defaults", source)
        return PatternConfig.default()

    sensitive = document.get("sensitiveRegexMap")
    suffixes = document.get("suffixBlacklist")
    prefixes = document.get("prefixBlacklist")
    endpoint = document.get("apiRegex")
    return PatternConfig.from_overrides(
        endpoint_pattern=endpoint if isinstance(endpoint, str) else None,
        sensitive_patterns=sensitive if isinstance(sensitive, dict) else None,
        suffix_blacklist=suffixes if isinstance(suffixes, list) else None,
        prefix_blacklist=prefixes if isinstance(prefixes, list) else None,
    )


def save_pattern_file(config: PatternConfig, path: os.PathLike[str] | str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(config.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")


__all__ = [
    "DEFAULT_ENDPOINT_REGEX",
    "DEFAULT_PREFIX_BLACKLIST",
    "DEFAULT_SENSITIVE_REGEXES",
    "DEFAULT_SUFFIX_BLACKLIST",
    "ENDPOINT_VARIANTS",
    "PatternConfig",
    "compile_pattern",
    "format_sensitive_text",
    "format_suffix_text",
    "load_pattern_file",
    "parse_sensitive_text",
    "parse_suffix_text",
    "save_pattern_file",
]
