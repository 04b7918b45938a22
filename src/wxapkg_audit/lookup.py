"""Mini program metadata lookup.

The service answers ``POST {"appid": ...}`` with::

    {"code": 0, "message": "...", "data": {"nickName": ..., "userName": ...,
     "description": ..., "principalName": ...}}

A non-zero ``code`` or a null ``data`` means the identifier is not indexed.
Lookups never raise; failures degrade to placeholder metadata.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from wxapkg_audit.errors import NetworkFailure

logger = logging.getLogger(__name__)

LOOKUP_URL = "https://kainy.cn/api/weapp/info/"
LOOKUP_TIMEOUT = 10.0
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/83.0.4103.116 Safari/537.36"
)
UNKNOWN_NICKNAME = "Unknown mini program"


@dataclass(frozen=True)
class AppMetadata:
    appid: str
    nick_name: str = UNKNOWN_NICKNAME
    user_name: str = ""
    description: str = ""
    principal_name: str = ""
    found: bool = False
    warnings: tuple[str, ...] = field(default=())


LookupFn = Callable[[str], AppMetadata]


def _text(data: dict[str, Any], key: str, default: str) -> str:
    value = data.get(key)
    if value is None:
        return default
    text = str(value)
    return text if text else default


def _fetch(identifier: str, client: httpx.Client, url: str) -> httpx.Response:
    try:
        return client.post(url, json={"appid": identifier}, headers={"User-Agent": USER_AGENT})
    except httpx.HTTPError as exc:
        raise NetworkFailure(f"Metadata lookup failed: {exc}") from exc


def lookup_app_info(
    identifier: str,
    *,
    client: httpx.Client | None = None,
    url: str = LOOKUP_URL,
    timeout: float = LOOKUP_TIMEOUT,
) -> AppMetadata:
    """Query the metadata service for ``identifier``."""

    placeholder = AppMetadata(appid=identifier)
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout)
    try:
        response = _fetch(identifier, http, url)
    except NetworkFailure as exc:
        logger.warning("%s", exc)
        return AppMetadata(appid=identifier, warnings=(str(exc),))
    finally:
        if owns_client:
            http.close()

    if not response.is_success:
        message = f"Metadata lookup failed: HTTP {response.status_code}"
        logger.warning(message)
        return AppMetadata(appid=identifier, warnings=(message,))

    try:
        payload = response.json()
    except ValueError:
        message = "Metadata lookup failed: response is not JSON"
        logger.warning(message)
        return AppMetadata(appid=identifier, warnings=(message,))

    if not isinstance(payload, dict):
        message = "Metadata lookup failed: empty JSON response"
        logger.warning(message)
        return AppMetadata(appid=identifier, warnings=(message,))

    data = payload.get("data")
    if not isinstance(data, dict):
        message = f"Mini program {identifier} is not indexed: no data returned"
        logger.info(message)
        return AppMetadata(appid=identifier, warnings=(message,))

    code = payload.get("code", -1)
    if code != 0:
        message = f"Mini program {identifier} is not indexed: {payload.get('message') or 'unknown error'}"
        logger.info(message)
        return AppMetadata(appid=identifier, warnings=(message,))

    return AppMetadata(
        appid=identifier,
        nick_name=_text(data, "nickName", placeholder.nick_name),
        user_name=_text(data, "userName", ""),
        description=_text(data, "description", ""),
        principal_name=_text(data, "principalName", ""),
        found=True,
    )


def offline_lookup(identifier: str) -> AppMetadata:
    """Lookup replacement that never touches the network."""

    return AppMetadata(appid=identifier, warnings=("Metadata lookup skipped",))


__all__ = [
    "AppMetadata",
    "LOOKUP_URL",
    "LookupFn",
    "UNKNOWN_NICKNAME",
    "lookup_app_info",
    "offline_lookup",
]
