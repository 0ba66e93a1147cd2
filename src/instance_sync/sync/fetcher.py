# src/instance_sync/sync/fetcher.py

from __future__ import annotations

"""
Remote fetcher.

One GET per call against the host stored in HostSettings. Pure retrieval:
no persistence, no presentation logic.
"""

import logging
import re
from typing import Any

import httpx

from ..errors import FetchError, FetchErrorKind
from .models import HostSettings, InstanceRecord

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/api/instances"
DEFAULT_TIMEOUT_SECONDS = 10.0

# host, host:port, or a bracketed IPv6 literal with an optional port.
_HOSTNAME_RE = re.compile(r"^(\[[0-9a-fA-F:.]+\]|[A-Za-z0-9]([A-Za-z0-9\-.]*[A-Za-z0-9])?)(:\d{1,5})?$")

_RETRYABLE_STATUS = {408, 429}

_KNOWN_KEYS = {"id", "instance_id", "status", "name", "version", "url"}


def _validate_hostname(hostname: str) -> str:
    host = (hostname or "").strip()
    if not host:
        raise FetchError("hostname is not configured", kind=FetchErrorKind.PERMANENT)
    if not _HOSTNAME_RE.match(host):
        raise FetchError(f"invalid hostname: {host!r}", kind=FetchErrorKind.PERMANENT)
    return host


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_instances(payload: Any) -> list[InstanceRecord]:
    """
    Turn a decoded JSON payload into instance records.

    Accepts either a list of objects or {"instances": [...]}.
    Unknown keys are kept in meta.
    """
    items = payload.get("instances") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise FetchError("unexpected payload: expected a list of instances", kind=FetchErrorKind.PERMANENT)

    out: list[InstanceRecord] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise FetchError(f"unexpected payload: item {i} is not an object", kind=FetchErrorKind.PERMANENT)

        raw_id = item.get("id")
        if raw_id is None:
            raw_id = item.get("instance_id")
        instance_id = _opt_str(raw_id)
        if instance_id is None:
            raise FetchError(f"unexpected payload: item {i} has no id", kind=FetchErrorKind.PERMANENT)

        out.append(
            InstanceRecord(
                instance_id=instance_id,
                status=_opt_str(item.get("status")) or "unknown",
                name=_opt_str(item.get("name")),
                version=_opt_str(item.get("version")),
                url=_opt_str(item.get("url")),
                meta={k: v for k, v in item.items() if k not in _KNOWN_KEYS},
            )
        )
    return out


class HttpInstanceFetcher:
    """Fetch the instance list from http://{hostname}{path}."""

    def __init__(
        self,
        *,
        path: str = DEFAULT_PATH,
        scheme: str = "http",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._path = path if path.startswith("/") else f"/{path}"
        self._scheme = scheme
        self._timeout = httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds))
        self._transport = transport

    def build_url(self, settings: HostSettings) -> str:
        host = _validate_hostname(settings.hostname)
        return f"{self._scheme}://{host}{self._path}"

    async def fetch_instances(self, settings: HostSettings) -> list[InstanceRecord]:
        url = self.build_url(settings)
        params = {"extractMsi": "true" if settings.extract_msi else "false"}

        logger.debug("Fetching instances url=%s extract_msi=%s", url, settings.extract_msi)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(url, params=params, headers={"Accept": "application/json"})
        except httpx.InvalidURL as e:
            raise FetchError(f"invalid URL {url}: {e}", kind=FetchErrorKind.PERMANENT) from e
        except httpx.UnsupportedProtocol as e:
            raise FetchError(f"unsupported protocol for {url}: {e}", kind=FetchErrorKind.PERMANENT) from e
        except httpx.TimeoutException as e:
            raise FetchError(f"timed out fetching {url}", kind=FetchErrorKind.TRANSIENT) from e
        except httpx.TransportError as e:
            raise FetchError(f"network error fetching {url}: {e!r}", kind=FetchErrorKind.TRANSIENT) from e

        status = resp.status_code
        if status >= 500 or status in _RETRYABLE_STATUS:
            raise FetchError(f"{url} returned HTTP {status}", kind=FetchErrorKind.TRANSIENT)
        if status >= 400:
            raise FetchError(f"{url} returned HTTP {status}", kind=FetchErrorKind.PERMANENT)

        try:
            payload = resp.json()
        except ValueError as e:
            raise FetchError(f"{url} returned invalid JSON", kind=FetchErrorKind.PERMANENT) from e

        records = parse_instances(payload)
        logger.info("Fetched %d instance(s) from %s", len(records), url)
        return records
