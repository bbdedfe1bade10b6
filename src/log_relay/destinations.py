"""
Preset destination configurations for common log backends.

These only fill in URLs and auth headers; field mapping for a backend's
payload shape is done with a transform (see ``log_relay.payload``).
"""

from __future__ import annotations

import base64
from typing import Optional

from .models import Destination

DEFAULT_TIMEOUT = 10.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 1000


def _preset(name: str, url: str, headers: dict[str, str], api_key: Optional[str] = None) -> Destination:
    return Destination(
        name=name,
        url=url,
        headers={"Content-Type": "application/json", **headers},
        api_key=api_key,
        timeout=DEFAULT_TIMEOUT,
        retry_attempts=DEFAULT_RETRY_ATTEMPTS,
        retry_delay_ms=DEFAULT_RETRY_DELAY_MS,
    )


def logtail(source_token: str) -> Destination:
    """Logtail (Better Stack)."""
    return _preset("logtail", "https://in.logtail.com", {"Authorization": f"Bearer {source_token}"})


def datadog(api_key: str, site: str = "datadoghq.com") -> Destination:
    return _preset(
        "datadog", f"https://http-intake.logs.{site}/v1/input", {"DD-API-KEY": api_key}
    )


def elasticsearch(url: str, index: str, api_key: Optional[str] = None) -> Destination:
    headers = {"Authorization": f"ApiKey {api_key}"} if api_key else {}
    return _preset("elasticsearch", f"{url.rstrip('/')}/{index}/_doc", headers)


def splunk(url: str, token: str) -> Destination:
    """Splunk HTTP Event Collector."""
    return _preset(
        "splunk",
        f"{url.rstrip('/')}/services/collector/event",
        {"Authorization": f"Splunk {token}"},
    )


def loki(url: str, username: Optional[str] = None, password: Optional[str] = None) -> Destination:
    """Grafana Loki push API, with basic auth when credentials are given."""
    headers = {}
    if username and password:
        creds = base64.b64encode(f"{username}:{password}".encode()).decode()
        headers["Authorization"] = f"Basic {creds}"
    return _preset("loki", f"{url.rstrip('/')}/loki/api/v1/push", headers)


def custom(
    name: str,
    url: str,
    api_key: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> Destination:
    return Destination(
        name=name,
        url=url,
        api_key=api_key,
        headers=dict(headers or {}),
        timeout=DEFAULT_TIMEOUT,
        retry_attempts=DEFAULT_RETRY_ATTEMPTS,
        retry_delay_ms=DEFAULT_RETRY_DELAY_MS,
    )
