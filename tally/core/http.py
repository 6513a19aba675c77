"""Minimal urllib helpers for talking to the analytics backend.

No SDK dependency: uses urllib like the LLM providers.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from tally.core.utils import UpstreamError

logger = logging.getLogger(__name__)


def build_url(base: str, path: str, params: dict[str, Any] | None = None) -> str:
    url = f"{base.rstrip('/')}/{path.lstrip('/')}"
    if params:
        url += "?" + urllib.parse.urlencode({k: str(v) for k, v in params.items()})
    return url


def post_ndjson(
    url: str, records: list[dict], *, timeout: float, bearer: str | None = None,
) -> int:
    """POST records as newline-delimited JSON. Returns the HTTP status.

    Raises UpstreamError on a non-2xx answer; network errors and timeouts
    propagate as URLError / TimeoutError / OSError.
    """
    body = "".join(json.dumps(r, separators=(",", ":")) + "\n" for r in records).encode()
    headers = {"Content-Type": "application/x-ndjson"}
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    req = urllib.request.Request(url, data=body, headers=headers, method="POST")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            resp.read()
            return resp.status
    except urllib.error.HTTPError as e:
        raise UpstreamError(e.code, _read_error_body(e)) from e


def get_json(url: str, *, timeout: float, bearer: str | None = None) -> dict:
    """GET a JSON document. Raises UpstreamError on a non-2xx answer."""
    headers = {"Accept": "application/json"}
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    req = urllib.request.Request(url, headers=headers, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as e:
        raise UpstreamError(e.code, _read_error_body(e)) from e
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Backend returned invalid JSON: {raw[:200]!r}") from e


def _read_error_body(e: urllib.error.HTTPError) -> str:
    try:
        return e.read().decode("utf-8", errors="replace")[:500]
    except Exception:
        return ""
