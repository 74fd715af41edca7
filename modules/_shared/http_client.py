# modules/_shared/http_client.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

# 429 is deliberately absent: rate limits must reach the adapter untouched.
DEFAULT_RETRY_STATUSES = (500, 502, 503, 504)


class HttpClient:
    """
    Shared HTTP client with sane defaults.

    Unlike a plain `requests.get`, responses are handed back without
    `raise_for_status()` so the caller can classify 403/429 itself.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = "devwatch/0.1 (+https://example.invalid)",
        *,
        headers: Mapping[str, str] | None = None,
        retry_statuses: tuple[int, ...] = DEFAULT_RETRY_STATUSES,
        session: requests.Session | None = None,
    ):
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        if headers:
            self.session.headers.update(dict(headers))

        if session is None:
            retry = Retry(
                total=3,
                backoff_factor=0.5,
                status_forcelist=retry_statuses,
                allowed_methods=frozenset(["GET", "POST", "HEAD"]),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=20)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    # ---- convenience ----
    def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        return self.session.get(url, params=params, headers=headers, timeout=timeout or self.timeout)

    def post(
        self,
        url: str,
        *,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        return self.session.post(url, json=json_body, headers=headers, timeout=timeout or self.timeout)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)
