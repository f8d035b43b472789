"""
Bamboo HTTP client.

- requests.Session with bearer token, JSON in and out.
- Methods: get_json, post_json, put_json, delete_json.
- Retries with exponential backoff on network errors and 5xx.
- No retry on 4xx.
- TLS verification toggle (verify_tls=True by default).
- Errors as HttpError with status, url, and body.

Usage:
    client = BambooClient(base_url, token, verify_tls=True, timeout_sec=10, retries=3)
    data = client.get_json("/rest/api/latest/permissions/project/PRJ/users")
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
import urllib3

JSON = Any


@dataclass
class HttpError(Exception):
    """HTTP/transport error with context."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:  # pragma: no cover (simple formatting)
        base = f"HttpError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


class BambooClient:
    """Minimal JSON HTTP client for the Bamboo REST API with retries and timeouts."""

    API_PREFIX = "rest/api/latest"

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        verify_tls: bool = True,
        timeout_sec: float = 30,
        retries: int = 3,
        backoff_base_sec: float = 0.05,
        logger: Optional[logging.LoggerAdapter] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("bsync.http")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
            "User-Agent": "BambooSync/HTTPClient",
        })

        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> JSON:
        return self._request_json("GET", path, params=params)

    def post_json(self, path: str, payload: JSON) -> JSON:
        return self._request_json("POST", path, payload)

    def put_json(self, path: str, payload: JSON) -> JSON:
        return self._request_json("PUT", path, payload)

    def delete_json(self, path: str, payload: JSON = None) -> JSON:
        return self._request_json("DELETE", path, payload)

    def api_path(self, *parts: str) -> str:
        """Build ``rest/api/latest/<parts...>``."""
        return "/".join([self.API_PREFIX] + [str(p).strip("/") for p in parts])

    # ------------- Internal -------------

    def _full_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_json(
        self,
        method: str,
        path: str,
        payload: JSON = None,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> JSON:
        url = self._full_url(path)
        attempts = self.retries + 1
        last_err: Optional[HttpError] = None

        for attempt in range(attempts):
            start = time.time()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    json=payload,
                    params=params,
                    timeout=self.timeout,
                    verify=self.verify_tls,
                )
            except requests.RequestException as e:
                # Network/timeout. Retryable while attempts remain.
                err = HttpError(status=0, url=url, message=str(e))
                self._log_err(method, path, 0, err)
                if attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    last_err = err
                    continue
                raise err from e

            elapsed = (time.time() - start) * 1000
            if resp.status_code >= 400:
                err = HttpError(status=resp.status_code, url=url, body=resp.text or "", message=resp.reason or "")
                self._log_err(method, path, resp.status_code, err)
                if 500 <= resp.status_code < 600 and attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    last_err = err
                    continue
                raise err

            self.log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed)
            if resp.status_code == 204 or not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as e:
                raise HttpError(status=resp.status_code, url=url, body=resp.text, message=str(e)) from e

        # Should not reach here
        assert last_err is not None
        raise last_err

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.backoff * (2 ** attempt))

    def _log_err(self, method: str, path: str, status: int, err: HttpError) -> None:
        self.log.warning("%s %s failed (status=%s): %s", method, path, status, err)
