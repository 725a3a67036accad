"""REST key-value service client.

Expected endpoints, relative to the base URL:
  GET    /kv/<key>                 → {"value": "..."} or 404
  PUT    /kv/<key>  {"value": ...} → 2xx
  DELETE /kv/<key>                 → 2xx (404 counts as deleted)
  GET    /kv?prefix=<p>&values=1   → {"items": [{"key": ..., "value": ...}]}
  GET    /health                   → 2xx when ready
"""
from __future__ import annotations

from urllib.parse import quote

import requests

from resurev.backends.base import KeyValueBackend
from resurev.errors import BackendUnavailable
from resurev.log import get_logger

log = get_logger(__name__)


class HttpKV(KeyValueBackend):
    def __init__(
        self,
        base_url: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not base_url:
            raise ValueError("HttpKV requires a base URL (RESUREV_KV_URL)")
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, key: str) -> str:
        return f"{self.base_url}/kv/{quote(key, safe='')}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise BackendUnavailable(f"{method} {url} failed: {exc}") from exc

    def _json(self, r: requests.Response, what: str) -> dict:
        try:
            data = r.json()
        except ValueError as exc:
            raise BackendUnavailable(f"{what} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise BackendUnavailable(f"{what} returned {type(data).__name__}, expected an object")
        return data

    def get(self, key: str) -> str | None:
        r = self._request("GET", self._url(key))
        if r.status_code == 404:
            return None
        if not r.ok:
            raise BackendUnavailable(f"GET {key} returned {r.status_code}")
        value = self._json(r, f"GET {key}").get("value")
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> bool:
        r = self._request("PUT", self._url(key), json={"value": value})
        if not r.ok:
            log.warning("PUT %s returned %d", key, r.status_code)
        return r.ok

    def delete(self, key: str) -> bool:
        r = self._request("DELETE", self._url(key))
        if r.status_code == 404:
            return True
        if not r.ok:
            log.warning("DELETE %s returned %d", key, r.status_code)
        return r.ok

    def list(self, prefix: str, with_values: bool = False) -> list:
        r = self._request(
            "GET",
            f"{self.base_url}/kv",
            params={"prefix": prefix, "values": "1" if with_values else "0"},
        )
        if not r.ok:
            raise BackendUnavailable(f"list {prefix!r} returned {r.status_code}")
        data = self._json(r, f"list {prefix!r}")
        items = [
            (item["key"], item.get("value", ""))
            for item in data.get("items", [])
            if isinstance(item, dict) and isinstance(item.get("key"), str)
        ]
        items.sort()
        if with_values:
            return items
        return [k for k, _ in items]

    def ping(self) -> bool:
        try:
            r = self._request("GET", f"{self.base_url}/health")
        except BackendUnavailable:
            return False
        return r.ok
