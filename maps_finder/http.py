"""HTTP client with retry/backoff and request metrics."""
from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from .errors import ProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


@dataclass
class RequestMetrics:
    network: Dict[str, int] = field(default_factory=dict)
    retries: int = 0

    def inc_network(self, kind: str) -> None:
        self.network[kind] = self.network.get(kind, 0) + 1

    def count(self, kind: str) -> int:
        return self.network.get(kind, 0)

    @property
    def total(self) -> int:
        return sum(self.network.values())


def provider_error_message(resp: requests.Response) -> str:
    """Pull the provider's own error message out of a failed response."""
    try:
        payload = resp.json()
    except ValueError:
        return "provider error"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if payload.get("error_message"):
            return str(payload["error_message"])
    return "provider error"


class HttpClient:
    def __init__(
        self,
        api_key: str,
        timeout: int = 20,
        retry_max: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.retry_max = retry_max
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.metrics = metrics
        self.session = requests.Session()

    def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        field_mask: Optional[str] = None,
        kind: str = "places",
    ) -> Dict[str, Any]:
        headers = {
            "X-Goog-Api-Key": self.api_key,
            "Content-Type": "application/json",
        }
        if field_mask:
            headers["X-Goog-FieldMask"] = field_mask
        payload = json.dumps(body)
        return self._request("POST", url, kind, headers=headers, data=payload)

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        field_mask: Optional[str] = None,
        kind: str = "places",
        with_key_header: bool = True,
    ) -> Dict[str, Any]:
        headers: Dict[str, str] = {}
        if with_key_header:
            headers["X-Goog-Api-Key"] = self.api_key
        if field_mask:
            headers["X-Goog-FieldMask"] = field_mask
        return self._request("GET", url, kind, headers=headers, params=params)

    def _request(self, method: str, url: str, kind: str, **kwargs: Any) -> Dict[str, Any]:
        for attempt in range(1, self.retry_max + 1):
            if self.metrics is not None:
                self.metrics.inc_network(kind)
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                if attempt >= self.retry_max:
                    logger.error("%s %s failed: %s", method, url, exc)
                    raise ProviderError(f"Network error: {exc}") from exc
                self._note_retry()
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if 200 <= status < 300:
                try:
                    return resp.json()
                except ValueError as exc:
                    logger.error("Non-JSON response from %s", url)
                    raise ProviderError("Invalid response from provider", status=status) from exc

            if status in RETRYABLE_STATUSES and attempt < self.retry_max:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                self._note_retry()
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable, or retries exhausted
            logger.error("HTTP %s from %s", status, url)
            raise ProviderError(provider_error_message(resp), status=status)

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _note_retry(self) -> None:
        if self.metrics is not None:
            self.metrics.retries += 1

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True
