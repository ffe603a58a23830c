"""Async client for the admin JSON API.

Used by scripts and by anything that drives the console from outside the
browser. GET responses can be cached for a few minutes, identical requests
issued concurrently share a single round trip, and failed requests can be
retried with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_CACHE_TTL = 5 * 60


class ConsoleClientError(Exception):
    """Raised when the API answers with an error envelope or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class BulkResult:
    """Outcome of a bulk action over several record ids."""

    successful: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'successful': len(self.successful),
            'failed': len(self.failed),
            'errors': list(self.failed),
        }


class ConsoleClient:
    """Talks to the ``/api`` endpoints and unwraps the response envelope."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._transport = transport
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/{path.lstrip('/')}"

    @staticmethod
    def _request_key(method: str, url: str, params: Optional[Mapping[str, Any]], body: Any) -> str:
        if params:
            url = str(httpx.URL(url, params={k: v for k, v in params.items() if v is not None}))
        return f"{method}:{url}:{json.dumps(body, sort_keys=True) if body is not None else ''}"

    def clear_cache(self, prefix: Optional[str] = None) -> None:
        """Drop cached GET responses, optionally only those whose URL starts with ``prefix``."""

        if prefix is None:
            self._cache.clear()
            return
        url = self._url(prefix)
        for key in [key for key in self._cache if key.startswith(f'GET:{url}')]:
            del self._cache[key]

    def _evict_expired(self, now: float) -> None:
        for key in [key for key, (expires, _) in self._cache.items() if expires <= now]:
            del self._cache[key]

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        cache: bool = False,
        retries: int = 0,
    ) -> Dict[str, Any]:
        """Issue a request and return the decoded success envelope.

        Args:
            method: HTTP verb.
            path: Path below ``/api``.
            params: Optional query string values; ``None`` entries are dropped.
            json_body: Optional JSON payload.
            cache: Serve and store GET responses from the TTL cache.
            retries: Extra attempts after a failure (negative values mean none),
                waiting 1, 2, 4... seconds between them.

        Raises:
            ConsoleClientError: If the API returned an error envelope or every attempt failed.
        """

        method = method.upper()
        url = self._url(path)
        key = self._request_key(method, url, params, json_body)

        if cache and method == 'GET':
            cached = self._cache.get(key)
            if cached and cached[0] > time.monotonic():
                return cached[1]
            self._cache.pop(key, None)

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._send(method, url, params, json_body, retries))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        payload = await asyncio.shield(task)

        if cache and method == 'GET':
            now = time.monotonic()
            self._evict_expired(now)
            self._cache[key] = (now + self.cache_ttl, payload)
        elif method != 'GET':
            # Writes invalidate cached reads of the same collection.
            self.clear_cache(path.split('/')[0])
        return payload

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]],
        json_body: Any,
        retries: int,
    ) -> Dict[str, Any]:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        last_error = ConsoleClientError('Request failed')
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(max(retries, 0) + 1):
                if attempt:
                    delay = 2 ** (attempt - 1)
                    logger.warning('Retrying %s %s in %ss (attempt %s)', method, url, delay, attempt + 1)
                    await asyncio.sleep(delay)
                try:
                    response = await client.request(
                        method, url, headers=self._headers(), params=query, json=json_body
                    )
                except httpx.RequestError as exc:
                    last_error = ConsoleClientError(f'Network error: {exc}')
                    continue

                try:
                    payload = response.json()
                except ValueError:
                    payload = None

                if response.status_code >= 400 or not isinstance(payload, dict) or not payload.get('success'):
                    message = 'Request failed'
                    if isinstance(payload, dict):
                        message = payload.get('error') or payload.get('message') or message
                    elif response.text:
                        message = response.text
                    last_error = ConsoleClientError(message, response.status_code)
                    # Client errors will not change on retry.
                    if 400 <= response.status_code < 500 and response.status_code != 429:
                        break
                    continue
                return payload

        raise last_error

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        return await self.request('GET', path, params=params, **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs) -> Dict[str, Any]:
        return await self.request('POST', path, json_body=body, **kwargs)

    async def put(self, path: str, body: Any = None, **kwargs) -> Dict[str, Any]:
        return await self.request('PUT', path, json_body=body, **kwargs)

    async def delete(self, path: str, **kwargs) -> Dict[str, Any]:
        return await self.request('DELETE', path, **kwargs)

    async def _bulk(self, coroutines: Dict[str, Any]) -> BulkResult:
        outcomes = await asyncio.gather(*coroutines.values(), return_exceptions=True)
        result = BulkResult()
        for record_id, outcome in zip(coroutines, outcomes):
            if isinstance(outcome, ConsoleClientError):
                result.failed.append({'id': record_id, 'error': outcome.message})
            elif isinstance(outcome, Exception):
                raise outcome
            else:
                result.successful.append(record_id)
        return result

    async def bulk_delete(self, resource: str, ids: Sequence[str]) -> BulkResult:
        """Delete every id concurrently and report which ones failed."""

        return await self._bulk({record_id: self.delete(f'{resource}/{record_id}') for record_id in ids})

    async def bulk_update(self, resource: str, ids: Sequence[str], values: Mapping[str, Any]) -> BulkResult:
        """Apply the same partial update to every id concurrently."""

        return await self._bulk(
            {record_id: self.put(f'{resource}/{record_id}', dict(values)) for record_id in ids}
        )
