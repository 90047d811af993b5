"""HTTP collaborators of the client: the Query API and the Mutation API.

Both are thin httpx wrappers. QueryApi.fetch is the cache's fetcher: a GET
of the path a cache key maps to. MutationApi.send issues one write and
raises MutationFailedException on any failure; mutations are never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from reelsync.client.keys import CacheKey, key_path
from reelsync.domain.exceptions import MutationFailedException, QueryFetchException
from reelsync.shared.telemetry.tracing import add_span_attributes, traced

logger = logging.getLogger(__name__)


def create_http_client(base_url: str, token: str, timeout: float = 30.0) -> httpx.AsyncClient:
    """AsyncClient that sends the session token as a bearer credential."""
    return httpx.AsyncClient(
        base_url=base_url,
        headers={"Authorization": f"Bearer {token}"},
        timeout=timeout,
    )


def _error_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for field in ("message", "detail", "error"):
            if body.get(field):
                return str(body[field])
    return f"HTTP {response.status_code}"


def _json_or_none(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


class QueryApi:
    """Read side: GET the resource a cache key addresses."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @traced("reelsync.query.fetch")
    async def fetch(self, key: CacheKey) -> Any:
        """Fetch the JSON body for key.

        Raises:
            QueryFetchException: retriable for network errors and 5xx responses.
        """
        path = key_path(key)
        add_span_attributes(path=path)
        try:
            response = await self._client.get(path)
        except httpx.TransportError as e:
            raise QueryFetchException(path, str(e) or type(e).__name__, retriable=True) from e
        if response.is_error:
            raise QueryFetchException(
                path,
                _error_reason(response),
                status_code=response.status_code,
                retriable=response.status_code >= 500,
            )
        try:
            return _json_or_none(response)
        except ValueError as e:
            raise QueryFetchException(path, "response is not JSON", response.status_code) from e


@dataclass(frozen=True)
class MutationRequest:
    """One write against the external CRUD layer."""

    name: str
    method: str
    path: str
    body: Any = None


class MutationApi:
    """Write side: send a mutation and return the server's response body."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @traced("reelsync.mutation.send")
    async def send(self, request: MutationRequest) -> Any:
        """Send request.

        Raises:
            MutationFailedException: On network error or non-2xx response.
        """
        add_span_attributes(mutation=request.name, method=request.method)
        try:
            response = await self._client.request(
                request.method, request.path, json=request.body
            )
        except httpx.TransportError as e:
            raise MutationFailedException(request.name, str(e) or type(e).__name__) from e
        if response.is_error:
            raise MutationFailedException(
                request.name, _error_reason(response), status_code=response.status_code
            )
        logger.debug("%s -> %s", request.name, response.status_code)
        try:
            return _json_or_none(response)
        except ValueError:
            return None
