"""Async GraphQL client with cursor pagination.

Wraps httpx with tenacity retries. Queries are plain documents plus the dot
separated path of the object of interest inside the response ``data``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from be.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class GraphQLClientError(Exception):
    """Raised when a GraphQL request or its response handling fails."""
    pass


class RetryableResponseError(Exception):
    """Transient HTTP status worth retrying."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code} from {response.request.url}")
        self.response = response


@dataclass(frozen=True)
class GraphQLQuery:
    """A named GraphQL document and where its payload lives in ``data``."""
    document_name: str
    document: str
    retrieve_path: str


def relay_nodes(connection: Mapping[str, Any]) -> list[Any]:
    """Extract ``edges[].node`` from a Relay connection."""
    return [edge["node"] for edge in connection.get("edges") or [] if edge and edge.get("node") is not None]


def plain_nodes(connection: Mapping[str, Any]) -> list[Any]:
    """Extract ``nodes[]`` from a connection."""
    return [node for node in connection.get("nodes") or [] if node is not None]


def page_info(connection: Mapping[str, Any]) -> Mapping[str, Any]:
    return connection.get("pageInfo") or {}


def retrieve(data: Mapping[str, Any] | None, path: str) -> Any:
    """Follow a dot separated path through nested mappings; None when any step is missing."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


class GraphQLClient:
    """Minimal async GraphQL-over-HTTP client."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_backoff: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("GraphQL base URL cannot be empty")
        self.retry_attempts = retry_attempts or settings.http.retry_attempts
        self.retry_backoff = settings.http.retry_backoff if retry_backoff is None else retry_backoff
        self.url = base_url
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json", **(headers or {})},
            timeout=timeout or settings.http.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, min=0, max=10),
            retry=retry_if_exception_type((httpx.TransportError, RetryableResponseError)),
            reraise=True,
        ):
            with attempt:
                response = await self._client.post(self.url, json=payload)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise RetryableResponseError(response)
                response.raise_for_status()
                return response.json()
        raise AssertionError("unreachable")

    async def execute(self, query: GraphQLQuery, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Run a document and return its ``data`` object.

        Raises:
            GraphQLClientError: On transport failures, HTTP errors or GraphQL errors
        """
        try:
            body = await self._post({"query": query.document, "variables": dict(variables or {})})
        except (httpx.HTTPError, RetryableResponseError, ValueError) as e:
            raise GraphQLClientError(f"Request for '{query.document_name}' failed: {e}") from e

        errors = body.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            raise GraphQLClientError(f"GraphQL errors for '{query.document_name}': {messages}")
        return body.get("data") or {}

    async def fetch_single_entity(
        self,
        query: GraphQLQuery,
        variables: Mapping[str, Any] | None,
        entity_type: type[T],
    ) -> T:
        """Fetch one object located at ``query.retrieve_path``.

        Raises:
            GraphQLClientError: If the request fails or the object is missing or malformed
        """
        data = await self.execute(query, variables)
        payload = retrieve(data, query.retrieve_path)
        if payload is None:
            raise GraphQLClientError(
                f"No data at '{query.retrieve_path}' in response of '{query.document_name}'"
            )
        try:
            return entity_type.model_validate(payload)
        except ValidationError as e:
            raise GraphQLClientError(f"Malformed '{query.document_name}' response: {e}") from e

    async def fetch_paginated_collection(
        self,
        query: GraphQLQuery,
        variables: Mapping[str, Any] | None,
        entity_type: type[T],
        collection_extractor: Callable[[Mapping[str, Any]], list[Any]] = relay_nodes,
        page_info_extractor: Callable[[Mapping[str, Any]], Mapping[str, Any]] = page_info,
    ) -> list[T]:
        """Follow ``pageInfo.endCursor`` until every page has been read.

        Entities are de-duplicated by ``id``; the first occurrence wins and
        page order is preserved.

        Args:
            query: Document whose ``retrieve_path`` points at a connection
            variables: Query variables, ``after`` is managed here
            entity_type: Pydantic model every node is validated into
            collection_extractor: Returns the raw nodes of a connection
            page_info_extractor: Returns the ``pageInfo`` of a connection

        Returns:
            All entities of the connection

        Raises:
            GraphQLClientError: If any page fails
        """
        request_variables = dict(variables or {})
        entities: dict[str, T] = {}
        cursor: str | None = None

        try:
            while True:
                request_variables["after"] = cursor
                data = await self.execute(query, request_variables)
                connection = retrieve(data, query.retrieve_path)
                if connection is None:
                    logger.warning(f"Empty response for '{query.document_name}', stopping pagination")
                    break

                nodes = collection_extractor(connection)
                if not nodes:
                    logger.warning(f"No entities returned for '{query.document_name}', stopping pagination")
                    break

                page = [entity_type.model_validate(node) for node in nodes]
                for entity in page:
                    entities.setdefault(getattr(entity, "id"), entity)
                logger.debug(f"Fetched {len(page)} entities for '{query.document_name}'")

                info = page_info_extractor(connection)
                if not info.get("hasNextPage"):
                    break
                cursor = info.get("endCursor")
                if cursor is None:
                    logger.warning(f"'{query.document_name}' reported a next page without a cursor")
                    break
        except GraphQLClientError:
            raise
        except (ValidationError, TypeError, AttributeError) as e:
            raise GraphQLClientError(f"Malformed '{query.document_name}' response: {e}") from e

        logger.info(f"Fetched a total of {len(entities)} entities for '{query.document_name}'")
        return list(entities.values())
