"""
Tests for the GraphQL client: pagination, error handling and retries.
"""

import json

import httpx
import pytest

from clients.dtos import LabelDTO, SingleSelectFieldDTO
from clients.graphql import GraphQLClient, GraphQLClientError, GraphQLQuery, plain_nodes, relay_nodes, retrieve

LABELS = GraphQLQuery(document_name="labels", document="query { labels }", retrieve_path="repository.labels")


def label_page(ids, has_next, cursor=None):
    return {
        "data": {
            "repository": {
                "labels": {
                    "edges": [{"node": {"id": i, "name": i.upper()}} for i in ids],
                    "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
                }
            }
        }
    }


def make_client(responses, requests=None, **kwargs):
    """Client answering each POST with the next canned response."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(json.loads(request.content))
        item = queue.pop(0)
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    return GraphQLClient(
        "https://example.test/graphql",
        transport=httpx.MockTransport(handler),
        retry_attempts=kwargs.pop("retry_attempts", 1),
        retry_backoff=0,
        **kwargs,
    )


class TestRetrieve:
    """Tests for dot path navigation."""

    def test_nested_path(self):
        assert retrieve({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_missing_step_returns_none(self):
        assert retrieve({"a": None}, "a.b") is None
        assert retrieve(None, "a") is None

    def test_extractors(self):
        connection = {"edges": [{"node": {"id": "1"}}, None, {"node": None}], "nodes": [{"id": "2"}, None]}
        assert relay_nodes(connection) == [{"id": "1"}]
        assert plain_nodes(connection) == [{"id": "2"}]


class TestPagination:
    """Tests for cursor-following collection fetches."""

    async def test_follows_cursor_until_last_page(self):
        requests = []
        client = make_client(
            [label_page(["a", "b"], True, "c1"), label_page(["c"], False)],
            requests,
        )
        async with client:
            labels = await client.fetch_paginated_collection(LABELS, {"owner": "o"}, LabelDTO)

        assert [label.id for label in labels] == ["a", "b", "c"]
        assert requests[0]["variables"] == {"owner": "o", "after": None}
        assert requests[1]["variables"] == {"owner": "o", "after": "c1"}

    async def test_deduplicates_by_id_keeping_first(self):
        client = make_client([label_page(["a", "b"], True, "c1"), label_page(["b", "c"], False)])
        async with client:
            labels = await client.fetch_paginated_collection(LABELS, {}, LabelDTO)

        assert [label.id for label in labels] == ["a", "b", "c"]
        assert labels[1].name == "B"

    async def test_stops_on_null_connection(self):
        client = make_client([{"data": {"repository": None}}])
        async with client:
            labels = await client.fetch_paginated_collection(LABELS, {}, LabelDTO)
        assert labels == []

    async def test_stops_on_empty_page_even_if_more_reported(self):
        requests = []
        client = make_client([label_page(["a"], True, "c1"), label_page([], True, "c2")], requests)
        async with client:
            labels = await client.fetch_paginated_collection(LABELS, {}, LabelDTO)

        assert [label.id for label in labels] == ["a"]
        assert len(requests) == 2

    async def test_plain_nodes_extractor(self):
        query = GraphQLQuery(document_name="issueProjects", document="q", retrieve_path="node.fields")
        body = {
            "data": {
                "node": {
                    "fields": {
                        "nodes": [{"id": "f1", "name": "Priority", "options": []}],
                        "pageInfo": {"hasNextPage": False, "endCursor": None},
                    }
                }
            }
        }
        client = make_client([body])
        async with client:
            fields = await client.fetch_paginated_collection(
                query, {}, SingleSelectFieldDTO, collection_extractor=plain_nodes
            )
        assert [f.name for f in fields] == ["Priority"]

    async def test_malformed_node_raises(self):
        body = label_page(["a"], False)
        del body["data"]["repository"]["labels"]["edges"][0]["node"]["name"]
        client = make_client([body])
        async with client:
            with pytest.raises(GraphQLClientError, match="Malformed 'labels'"):
                await client.fetch_paginated_collection(LABELS, {}, LabelDTO)


class TestErrors:
    """Tests for error wrapping and retries."""

    def test_empty_base_url_rejected(self):
        with pytest.raises(ValueError):
            GraphQLClient("  ")

    async def test_graphql_errors_raise(self):
        client = make_client([{"errors": [{"message": "Bad credentials"}]}])
        async with client:
            with pytest.raises(GraphQLClientError, match="Bad credentials"):
                await client.execute(LABELS)

    async def test_http_error_raises(self):
        client = make_client([httpx.Response(401, json={"message": "no"})])
        async with client:
            with pytest.raises(GraphQLClientError, match="Request for 'labels' failed"):
                await client.execute(LABELS)

    async def test_retries_transient_status(self):
        client = make_client(
            [httpx.Response(502), label_page(["a"], False)],
            retry_attempts=3,
        )
        async with client:
            labels = await client.fetch_paginated_collection(LABELS, {}, LabelDTO)
        assert [label.id for label in labels] == ["a"]

    async def test_gives_up_after_retry_attempts(self):
        client = make_client([httpx.Response(503), httpx.Response(503)], retry_attempts=2)
        async with client:
            with pytest.raises(GraphQLClientError):
                await client.execute(LABELS)

    async def test_single_entity_missing_path(self):
        client = make_client([{"data": {"repository": None}}])
        query = GraphQLQuery(document_name="repositoryStatistics", document="q", retrieve_path="repository")
        async with client:
            with pytest.raises(GraphQLClientError, match="No data at 'repository'"):
                await client.fetch_single_entity(query, {}, LabelDTO)
