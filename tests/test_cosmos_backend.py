"""Unit tests for the Cosmos DB backend against a mocked container."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from document_mirror import (
    AuthenticationError,
    CollectionReference,
    CosmosAuthMethod,
    CosmosConfig,
    DocumentReference,
    RemoteWriteError,
)
from document_mirror.backends.cosmos import (
    PARTITION_KEY_PATH,
    CosmosBackend,
    build_credential,
    build_query,
    field_expression,
    from_item,
    is_transient,
    to_item,
)


class AsyncIter:
    """Async iterator over a fixed list, standing in for query_items()."""

    def __init__(self, items: list[dict[str, Any]]):
        self._items = list(items)

    def __aiter__(self) -> AsyncIter:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if not self._items:
            raise StopAsyncIteration
        return self._items.pop(0)


def make_config(**overrides: Any) -> CosmosConfig:
    values: dict[str, Any] = {
        "endpoint": "https://example.documents.azure.com:443/",
        "auth_method": CosmosAuthMethod.KEY,
        "key": "secret",
        "retry_delay": 0.0,
        "poll_interval": 0.0,
    }
    values.update(overrides)
    return CosmosConfig(**values)


def make_backend(container: MagicMock, **overrides: Any) -> CosmosBackend:
    backend = CosmosBackend(make_config(**overrides))
    backend._container = container
    return backend


def item(doc_id: str, collection: str = "items", **fields: Any) -> dict[str, Any]:
    return {"id": doc_id, "collection": collection, "fields": fields}


class TestItemEncoding:
    """Tests for the item layout and SQL translation."""

    def test_to_item_and_back(self) -> None:
        ref = DocumentReference("users/alice/todos/t-1")

        encoded = to_item(ref, {"title": "a"})
        decoded = from_item(encoded)

        assert encoded == {"id": "t-1", "collection": "users/alice/todos", "fields": {"title": "a"}}
        assert decoded.reference == ref
        assert decoded.data == {"title": "a"}

    def test_field_expression_quotes_segments(self) -> None:
        assert field_expression("meta.tag") == 'c.fields["meta"]["tag"]'

    def test_plain_collection_query(self) -> None:
        sql, parameters = build_query(CollectionReference("items"))

        assert sql == "SELECT * FROM c WHERE c.collection = @collection ORDER BY c.id ASC"
        assert parameters == [{"name": "@collection", "value": "items"}]

    def test_filtered_ordered_limited_query(self) -> None:
        query = (
            CollectionReference("items")
            .where("meta.tag", "in", ["x", "y"])
            .order_by("p", descending=True)
            .limit(3)
        )

        sql, parameters = build_query(query)

        assert sql == (
            "SELECT * FROM c WHERE c.collection = @collection"
            ' AND ARRAY_CONTAINS(@p0, c.fields["meta"]["tag"])'
            ' AND IS_DEFINED(c.fields["p"])'
            ' ORDER BY c.fields["p"] DESC OFFSET 0 LIMIT @limit'
        )
        assert parameters == [
            {"name": "@collection", "value": "items"},
            {"name": "@p0", "value": ["x", "y"]},
            {"name": "@limit", "value": 3},
        ]

    def test_comparison_and_array_contains(self) -> None:
        query = CollectionReference("items").where("v", ">=", 2).where("tags", "array-contains", "a")

        sql, _ = build_query(query)

        assert 'c.fields["v"] >= @p0' in sql
        assert 'ARRAY_CONTAINS(c.fields["tags"], @p1)' in sql


class TestCosmosBackendOperations:
    """Tests for reads and writes."""

    @pytest.mark.asyncio
    async def test_set_document_upserts_item(self) -> None:
        container = MagicMock()
        container.upsert_item = AsyncMock(return_value={})
        backend = make_backend(container)

        await backend.set_document(DocumentReference("items/a"), {"v": 1})

        container.upsert_item.assert_awaited_once_with(body=item("a", v=1))

    @pytest.mark.asyncio
    async def test_add_document_creates_item_with_generated_id(self) -> None:
        container = MagicMock()
        container.create_item = AsyncMock(return_value={})
        backend = make_backend(container)

        ref = await backend.add_document(CollectionReference("items"), {"v": 1})

        body = container.create_item.await_args.kwargs["body"]
        assert body["id"] == ref.id
        assert body["collection"] == "items"
        assert len(ref.id) == 20

    @pytest.mark.asyncio
    async def test_get_missing_document(self) -> None:
        container = MagicMock()
        container.read_item = AsyncMock(
            side_effect=CosmosResourceNotFoundError(status_code=404, message="missing")
        )
        backend = make_backend(container)

        snapshot = await backend.get_document(DocumentReference("items/a"))

        assert snapshot.data is None
        container.read_item.assert_awaited_once_with(item="a", partition_key="items")

    @pytest.mark.asyncio
    async def test_delete_missing_document_is_ignored(self) -> None:
        container = MagicMock()
        container.delete_item = AsyncMock(
            side_effect=CosmosResourceNotFoundError(status_code=404, message="missing")
        )
        backend = make_backend(container)

        await backend.delete_document(DocumentReference("items/a"))

        container.delete_item.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_query_is_scoped_to_collection_partition(self) -> None:
        container = MagicMock()
        container.query_items = MagicMock(return_value=AsyncIter([item("a", v=1), item("b", v=2)]))
        backend = make_backend(container)

        snapshot = await backend.run_query(CollectionReference("items").where("v", ">", 0))

        assert [d.id for d in snapshot.docs] == ["a", "b"]
        assert container.query_items.call_args.kwargs["partition_key"] == "items"


class TestCredentials:
    """Tests for credential selection."""

    def test_key_auth_returns_key(self) -> None:
        assert build_credential(make_config()) == "secret"

    def test_service_principal_lists_missing_settings(self) -> None:
        config = make_config(
            auth_method=CosmosAuthMethod.SERVICE_PRINCIPAL, azure_tenant_id="tenant"
        )

        with pytest.raises(AuthenticationError) as exc_info:
            build_credential(config)

        assert "azure_client_id, azure_client_secret" in exc_info.value.details["reason"]

    def test_user_assigned_managed_identity(self) -> None:
        config = make_config(auth_method=CosmosAuthMethod.MANAGED_IDENTITY, azure_client_id="cid")

        with patch("azure.identity.aio.ManagedIdentityCredential") as credential_cls:
            credential = build_credential(config)

        credential_cls.assert_called_once_with(client_id="cid")
        assert credential is credential_cls.return_value

    def test_default_credential(self) -> None:
        config = make_config(auth_method=CosmosAuthMethod.DEFAULT_CREDENTIAL)

        with patch("azure.identity.aio.DefaultAzureCredential") as credential_cls:
            build_credential(config)

        credential_cls.assert_called_once_with()

    @pytest.mark.parametrize(
        ("status", "expected"),
        [(429, True), (503, True), (None, True), (400, False), (404, False), (409, False)],
    )
    def test_transient_statuses(self, status, expected: bool) -> None:
        error = CosmosHttpResponseError(status_code=status, message="x")

        assert is_transient(error) is expected


class TestRetry:
    """Tests for retry handling of remote calls."""

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self) -> None:
        container = MagicMock()
        container.upsert_item = AsyncMock(
            side_effect=[CosmosHttpResponseError(status_code=503, message="busy"), {}]
        )
        backend = make_backend(container)

        await backend.set_document(DocumentReference("items/a"), {"v": 1})

        assert container.upsert_item.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self) -> None:
        container = MagicMock()
        container.upsert_item = AsyncMock(
            side_effect=CosmosHttpResponseError(status_code=429, message="throttled")
        )
        backend = make_backend(container, max_retries=3)

        with pytest.raises(RemoteWriteError) as exc_info:
            await backend.set_document(DocumentReference("items/a"), {"v": 1})

        assert container.upsert_item.await_count == 3
        assert exc_info.value.path == "items/a"

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        container = MagicMock()
        container.upsert_item = AsyncMock(
            side_effect=CosmosHttpResponseError(status_code=400, message="bad request")
        )
        backend = make_backend(container)

        with pytest.raises(RemoteWriteError) as exc_info:
            await backend.set_document(DocumentReference("items/a"), {"v": 1})

        assert container.upsert_item.await_count == 1
        assert exc_info.value.operation == "set"

    @pytest.mark.asyncio
    async def test_unknown_error_is_wrapped(self) -> None:
        container = MagicMock()
        container.delete_item = AsyncMock(side_effect=ValueError("boom"))
        backend = make_backend(container)

        with pytest.raises(RemoteWriteError) as exc_info:
            await backend.delete_document(DocumentReference("items/a"))

        assert isinstance(exc_info.value.cause, ValueError)


class TestPollingListener:
    """Tests for polling listeners."""

    @pytest.mark.asyncio
    async def test_emits_first_read_and_changes_only(self, settle) -> None:
        current = {"item": item("a", v=1)}
        container = MagicMock()
        container.read_item = AsyncMock(side_effect=lambda **kwargs: current["item"])
        backend = make_backend(container)
        received = []

        unsubscribe = backend.listen(DocumentReference("items/a"), received.append)
        await settle(10)
        assert len(received) == 1
        assert received[0].data == {"v": 1}

        current["item"] = item("a", v=2)
        await settle(10)
        assert [s.data for s in received] == [{"v": 1}, {"v": 2}]

        unsubscribe()
        unsubscribe()
        await settle()
        assert not backend._poll_tasks

    @pytest.mark.asyncio
    async def test_read_failure_keeps_polling(self, settle) -> None:
        container = MagicMock()
        container.query_items = MagicMock(
            side_effect=[RuntimeError("network"), AsyncIter([item("a", v=1)])]
            + [AsyncIter([item("a", v=1)]) for _ in range(20)]
        )
        backend = make_backend(container)
        received = []

        backend.listen(CollectionReference("items"), received.append)
        await settle(10)

        assert len(received) == 1
        assert [d.id for d in received[0].docs] == ["a"]
        await backend.close()

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_polling(self, settle) -> None:
        reads = iter(range(1000))
        container = MagicMock()
        container.read_item = AsyncMock(side_effect=lambda **kwargs: item("a", v=next(reads)))
        backend = make_backend(container)
        received = []

        def consumer(snapshot) -> None:
            received.append(snapshot)
            if len(received) == 1:
                raise ValueError("consumer bug")

        backend.listen(DocumentReference("items/a"), consumer)
        await settle(20)

        assert len(received) > 1
        assert backend._poll_tasks
        await backend.close()


class TestLifecycle:
    """Tests for connection setup and teardown."""

    @pytest.mark.asyncio
    async def test_initialize_creates_database_and_container_once(self) -> None:
        container = MagicMock()
        database = MagicMock()
        database.create_container_if_not_exists = AsyncMock(return_value=container)
        client = MagicMock()
        client.create_database_if_not_exists = AsyncMock(return_value=database)
        client.close = AsyncMock()

        with patch(
            "document_mirror.backends.cosmos.CosmosClient", return_value=client
        ) as client_cls:
            backend = CosmosBackend(make_config(database_name="db", container_name="docs"))
            await asyncio.gather(backend.initialize(), backend.initialize())

        client_cls.assert_called_once_with(
            "https://example.documents.azure.com:443/", credential="secret"
        )
        client.create_database_if_not_exists.assert_awaited_once_with(id="db")
        kwargs = database.create_container_if_not_exists.await_args.kwargs
        assert kwargs["id"] == "docs"
        assert kwargs["partition_key"]["paths"] == [PARTITION_KEY_PATH]
        assert backend.is_initialized

        await backend.close()
        client.close.assert_awaited_once()
        assert not backend.is_initialized

    @pytest.mark.asyncio
    async def test_unauthorized_becomes_authentication_error(self) -> None:
        client = MagicMock()
        client.create_database_if_not_exists = AsyncMock(
            side_effect=CosmosHttpResponseError(status_code=401, message="unauthorized")
        )

        with patch("document_mirror.backends.cosmos.CosmosClient", return_value=client):
            backend = CosmosBackend(make_config())
            with pytest.raises(AuthenticationError):
                await backend.initialize()

        assert not backend.is_initialized

    @pytest.mark.asyncio
    async def test_key_auth_without_key(self) -> None:
        backend = CosmosBackend(make_config(key=None))

        with pytest.raises(AuthenticationError):
            await backend.initialize()
