"""
Azure Cosmos DB document backend.

Stores every mirrored record in one container partitioned by collection
path. An item looks like:

    {"id": "t-1", "collection": "users/alice/todos", "fields": {...}}

Cosmos DB has no push channel suited to per-query listeners, so each
listener is a polling task that re-reads its document or query every
``poll_interval`` seconds and emits a snapshot on the first read and
whenever the decoded state changes.

Queries ordering by more than one field need a matching composite
index on the container.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient, DatabaseProxy
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from ..config import CosmosAuthMethod, CosmosConfig
from ..equality import deep_equal
from ..exceptions import AuthenticationError, RemoteWriteError, StorageConnectionError
from ..references import (
    CollectionReference,
    DocumentReference,
    FieldFilter,
    Query,
    auto_id,
)
from .base import DocumentBackend, DocumentSnapshot, ListenerHandle, QuerySnapshot

logger = logging.getLogger(__name__)

PARTITION_KEY_PATH = "/collection"

_SQL_COMPARISONS = {"==": "=", "!=": "!=", "<": "<", "<=": "<=", ">": ">", ">=": ">="}


def build_credential(config: CosmosConfig) -> Any:
    """Credential for the configured auth method (the account key for KEY auth).

    Raises:
        AuthenticationError: If the method's settings are incomplete, or
            azure-identity is not installed for an Azure AD method
    """
    endpoint = config.endpoint or "cosmos"
    method = config.auth_method

    if method == CosmosAuthMethod.KEY:
        if not config.key:
            raise AuthenticationError(endpoint, "key auth selected but no key configured")
        return config.key

    try:
        from azure.identity import aio as identity_aio
    except ImportError as e:
        raise AuthenticationError(
            endpoint, "Azure AD auth needs the azure-identity package"
        ) from e

    if method == CosmosAuthMethod.SERVICE_PRINCIPAL:
        missing = [
            name
            for name in ("azure_tenant_id", "azure_client_id", "azure_client_secret")
            if not getattr(config, name)
        ]
        if missing:
            raise AuthenticationError(
                endpoint, f"service principal auth needs {', '.join(missing)}"
            )
        return identity_aio.ClientSecretCredential(
            tenant_id=config.azure_tenant_id,
            client_id=config.azure_client_id,
            client_secret=config.azure_client_secret,
        )

    if method == CosmosAuthMethod.MANAGED_IDENTITY:
        # A client id selects a user-assigned identity
        options = {"client_id": config.azure_client_id} if config.azure_client_id else {}
        return identity_aio.ManagedIdentityCredential(**options)

    return identity_aio.DefaultAzureCredential()


def is_transient(error: CosmosHttpResponseError) -> bool:
    """Throttling (429), server errors (5xx) and status-less failures are retried."""
    status = error.status_code
    return not status or status == 429 or status >= 500


def field_expression(field_path: str) -> str:
    """Translate a dotted field path into a Cosmos SQL property expression."""
    parts = "".join(f"[{json.dumps(part)}]" for part in field_path.split("."))
    return f"c.fields{parts}"


def _filter_clause(flt: FieldFilter, param: str) -> str:
    expr = field_expression(flt.field)
    if flt.op in _SQL_COMPARISONS:
        return f"{expr} {_SQL_COMPARISONS[flt.op]} {param}"
    if flt.op == "in":
        return f"ARRAY_CONTAINS({param}, {expr})"
    if flt.op == "not-in":
        return f"(IS_DEFINED({expr}) AND NOT ARRAY_CONTAINS({param}, {expr}))"
    if flt.op == "array-contains":
        return f"ARRAY_CONTAINS({expr}, {param})"
    raise ValueError(f"Unsupported filter operator: {flt.op}")


def build_query(ref: CollectionReference | Query) -> tuple[str, list[dict[str, Any]]]:
    """Build a parameterized Cosmos SQL query for a collection or query.

    Returns:
        Tuple of (query text, parameters)
    """
    query = ref if isinstance(ref, Query) else Query(ref)
    clauses = ["c.collection = @collection"]
    parameters: list[dict[str, Any]] = [{"name": "@collection", "value": query.path}]

    for index, flt in enumerate(query.filters):
        param = f"@p{index}"
        value = list(flt.value) if isinstance(flt.value, tuple) else flt.value
        parameters.append({"name": param, "value": value})
        clauses.append(_filter_clause(flt, param))

    for ordering in query.orderings:
        clauses.append(f"IS_DEFINED({field_expression(ordering.field)})")

    sql = "SELECT * FROM c WHERE " + " AND ".join(clauses)

    if query.orderings:
        order = ", ".join(
            f"{field_expression(o.field)} {'DESC' if o.descending else 'ASC'}"
            for o in query.orderings
        )
        sql += f" ORDER BY {order}"
    else:
        sql += " ORDER BY c.id ASC"

    if query.limit_to is not None:
        sql += " OFFSET 0 LIMIT @limit"
        parameters.append({"name": "@limit", "value": query.limit_to})

    return sql, parameters


def to_item(ref: DocumentReference, data: dict[str, Any]) -> dict[str, Any]:
    """Encode a record as a Cosmos item."""
    return {"id": ref.id, "collection": ref.parent.path, "fields": dict(data)}


def from_item(item: dict[str, Any]) -> DocumentSnapshot:
    """Decode a Cosmos item into a DocumentSnapshot."""
    ref = CollectionReference(item["collection"]).document(item["id"])
    return DocumentSnapshot(reference=ref, data=dict(item.get("fields") or {}))


def _snapshot_state(snapshot: DocumentSnapshot | QuerySnapshot) -> Any:
    if isinstance(snapshot, DocumentSnapshot):
        return snapshot.data
    return [(d.reference.path, d.data) for d in snapshot.docs]


class CosmosBackend(DocumentBackend):
    """Document backend on Azure Cosmos DB.

    Manages the connection lifecycle, retries transient failures and
    runs one polling task per active listener.

    Example:
        >>> async with CosmosBackend(CosmosConfig.from_env()) as backend:
        ...     mirror = CollectionMirror(backend, "users/alice/todos")
    """

    def __init__(self, config: CosmosConfig):
        self.config = config
        self._client: CosmosClient | None = None
        self._database: DatabaseProxy | None = None
        self._container: ContainerProxy | None = None
        self._credential: Any = None
        self._init_task: asyncio.Task[None] | None = None
        self._poll_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_initialized(self) -> bool:
        return self._container is not None

    async def initialize(self) -> None:
        """Connect and ensure the database and container exist.

        Safe to call concurrently; the first caller does the work.
        """
        if self._container is not None:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        try:
            await asyncio.shield(self._init_task)
        except Exception:
            self._init_task = None
            raise

    async def _initialize(self) -> None:
        endpoint = self.config.endpoint
        if not endpoint:
            raise StorageConnectionError("cosmos", ValueError("Cosmos endpoint not configured"))

        try:
            self._credential = build_credential(self.config)
            client = CosmosClient(endpoint, credential=self._credential)
            self._client = client

            self._database = await client.create_database_if_not_exists(
                id=self.config.database_name
            )
            self._container = await self._database.create_container_if_not_exists(
                id=self.config.container_name,
                partition_key=PartitionKey(path=PARTITION_KEY_PATH),
            )
            logger.info(
                f"Connected to Cosmos DB {self.config.database_name}/{self.config.container_name}"
            )
        except AuthenticationError:
            raise
        except CosmosHttpResponseError as e:
            if e.status_code == 401:
                raise AuthenticationError(endpoint, str(e)) from e
            raise StorageConnectionError(endpoint, e) from e
        except Exception as e:
            raise StorageConnectionError(endpoint, e) from e

    async def close(self) -> None:
        """Stop all listeners and close the Cosmos DB connection."""
        for task in list(self._poll_tasks):
            task.cancel()
        if self._poll_tasks:
            await asyncio.gather(*self._poll_tasks, return_exceptions=True)
        self._poll_tasks.clear()

        if self._client:
            await self._client.close()
        # Close credential if it has a close method (AAD credentials do)
        if self._credential is not None and hasattr(self._credential, "close"):
            await self._credential.close()

        self._client = None
        self._database = None
        self._container = None
        self._credential = None
        self._init_task = None

    async def __aenter__(self) -> CosmosBackend:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _get_container(self) -> ContainerProxy:
        await self.initialize()
        assert self._container is not None
        return self._container

    # =========================================================================
    # Listeners
    # =========================================================================

    def listen(
        self,
        ref: DocumentReference | CollectionReference | Query,
        callback: Callable[[Any], None],
    ) -> ListenerHandle:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._poll(ref, callback))
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)
        logger.debug(f"Polling listener started on {ref}")

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()
                logger.debug(f"Polling listener stopped on {ref}")

        return unsubscribe

    async def _poll(
        self,
        ref: DocumentReference | CollectionReference | Query,
        callback: Callable[[Any], None],
    ) -> None:
        has_state = False
        last_state: Any = None

        while True:
            try:
                snapshot = await self._read(ref)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Listener read failed on {ref}: {e}")
            else:
                state = _snapshot_state(snapshot)
                if not has_state or not deep_equal(state, last_state):
                    has_state = True
                    last_state = state
                    try:
                        callback(snapshot)
                    except Exception:
                        logger.exception(f"Listener callback raised on {ref}")
            await asyncio.sleep(self.config.poll_interval)

    async def _read(
        self, ref: DocumentReference | CollectionReference | Query
    ) -> DocumentSnapshot | QuerySnapshot:
        if isinstance(ref, DocumentReference):
            return await self.get_document(ref)
        return await self.run_query(ref)

    async def run_query(self, ref: CollectionReference | Query) -> QuerySnapshot:
        """Read the current members of a collection or query."""
        container = await self._get_container()
        sql, parameters = build_query(ref)

        docs: list[DocumentSnapshot] = []
        async for item in container.query_items(
            query=sql,
            parameters=parameters,
            partition_key=ref.path,
        ):
            docs.append(from_item(item))
        return QuerySnapshot(docs=docs)

    # =========================================================================
    # CRUD Operations with Retry
    # =========================================================================

    async def get_document(self, ref: DocumentReference) -> DocumentSnapshot:
        container = await self._get_container()
        try:
            item = await self._with_retry(
                "read",
                ref,
                lambda: container.read_item(item=ref.id, partition_key=ref.parent.path),
            )
        except RemoteWriteError as e:
            if isinstance(e.cause, CosmosResourceNotFoundError):
                return DocumentSnapshot(reference=ref, data=None)
            raise
        return from_item(item)

    async def set_document(self, ref: DocumentReference, data: dict[str, Any]) -> None:
        container = await self._get_container()
        await self._with_retry("set", ref, lambda: container.upsert_item(body=to_item(ref, data)))

    async def add_document(
        self, collection: CollectionReference, data: dict[str, Any]
    ) -> DocumentReference:
        container = await self._get_container()
        ref = collection.document(auto_id())
        await self._with_retry("add", ref, lambda: container.create_item(body=to_item(ref, data)))
        return ref

    async def delete_document(self, ref: DocumentReference) -> None:
        container = await self._get_container()
        try:
            await self._with_retry(
                "delete",
                ref,
                lambda: container.delete_item(item=ref.id, partition_key=ref.parent.path),
            )
        except RemoteWriteError as e:
            if not isinstance(e.cause, CosmosResourceNotFoundError):
                raise

    async def _with_retry(self, operation: str, ref: DocumentReference, call: Any) -> Any:
        """Run ``call``, retrying transient Cosmos errors.

        At most ``max_retries`` attempts, with the delay doubling from
        ``retry_delay``. Client errors and non-Cosmos failures are not
        retried.

        Raises:
            RemoteWriteError: Wrapping the final failure
        """
        attempt = 0
        while True:
            try:
                return await call()
            except CosmosHttpResponseError as e:
                attempt += 1
                if not is_transient(e) or attempt >= self.config.max_retries:
                    raise RemoteWriteError(operation, ref.path, e) from e
                delay = self.config.retry_delay * 2 ** (attempt - 1)
                logger.debug(
                    f"{operation} on {ref} got HTTP {e.status_code}; retry {attempt} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
            except Exception as e:
                raise RemoteWriteError(operation, ref.path, e) from e
