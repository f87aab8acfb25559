# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cbim.exceptions import StoreError
from cbim.feature_versions import Version
from cbim.store.base import CouchbaseIndex, IndexCreatePlan, IndexStore, TickHandler, WithClause
from cbim.utils import DEFAULT_COLLECTION, DEFAULT_SCOPE, ensure_escaped, get_keyspace

logger = logging.getLogger(__name__)

# Seconds between "still building" ticks while waiting for indexes
WAIT_TICK_INTERVAL = 10
# Seconds between polls of index state
WAIT_POLL_INTERVAL = 1

_RETAIN_DELETED_XATTR = re.compile(r'"retain_deleted_xattr"\s*:\s*true')
_SECURE_SCHEMES = ("couchbases", "https")


def _json_or_none(response: httpx.Response) -> Optional[Any]:
    try:
        return response.json()
    except ValueError:
        return None


def _normalize_system_index(row: Dict[str, Any]) -> Dict[str, Any]:
    """Rows without bucket_id predate collections and belong to the default collection"""
    if not row.get("bucket_id"):
        return {
            **row,
            "bucket_id": row.get("keyspace_id"),
            "scope_id": DEFAULT_SCOPE,
            "keyspace_id": DEFAULT_COLLECTION,
        }
    return row


def _is_status_match(index: CouchbaseIndex, status: Dict[str, Any]) -> bool:
    # Status names carry a " (replica N)" suffix for replicas
    index_name = status.get("index", "").split(" ", 1)[0]
    return (
        index.name == index_name
        and index.scope == (status.get("scope") or DEFAULT_SCOPE)
        and index.collection == (status.get("collection") or DEFAULT_COLLECTION)
    )


class CouchbaseIndexStore(IndexStore):
    """
    Index store backed by the Couchbase REST APIs.

    N1QL statements go to the query service, index status and cluster version
    come from the cluster manager.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        bucket_name: str,
        query_url: str,
        management_url: str,
        is_secure: bool = False,
        request_timeout: float = 75,
    ):
        self._client = client
        self._bucket_name = bucket_name
        self._query_url = query_url.rstrip("/")
        self._management_url = management_url.rstrip("/")
        self._is_secure = is_secure
        self._request_timeout = request_timeout

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    @property
    def is_secure(self) -> bool:
        return self._is_secure

    @staticmethod
    def is_secure_url(cluster: str) -> bool:
        return urlparse(cluster).scheme in _SECURE_SCHEMES

    async def query(self, statement: str) -> List[Any]:
        """
        Runs a N1QL statement against the query service

        Returns:
            The result rows

        Raises:
            StoreError: If the request fails or the query does not succeed
        """
        logger.debug(f"Executing query: {statement}")

        try:
            response = await self._client.post(
                f"{self._query_url}/query/service",
                data={"statement": statement, "timeout": f"{int(self._request_timeout)}s"},
                timeout=self._request_timeout + 5,
            )
        except httpx.HTTPError as e:
            raise StoreError(f"Query request failed: {e}") from e

        body = _json_or_none(response)
        if not isinstance(body, dict):
            raise StoreError(f"operation failed ({response.status_code})", response.status_code)

        if body.get("status") != "success":
            errors = body.get("errors") or []
            message = errors[0].get("msg") if errors else f"query {body.get('status', 'failed')}"
            raise StoreError(message, response.status_code)

        return body.get("results") or []

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get_management(self, path: str) -> Any:
        response = await self._client.get(f"{self._management_url}{path}", timeout=5)
        body = _json_or_none(response)

        if response.status_code != 200:
            if isinstance(body, dict) and body.get("reason"):
                raise StoreError(str(body["reason"]), response.status_code)
            raise StoreError(f"operation failed ({response.status_code})", response.status_code)

        return body

    async def _management(self, path: str) -> Any:
        try:
            return await self._get_management(path)
        except httpx.HTTPError as e:
            raise StoreError(f"Request to {path} failed: {e}") from e

    async def _get_all_indexes(self) -> List[Dict[str, Any]]:
        bucket = self._bucket_name
        statement = (
            "SELECT idx.* FROM system:indexes AS idx"
            f' WHERE ((bucket_id IS MISSING AND keyspace_id = "{bucket}")'
            f' OR bucket_id = "{bucket}")'
            ' AND `using`="gsi" ORDER BY is_primary DESC, name ASC'
        )
        rows = await self.query(statement)
        return [_normalize_system_index(row) for row in rows]

    async def _get_index_statuses(self) -> List[Dict[str, Any]]:
        body = await self._management("/indexStatus")
        return [status for status in (body or {}).get("indexes") or [] if status.get("bucket") == self._bucket_name]

    async def get_indexes(self, scope: Optional[str] = None, collection: Optional[str] = None) -> List[CouchbaseIndex]:
        indexes = [
            CouchbaseIndex(
                name=row["name"],
                scope=row["scope_id"],
                collection=row["keyspace_id"],
                is_primary=bool(row.get("is_primary")),
                index_key=list(row.get("index_key") or []),
                condition=row.get("condition"),
                partition=row.get("partition"),
                state=row.get("state", ""),
            )
            for row in await self._get_all_indexes()
            if not scope or (row["scope_id"] == scope and row["keyspace_id"] == collection)
        ]

        # Enrich with node, replica and partition details from the index status API
        for status in await self._get_index_statuses():
            index = next((index for index in indexes if _is_status_match(index, status)), None)
            if index is None:
                continue

            # Partitioned indexes report the same hosts for every replica, keep only the first
            if not index.partition or not index.nodes:
                index.nodes.extend(status.get("hosts") or [])

            # Each status row beyond the first is one replica
            index.num_replica = 0 if index.num_replica is None else index.num_replica + 1

            # Replica rows may omit the definition
            index.retain_deleted_xattr = index.retain_deleted_xattr or bool(
                _RETAIN_DELETED_XATTR.search(status.get("definition") or "")
            )
            index.num_partition = status.get("numPartition") or index.num_partition

        return indexes

    async def get_cluster_version(self) -> Version:
        body = await self._management("/pools/default")
        nodes = (body or {}).get("nodes") or []

        compatibilities = [node["clusterCompatibility"] for node in nodes if "clusterCompatibility" in node]
        return Version.from_compatibility(min(compatibilities) if compatibilities else 0)

    async def create_index(self, statement: str) -> None:
        await self.query(statement)

    def _get_alter_statement(self, index_name: str, scope: str, collection: str, with_clause: WithClause) -> str:
        if scope == DEFAULT_SCOPE and collection == DEFAULT_COLLECTION:
            # Legacy syntax for the default collection, for compatibility with older clusters
            statement = f"ALTER INDEX {ensure_escaped(self._bucket_name)}.{ensure_escaped(index_name)} WITH "
        else:
            keyspace = get_keyspace(self._bucket_name, scope, collection)
            statement = f"ALTER INDEX {ensure_escaped(index_name)} ON {keyspace} WITH "

        return statement + json.dumps(with_clause, separators=(",", ":"))

    async def move_index(self, index_name: str, scope: str, collection: str, nodes: List[str]) -> None:
        with_clause = {"action": "move", "nodes": nodes}
        await self.query(self._get_alter_statement(index_name, scope, collection, with_clause))

    async def resize_index(
        self, index_name: str, scope: str, collection: str, num_replica: int, nodes: Optional[List[str]] = None
    ) -> None:
        with_clause: WithClause = {"action": "replica_count", "num_replica": num_replica}
        if nodes:
            with_clause["nodes"] = nodes

        await self.query(self._get_alter_statement(index_name, scope, collection, with_clause))

    async def drop_index(self, index_name: str, scope: str = DEFAULT_SCOPE, collection: str = DEFAULT_COLLECTION) -> None:
        if scope == DEFAULT_SCOPE and collection == DEFAULT_COLLECTION:
            statement = f"DROP INDEX {ensure_escaped(self._bucket_name)}.{ensure_escaped(index_name)}"
        else:
            statement = f"DROP INDEX {ensure_escaped(index_name)} ON {get_keyspace(self._bucket_name, scope, collection)}"

        await self.query(statement)

    async def get_query_plan(self, statement: str) -> IndexCreatePlan:
        rows = await self.query(f"EXPLAIN {statement}")
        plan = (rows[0] if rows else {}).get("plan") or {}

        if plan.get("keys"):
            # Older servers return bare strings rather than {"expr": ...}
            plan["keys"] = [{"expr": key} if isinstance(key, str) else key for key in plan["keys"]]

        return plan

    async def build_deferred_indexes(
        self, scope: str = DEFAULT_SCOPE, collection: str = DEFAULT_COLLECTION
    ) -> List[str]:
        deferred = [
            row["name"]
            for row in await self._get_all_indexes()
            if row["scope_id"] == scope
            and row["keyspace_id"] == collection
            and row.get("state") in ("deferred", "pending")
        ]

        if not deferred:
            return []

        keyspace = get_keyspace(self._bucket_name, scope, collection)
        names = ", ".join(ensure_escaped(name) for name in deferred)
        await self.query(f"BUILD INDEX ON {keyspace} ({names})")

        logger.debug(f"Building deferred indexes on {keyspace}: {deferred}")
        return deferred

    async def wait_for_index_build(
        self,
        timeout: Optional[float] = None,
        tick_handler: Optional[TickHandler] = None,
        scope: str = DEFAULT_SCOPE,
        collection: str = DEFAULT_COLLECTION,
    ) -> bool:
        start_time = time.monotonic()
        last_tick = start_time

        def test_tick():
            nonlocal last_tick
            now = time.monotonic()
            if now - last_tick >= WAIT_TICK_INTERVAL:
                last_tick = now
                if tick_handler:
                    tick_handler(now - start_time)

        while not timeout or time.monotonic() - start_time < timeout:
            pending = [
                row
                for row in await self._get_all_indexes()
                if row["scope_id"] == scope and row["keyspace_id"] == collection and row.get("state") != "online"
            ]

            if not pending:
                return True

            # Listing indexes has latency, so check for a tick before and after sleeping
            test_tick()
            await asyncio.sleep(WAIT_POLL_INTERVAL)
            test_tick()

        return False
