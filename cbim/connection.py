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

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx

from cbim.config import Settings, settings
from cbim.store.couchbase import CouchbaseIndexStore

logger = logging.getLogger(__name__)


@dataclass
class ConnectionInfo:
    cluster: str
    username: str
    password: str
    bucket_name: str


class ConnectionManager:
    """
    Wraps a process in a connection to the cluster

    Usage:
        async with ConnectionManager(info) as store:
            await store.get_indexes()
    """

    def __init__(self, connection_info: ConnectionInfo, config: Optional[Settings] = None):
        self.connection_info = connection_info
        self.config = config or settings
        self._client: Optional[httpx.AsyncClient] = None

    def _get_host(self) -> str:
        """First host of the connection string, i.e. db1 for couchbase://user@db1:11210,db2"""
        cluster = self.connection_info.cluster
        netloc = urlparse(cluster if "//" in cluster else f"//{cluster}").netloc
        host = netloc.rsplit("@", 1)[-1].split(",", 1)[0].strip()

        if host.startswith("["):
            # IPv6 literal, keep the brackets and drop any port
            return host[: host.find("]") + 1] if "]" in host else host
        return host.split(":", 1)[0] or "localhost"

    def _get_urls(self, is_secure: bool) -> Tuple[str, str]:
        host = self._get_host()
        scheme = "https" if is_secure else "http"

        if is_secure:
            query_port, management_port = self.config.query_port_secure, self.config.management_port_secure
        else:
            query_port, management_port = self.config.query_port, self.config.management_port

        return f"{scheme}://{host}:{query_port}", f"{scheme}://{host}:{management_port}"

    async def __aenter__(self) -> CouchbaseIndexStore:
        is_secure = CouchbaseIndexStore.is_secure_url(self.connection_info.cluster)
        query_url, management_url = self._get_urls(is_secure)

        logger.debug(f"Connecting to {management_url} for bucket {self.connection_info.bucket_name}")

        self._client = httpx.AsyncClient(
            auth=(self.connection_info.username, self.connection_info.password),
            verify=self.config.verify_tls,
        )

        return CouchbaseIndexStore(
            self._client,
            self.connection_info.bucket_name,
            query_url=query_url,
            management_url=management_url,
            is_secure=is_secure,
            request_timeout=self.config.request_timeout,
        )

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

