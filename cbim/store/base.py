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

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from cbim.feature_versions import Version
from cbim.utils import DEFAULT_COLLECTION, DEFAULT_SCOPE

# Parameters sent alongside CREATE INDEX or ALTER INDEX:
# action, num_replica, nodes, num_partition, retain_deleted_xattr, defer_build
WithClause = Dict[str, Any]

# Subset of the fields returned on a query plan for CREATE INDEX:
# keys ([{"expr": ..., "desc": ...}]), where, partition ({"exprs": [...], "strategy": ...})
IndexCreatePlan = Dict[str, Any]

# Called with the number of seconds elapsed while waiting for indexes to build
TickHandler = Callable[[float], None]


@dataclass
class CouchbaseIndex:
    """Snapshot of an index as it currently exists on the cluster"""

    name: str
    scope: str = DEFAULT_SCOPE
    collection: str = DEFAULT_COLLECTION
    is_primary: bool = False
    index_key: List[str] = field(default_factory=list)
    condition: Optional[str] = None
    partition: Optional[str] = None
    num_partition: int = 1
    nodes: List[str] = field(default_factory=list)
    # None when the cluster did not report any replica information
    num_replica: Optional[int] = None
    retain_deleted_xattr: bool = False
    state: str = "online"


class IndexStore(ABC):
    """Abstract interface to the cluster's secondary index service for a single bucket"""

    @property
    @abstractmethod
    def bucket_name(self) -> str:
        """Name of the bucket being managed"""

    @property
    def is_secure(self) -> bool:
        return False

    @abstractmethod
    async def get_indexes(self, scope: Optional[str] = None, collection: Optional[str] = None) -> List[CouchbaseIndex]:
        """
        Get all GSI indexes on the bucket, including node assignments and replica counts

        Args:
            scope: Optional scope filter, must be used together with collection
            collection: Optional collection filter
        """

    @abstractmethod
    async def get_cluster_version(self) -> Version:
        pass

    @abstractmethod
    async def create_index(self, statement: str) -> None:
        """Executes a CREATE INDEX statement"""

    @abstractmethod
    async def move_index(self, index_name: str, scope: str, collection: str, nodes: List[str]) -> None:
        """Moves index replicas between nodes"""

    @abstractmethod
    async def resize_index(
        self, index_name: str, scope: str, collection: str, num_replica: int, nodes: Optional[List[str]] = None
    ) -> None:
        """Changes the number of replicas of an index"""

    @abstractmethod
    async def drop_index(self, index_name: str, scope: str = DEFAULT_SCOPE, collection: str = DEFAULT_COLLECTION) -> None:
        pass

    @abstractmethod
    async def get_query_plan(self, statement: str) -> IndexCreatePlan:
        """
        Dry runs a statement with EXPLAIN and returns the plan.
        Must not create any index as a side effect.
        """

    @abstractmethod
    async def build_deferred_indexes(
        self, scope: str = DEFAULT_SCOPE, collection: str = DEFAULT_COLLECTION
    ) -> List[str]:
        """
        Builds any outstanding deferred indexes in the keyspace

        Returns:
            Names of the indexes which were built
        """

    @abstractmethod
    async def wait_for_index_build(
        self,
        timeout: Optional[float] = None,
        tick_handler: Optional[TickHandler] = None,
        scope: str = DEFAULT_SCOPE,
        collection: str = DEFAULT_COLLECTION,
    ) -> bool:
        """
        Waits until every index in the keyspace is online

        Returns:
            False if the timeout elapsed first, never raises on timeout
        """
