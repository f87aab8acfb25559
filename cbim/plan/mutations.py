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
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from cbim.store.base import CouchbaseIndex, IndexStore, WithClause
from cbim.utils import DEFAULT_COLLECTION, DEFAULT_SCOPE

if TYPE_CHECKING:
    from cbim.definition.index_definition import IndexDefinition

logger = logging.getLogger(__name__)


class IndexMutation(ABC):
    """A single planned change to one index"""

    def __init__(self, definition: "IndexDefinition", name: Optional[str] = None):
        self.definition = definition
        self.name = name or definition.name
        self.scope = definition.scope
        self.collection = definition.collection
        self.phase = 1

    @property
    def display_name(self) -> str:
        """Name of the index, including the scope and collection if not the defaults"""
        if self.scope == DEFAULT_SCOPE and self.collection == DEFAULT_COLLECTION:
            return self.name
        return f"{self.scope}.{self.collection}.{self.name}"

    @abstractmethod
    async def execute(self, store: IndexStore, logger: logging.Logger = logger) -> None:
        pass

    @abstractmethod
    def print(self, logger: logging.Logger = logger) -> None:
        """Logs a human readable description of the change"""

    def is_safe(self) -> bool:
        """True if the mutation does not risk losing data or availability"""
        return True

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.display_name}, phase={self.phase})"


class CreateIndexMutation(IndexMutation):
    """Creates a new index, deferring the build"""

    def __init__(self, definition: "IndexDefinition", name: Optional[str] = None, with_clause: WithClause = None):
        super().__init__(definition, name)
        self.with_clause: WithClause = with_clause or {}

    def print(self, logger: logging.Logger = logger) -> None:
        definition = self.definition

        logger.info(f"Create: {self.display_name}")

        if definition.is_primary:
            logger.info("  Keys: PRIMARY")
        else:
            logger.info(f"  Keys: {', '.join(definition.index_key)}")

        if definition.condition:
            logger.info(f"  Cond: {definition.condition}")

        if definition.partition is not None:
            logger.info(f"  Part: {definition.get_partition_string()}")

            if definition.partition.num_partition:
                logger.info(f"# Part: {definition.partition.num_partition}")

        if (definition.num_replica or 0) > 0 and not definition.manual_replica:
            logger.info(f"  Repl: {definition.num_replica}")

        if self.with_clause.get("nodes"):
            logger.info(f" Nodes: {','.join(self.with_clause['nodes'])}")

        if self.with_clause.get("retain_deleted_xattr"):
            logger.info(" XATTR: true")

    async def execute(self, store: IndexStore, logger: logging.Logger = logger) -> None:
        logger.info(f"Creating {self.display_name}...")

        statement = self.definition.get_create_statement(store.bucket_name, self.name, self.with_clause)
        await store.create_index(statement)


class DropIndexMutation(IndexMutation):
    """Drops an existing index"""

    def print(self, logger: logging.Logger = logger) -> None:
        logger.info(f"Delete: {self.display_name}")

    async def execute(self, store: IndexStore, logger: logging.Logger = logger) -> None:
        logger.info(f"Deleting {self.display_name}...")

        await store.drop_index(self.name, self.scope, self.collection)

    def is_safe(self) -> bool:
        return False


class UpdateIndexMutation(IndexMutation):
    """Updates an existing index by dropping and recreating it"""

    def __init__(
        self,
        definition: "IndexDefinition",
        name: str,
        with_clause: WithClause,
        existing_index: CouchbaseIndex,
    ):
        super().__init__(definition, name)
        self.with_clause: WithClause = with_clause or {}
        self.existing_index = existing_index

    def print(self, logger: logging.Logger = logger) -> None:
        definition = self.definition
        existing = self.existing_index

        logger.info(f"Update: {self.display_name}")

        if list(existing.index_key) != definition.index_key:
            logger.info(f"  Keys: {','.join(existing.index_key)}")
            logger.info(f"     -> {','.join(definition.index_key)}")

        if definition.partition is not None or existing.partition:
            partition = definition.get_partition_string()
            if (existing.partition or "") != partition:
                logger.info(f"  Part: {existing.partition or 'none'}")
                logger.info(f"     -> {partition or 'none'}")

            num_partition = definition.partition.num_partition if definition.partition is not None else None
            if num_partition and existing.num_partition != num_partition:
                logger.info(f"# Part: {existing.num_partition}")
                logger.info(f"     -> {num_partition}")

        if (existing.condition or "") != (definition.condition or ""):
            logger.info(f"  Cond: {existing.condition or 'none'}")
            logger.info(f"     -> {definition.condition or 'none'}")

        has_replica = max(definition.num_replica or 0, existing.num_replica or 0) > 0
        if not definition.manual_replica and has_replica:
            logger.info(f"  Repl: {existing.num_replica}")
            logger.info(f"     -> {definition.num_replica}")

        nodes = self.with_clause.get("nodes")
        if nodes and existing.nodes and nodes != sorted(existing.nodes):
            logger.info(f" Nodes: {','.join(existing.nodes)}")
            logger.info(f"     -> {','.join(nodes)}")

        retain_deleted_xattr = bool(self.with_clause.get("retain_deleted_xattr"))
        if retain_deleted_xattr != bool(existing.retain_deleted_xattr):
            logger.info(f" XATTR: {str(bool(existing.retain_deleted_xattr)).lower()}")
            logger.info(f"     -> {str(retain_deleted_xattr).lower()}")

    async def execute(self, store: IndexStore, logger: logging.Logger = logger) -> None:
        await DropIndexMutation(self.definition, self.existing_index.name).execute(store, logger)
        await CreateIndexMutation(self.definition, self.name, self.with_clause).execute(store, logger)

    def is_safe(self) -> bool:
        # Each manual replica is updated in its own phase, so the index stays available
        return self.definition.manual_replica and (self.definition.num_replica or 0) > 0


class MoveIndexMutation(IndexMutation):
    """Moves an automatic replica index to a different set of nodes"""

    def __init__(self, definition: "IndexDefinition", name: str, unsupported: bool = False):
        super().__init__(definition, name)

        if not definition.nodes:
            raise ValueError(f"Missing nodes on index definition {definition.name}")

        self.nodes: List[str] = list(definition.nodes)
        self.unsupported = unsupported

    def print(self, logger: logging.Logger = logger) -> None:
        logger.info(f"  Move: {self.display_name}")
        logger.info(f" Nodes: {','.join(self.nodes)}")

        if self.unsupported:
            logger.info("        (skipped, ALTER INDEX is not supported by this cluster)")

    async def execute(self, store: IndexStore, logger: logging.Logger = logger) -> None:
        if self.unsupported:
            logger.warning(f"Skipping move of {self.display_name}, ALTER INDEX is not supported by this cluster")
            return

        logger.info(f"Moving {self.display_name}...")

        await store.move_index(self.name, self.scope, self.collection, self.nodes)


class ResizeIndexMutation(IndexMutation):
    """Changes the number of replicas of an automatic replica index"""

    def print(self, logger: logging.Logger = logger) -> None:
        logger.info(f"Resize: {self.display_name}")
        logger.info(f"  Repl: {self.definition.num_replica}")

        if self.definition.nodes:
            logger.info(f" Nodes: {','.join(self.definition.nodes)}")

    async def execute(self, store: IndexStore, logger: logging.Logger = logger) -> None:
        logger.info(f"Resizing {self.display_name}...")

        await store.resize_index(
            self.name,
            self.scope,
            self.collection,
            self.definition.num_replica or 0,
            self.definition.nodes,
        )
