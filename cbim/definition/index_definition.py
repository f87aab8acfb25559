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

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional

from cbim.configuration.types import INDEX_CONFIGURATION_KEYS, ConfigurationItem, Lifecycle, Partition
from cbim.configuration.validation import INDEX_VALIDATORS, validate_fields
from cbim.definition.post_process import resolve_post_process
from cbim.exceptions import InvalidDefinitionError, StoreError, ValidationError
from cbim.feature_versions import FeatureVersions, Version
from cbim.plan.mutations import (
    CreateIndexMutation,
    DropIndexMutation,
    IndexMutation,
    MoveIndexMutation,
    ResizeIndexMutation,
    UpdateIndexMutation,
)
from cbim.store.base import CouchbaseIndex, IndexStore, WithClause
from cbim.utils import DEFAULT_COLLECTION, DEFAULT_SCOPE, ensure_escaped, ensure_port, get_keyspace

logger = logging.getLogger(__name__)

# Reserved index name used for EXPLAIN dry runs, must never collide with a real index
NORMALIZE_INDEX_NAME = "__cbim_normalize"

# Highest manual replica number scanned when retiring replicas after num_replica is lowered
MAX_REPLICA_SCAN = 10

_MISSING = object()


@dataclass
class MutationContext:
    """State of the cluster for a single sync run"""

    current_indexes: List[CouchbaseIndex] = field(default_factory=list)
    cluster_version: Optional[Version] = None
    is_secure: bool = False


def _replica_suffix(replica_num: int) -> str:
    return f"_replica{replica_num}" if replica_num else ""


class IndexDefinition:
    """
    Desired state of a single index, built from a definition file entry.

    Overrides may be applied any number of times after construction, each one
    followed by validation of the whole definition.
    """

    def __init__(self, configuration: ConfigurationItem):
        name = configuration.get("name")
        if not name or not isinstance(name, str):
            raise ValidationError("Index definition does not have a 'name'")

        if bool(configuration.get("scope")) != bool(configuration.get("collection")):
            raise ValidationError(f"if scope is supplied collection must also be supplied in {name}")

        self.name: str = name
        self.scope: str = configuration.get("scope") or DEFAULT_SCOPE
        self.collection: str = configuration.get("collection") or DEFAULT_COLLECTION

        self.is_primary: bool = False
        self.index_key: List[str] = []
        self.condition: str = ""
        self.partition: Optional[Partition] = None
        self.manual_replica: bool = False
        self.num_replica: Optional[int] = None
        self.nodes: Optional[List[str]] = None
        self.retain_deleted_xattr: bool = False
        self.lifecycle: Lifecycle = Lifecycle()

        self.apply_override(configuration, apply_missing=True)

    def __repr__(self) -> str:
        return f"IndexDefinition({self.scope}.{self.collection}.{self.name})"

    def apply_override(self, override: ConfigurationItem, apply_missing: bool = False) -> None:
        """
        Apply overrides to the index definition

        Args:
            override: Partial configuration. Missing keys are left untouched, an explicit
                None clears nullable values.
            apply_missing: Also process keys missing from the override, computing their defaults.

        Raises:
            ValidationError: If a value is malformed or the resulting definition is invalid.
                The definition is left as modified and should be discarded.
        """
        validate_fields(INDEX_VALIDATORS, override, name=self.name)

        for key in INDEX_CONFIGURATION_KEYS:
            if apply_missing or key in override:
                getattr(self, f"_apply_{key}")(override.get(key, _MISSING))

        try:
            INDEX_VALIDATORS.post_validate(self)
        except ValidationError as e:
            raise ValidationError(f"{e} in {self.name}") from e

    def with_override(self, override: ConfigurationItem) -> "IndexDefinition":
        """Returns a copy of this definition with the override applied, leaving this one untouched"""
        result = copy.deepcopy(self)
        result.apply_override(override)
        return result

    def _apply_is_primary(self, value: Any) -> None:
        self.is_primary = value is not _MISSING and bool(value)

    def _apply_index_key(self, value: Any) -> None:
        if value is _MISSING or not value:
            self.index_key = []
        elif isinstance(value, str):
            self.index_key = [value]
        else:
            self.index_key = list(value)

    def _apply_condition(self, value: Any) -> None:
        self.condition = "" if value is _MISSING or value is None else value

    def _apply_partition(self, value: Any) -> None:
        if value is _MISSING:
            return

        if value is None:
            self.partition = None
        else:
            self.partition = (self.partition or Partition()).merge(value)

    def _apply_nodes(self, value: Any) -> None:
        self.nodes = None if value is _MISSING or value is None else list(value)

        # for partitioned indexes num_replica and nodes are decoupled
        if self.nodes and self.partition is None:
            self.num_replica = len(self.nodes) - 1

    def _apply_manual_replica(self, value: Any) -> None:
        self.manual_replica = value is not _MISSING and bool(value)

    def _apply_num_replica(self, value: Any) -> None:
        if value is _MISSING:
            value = None
            if self.partition is not None:
                return

        if self.partition is None:
            if value is None and self.nodes:
                value = len(self.nodes) - 1
            if value is not None:
                self.num_replica = value
        else:
            self.num_replica = value

    def _apply_retain_deleted_xattr(self, value: Any) -> None:
        self.retain_deleted_xattr = value is not _MISSING and bool(value)

    def _apply_lifecycle(self, value: Any) -> None:
        if value is not _MISSING and value:
            self.lifecycle.merge(value)

    def _apply_post_process(self, value: Any) -> None:
        if value is _MISSING or value is None:
            return

        hook = resolve_post_process(value)
        hook(self)

    def get_partition_string(self) -> str:
        """Formats the partition as a string, i.e. HASH(`type`)"""
        return str(self.partition) if self.partition is not None else ""

    def get_create_statement(
        self, bucket_name: str, index_name: Optional[str] = None, with_clause: Optional[WithClause] = None
    ) -> str:
        """Formats a CREATE INDEX query which makes this index"""
        index_name = ensure_escaped(index_name or self.name)
        keyspace = get_keyspace(bucket_name, self.scope, self.collection)

        if self.is_primary:
            statement = f"CREATE PRIMARY INDEX {index_name} ON {keyspace}"
        else:
            statement = f"CREATE INDEX {index_name} ON {keyspace} ({', '.join(self.index_key)})"

        if self.partition is not None:
            statement += f" PARTITION BY {self.get_partition_string()}"

        if not self.is_primary and self.condition:
            statement += f" WHERE {self.condition}"

        with_clause = {**(with_clause or {}), "defer_build": True}

        # Don't include zero replicas or an empty node list
        if not with_clause.get("num_replica"):
            with_clause.pop("num_replica", None)
        if not with_clause.get("nodes"):
            with_clause.pop("nodes", None)

        statement += " WITH " + json.dumps(with_clause, separators=(",", ":"))
        return statement

    async def normalize(self, store: IndexStore) -> None:
        """
        Normalizes index_key, condition and partition using the store's own formatting,
        so they can be compared directly with existing indexes.

        Raises:
            InvalidDefinitionError: If the store rejects the CREATE INDEX statement
        """
        if self.is_primary or self.lifecycle.drop:
            return

        # EXPLAIN of a CREATE INDEX returns a plan with keys and condition normalized,
        # a reserved name avoids rejection due to name conflicts
        statement = self.get_create_statement(store.bucket_name, NORMALIZE_INDEX_NAME)

        try:
            plan = await store.get_query_plan(statement)
        except StoreError as e:
            raise InvalidDefinitionError(self.name, str(e)) from e

        plan = plan or {}
        self.index_key = [key["expr"] + (" DESC" if key.get("desc") else "") for key in plan.get("keys") or []]
        self.condition = plan.get("where") or ""

        if plan.get("partition"):
            # num_partition is creation only and doesn't appear in the plan
            num_partition = self.partition.num_partition if self.partition is not None else None
            self.partition = Partition.from_dict(plan["partition"]).merge({"num_partition": num_partition})
        else:
            self.partition = None

        logger.debug(f"Normalized {self.name}: keys={self.index_key} condition={self.condition!r}")

    def normalize_node_list(self, context: MutationContext) -> None:
        """
        Ensures that the node list has port numbers and is sorted in the same
        order as the current indexes. This allows easy matching of existing
        node assignments, reducing reindex load due to minor node shifts.
        """
        if not self.nodes:
            return

        self.nodes = sorted(ensure_port(node, context.is_secure) for node in self.nodes)

        if not self.manual_replica:
            # Automatic replica placement is left to the cluster
            return

        replica_count = (self.num_replica or 0) + 1
        new_nodes: List[Optional[str]] = [None] * replica_count
        unused = list(self.nodes)

        for replica_num in range(replica_count):
            index = self._find_match(context.current_indexes, _replica_suffix(replica_num))
            if index is not None and index.nodes and index.nodes[0] in unused:
                unused.remove(index.nodes[0])
                new_nodes[replica_num] = index.nodes[0]

        # Fill in the remaining replicas that didn't have a match
        for replica_num in range(replica_count):
            if new_nodes[replica_num] is None:
                if not unused:
                    raise ValidationError(f"mismatch between num_replica and nodes in {self.name}")
                new_nodes[replica_num] = unused.pop(0)

        self.nodes = new_nodes

    def get_mutations(self, context: MutationContext) -> Iterator[IndexMutation]:
        """Gets the required index mutations, if any, to sync this definition"""
        self.normalize_node_list(context)

        mutations: List[IndexMutation] = []

        if not self.manual_replica:
            mutations.extend(self._get_mutation(context))
        else:
            num_replica = self.num_replica or 0
            for replica_num in range(num_replica + 1):
                mutations.extend(self._get_mutation(context, replica_num))

            if not self.is_primary:
                # Drop replicas left over from a higher num_replica
                for replica_num in range(num_replica + 1, MAX_REPLICA_SCAN + 1):
                    mutations.extend(self._get_mutation(context, replica_num, force_drop=True))

        phase_mutations(mutations)

        yield from mutations

    def _get_mutation(
        self, context: MutationContext, replica_num: int = 0, force_drop: bool = False
    ) -> Iterator[IndexMutation]:
        suffix = _replica_suffix(replica_num)
        name = self.name + suffix

        current_index = self._find_match(context.current_indexes, suffix)
        drop = force_drop or self.lifecycle.drop

        if current_index is None:
            if not drop:
                yield CreateIndexMutation(self, name, self._get_with_clause(context, replica_num))
        elif drop:
            yield DropIndexMutation(self, current_index.name)
        elif not self.is_primary and self._requires_update(current_index):
            yield UpdateIndexMutation(self, name, self._get_with_clause(context, replica_num), current_index)
        elif (
            not self.manual_replica
            and self.num_replica is not None
            and current_index.num_replica is not None
            and self.num_replica != current_index.num_replica
        ):
            # Number of replicas changed for an automatic replica index
            if FeatureVersions.alter_index_replica_count(context.cluster_version):
                yield ResizeIndexMutation(self, name)
            else:
                yield UpdateIndexMutation(self, name, self._get_with_clause(context, replica_num), current_index)
        elif self.nodes and current_index.nodes:
            current_nodes = sorted(current_index.nodes)

            if self.manual_replica:
                if self.nodes[replica_num] != current_nodes[0]:
                    yield UpdateIndexMutation(self, name, self._get_with_clause(context, replica_num), current_index)
            elif self.nodes != current_nodes:
                yield MoveIndexMutation(
                    self, name, unsupported=not FeatureVersions.alter_index_move(context.cluster_version)
                )

    def _get_with_clause(self, context: MutationContext, replica_num: int = 0) -> WithClause:
        if not self.manual_replica:
            with_clause = {
                "nodes": [ensure_port(node, context.is_secure) for node in self.nodes] if self.nodes else None,
                "num_replica": self.num_replica,
            }
        else:
            with_clause = {
                "nodes": [ensure_port(self.nodes[replica_num], context.is_secure)] if self.nodes else None,
            }

        if self.retain_deleted_xattr:
            with_clause["retain_deleted_xattr"] = True

        if self.partition is not None and self.partition.num_partition:
            with_clause["num_partition"] = self.partition.num_partition

        return {key: value for key, value in with_clause.items() if value is not None}

    def _is_match(self, index: CouchbaseIndex, suffix: str = "") -> bool:
        """Tests to see if a live index matches this definition"""
        if index.scope != self.scope or index.collection != self.collection:
            return False

        if self.is_primary:
            # Any primary index is a match, regardless of name
            return bool(index.is_primary)

        return ensure_escaped(self.name + suffix) == ensure_escaped(index.name)

    def _find_match(self, indexes: List[CouchbaseIndex], suffix: str = "") -> Optional[CouchbaseIndex]:
        return next((index for index in indexes if self._is_match(index, suffix)), None)

    def _requires_update(self, index: CouchbaseIndex) -> bool:
        """Tests to see if a live index requires updating, ignoring node changes"""
        return (
            (index.condition or "") != self.condition
            or list(index.index_key) != self.index_key
            or (index.partition or "") != self.get_partition_string()
            or bool(
                self.partition is not None
                and self.partition.num_partition
                and self.partition.num_partition != index.num_partition
            )
            or bool(index.retain_deleted_xattr) != self.retain_deleted_xattr
        )


def phase_mutations(mutations: List[IndexMutation]) -> None:
    """
    Assigns phases to the mutations of a single index definition.

    Creates run first, each update runs in its own phase after the creates,
    everything else runs in the last phase.
    """
    next_phase = 1

    for mutation in mutations:
        if isinstance(mutation, CreateIndexMutation):
            mutation.phase = 1
            next_phase = 2

    for mutation in mutations:
        if isinstance(mutation, UpdateIndexMutation):
            mutation.phase = next_phase
            next_phase += 1

    for mutation in mutations:
        if not isinstance(mutation, (CreateIndexMutation, UpdateIndexMutation)):
            mutation.phase = next_phase
