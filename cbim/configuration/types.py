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

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from cbim.utils import DEFAULT_COLLECTION, DEFAULT_SCOPE

# A raw configuration item as parsed from a definition file
ConfigurationItem = Dict[str, Any]

# Configuration keys understood by an index definition, in processing order
INDEX_CONFIGURATION_KEYS = (
    "is_primary",
    "index_key",
    "condition",
    "partition",
    "nodes",
    "manual_replica",
    "num_replica",
    "retain_deleted_xattr",
    "lifecycle",
    "post_process",
)


class ConfigurationType(str, Enum):
    """Types of items found in definition files"""

    INDEX = "index"
    OVERRIDE = "override"
    NODE_MAP = "nodeMap"


class PartitionStrategy(str, Enum):
    HASH = "HASH"


@dataclass
class Partition:
    exprs: List[str] = field(default_factory=list)
    strategy: Optional[PartitionStrategy] = None
    num_partition: Optional[int] = None

    @classmethod
    def from_dict(cls, value: Dict[str, Any]) -> "Partition":
        return cls().merge(value)

    def merge(self, value: Dict[str, Any]) -> "Partition":
        """Returns a copy with the supplied fields replaced, leaving the others untouched"""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in value.items() if k in known}
        if "exprs" in changes:
            changes["exprs"] = list(changes["exprs"] or [])
        if changes.get("strategy") is not None:
            changes["strategy"] = PartitionStrategy(str(changes["strategy"]).upper())
        return replace(self, **changes)

    def __str__(self) -> str:
        strategy = (self.strategy or PartitionStrategy.HASH).value.upper()
        return f"{strategy}({','.join(self.exprs)})"


@dataclass
class Lifecycle:
    drop: bool = False

    def merge(self, value: Dict[str, Any]) -> None:
        if "drop" in value:
            self.drop = bool(value["drop"])


def get_type(configuration: ConfigurationItem) -> ConfigurationType:
    return ConfigurationType(configuration.get("type") or ConfigurationType.INDEX)


def is_same_index(definition, configuration: ConfigurationItem) -> bool:
    """Tests if a configuration item refers to the same index as an existing definition"""
    return (
        definition.name == configuration.get("name")
        and definition.scope == (configuration.get("scope") or DEFAULT_SCOPE)
        and definition.collection == (configuration.get("collection") or DEFAULT_COLLECTION)
    )
