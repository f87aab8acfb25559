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

"""
Validators for index definition and node map configuration items.

Field validators receive the raw value of a single key (None when absent) and
raise ValidationError on bad input. Post validators receive the constructed
object and check invariants spanning several fields.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from cbim.configuration.types import ConfigurationItem, ConfigurationType, PartitionStrategy
from cbim.exceptions import ValidationError

FieldValidator = Callable[[Any], None]
PostValidator = Callable[[Any], None]


@dataclass
class ValidatorSet:
    fields: Dict[str, FieldValidator] = field(default_factory=dict)
    post_validate: Optional[PostValidator] = None


def _is_bool(val: Any) -> bool:
    return isinstance(val, bool)


def _is_int(val: Any) -> bool:
    return isinstance(val, int) and not isinstance(val, bool)


def _is_string_list(val: Any) -> bool:
    return isinstance(val, (list, tuple)) and all(isinstance(v, str) for v in val)


def _boolean(name: str) -> FieldValidator:
    def validate(val):
        if val is not None and not _is_bool(val):
            raise ValidationError(f"{name} must be a boolean")

    return validate


def validate_index_key(val):
    if val is None or isinstance(val, str):
        return
    if not _is_string_list(val):
        raise ValidationError("index_key must be a string or array of strings")


def validate_condition(val):
    if val is not None and not isinstance(val, str):
        raise ValidationError("condition must be a string")


def validate_partition(val):
    if val is None:
        # null is an explicit clear
        return

    if not isinstance(val, dict):
        raise ValidationError("Invalid partition")

    if "exprs" in val and not _is_string_list(val["exprs"]):
        raise ValidationError("Invalid partition")

    strategy = val.get("strategy")
    if strategy is not None:
        try:
            PartitionStrategy(str(strategy).upper())
        except ValueError:
            raise ValidationError(f"Invalid partition strategy '{strategy}'")

    num_partition = val.get("num_partition")
    if num_partition is not None and (not _is_int(num_partition) or num_partition < 1):
        raise ValidationError("num_partition must be a positive number")


def validate_nodes(val):
    if val is not None and not _is_string_list(val):
        raise ValidationError("nodes must be an array of strings")


def validate_num_replica(val):
    if val is None:
        return
    if not _is_int(val):
        raise ValidationError("num_replica must be a number")
    if val < 0:
        raise ValidationError("num_replica must not be negative")


def validate_lifecycle(val):
    if val is not None and not isinstance(val, dict):
        raise ValidationError("lifecycle is invalid")


def validate_post_process(val):
    if val is not None and not (callable(val) or isinstance(val, str)):
        raise ValidationError("post_process must be a function or the name of a registered hook")


def post_validate_index(definition) -> None:
    """Validates the whole index definition once every field has been applied"""
    if bool(definition.scope) != bool(definition.collection):
        raise ValidationError("if scope is supplied collection must also be supplied")

    if not definition.is_primary:
        if not definition.lifecycle.drop and not definition.index_key:
            raise ValidationError("index_key must include at least one key")
    else:
        if definition.index_key:
            raise ValidationError("index_key is not allowed for a primary index")

        if definition.condition:
            raise ValidationError("condition is not allowed for a primary index")

    if definition.partition is not None and not definition.partition.exprs:
        raise ValidationError("partition must include at least one expression")

    if definition.partition is not None and definition.manual_replica:
        raise ValidationError("manual_replica is not supported on partioned indexes")

    if definition.partition is None and definition.nodes:
        if len(definition.nodes) != (definition.num_replica or 0) + 1:
            raise ValidationError("mismatch between num_replica and nodes")


def validate_node_map(val):
    if not isinstance(val, dict):
        raise ValidationError("Invalid node map")

    for key, value in val.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError("Invalid node map")


INDEX_VALIDATORS = ValidatorSet(
    fields={
        "is_primary": _boolean("is_primary"),
        "index_key": validate_index_key,
        "condition": validate_condition,
        "partition": validate_partition,
        "nodes": validate_nodes,
        "manual_replica": _boolean("manual_replica"),
        "num_replica": validate_num_replica,
        "retain_deleted_xattr": _boolean("retain_deleted_xattr"),
        "lifecycle": validate_lifecycle,
        "post_process": validate_post_process,
    },
    post_validate=post_validate_index,
)

NODE_MAP_VALIDATORS = ValidatorSet(
    fields={
        "map": validate_node_map,
    },
)

# Overrides are validated with the validators of the definition they apply to
VALIDATORS: Dict[ConfigurationType, ValidatorSet] = {
    ConfigurationType.INDEX: INDEX_VALIDATORS,
    ConfigurationType.OVERRIDE: INDEX_VALIDATORS,
    ConfigurationType.NODE_MAP: NODE_MAP_VALIDATORS,
}


def validate_fields(validator_set: ValidatorSet, configuration: ConfigurationItem, name: Optional[str] = None) -> None:
    """
    Runs every field validator against a raw configuration item

    Raises:
        ValidationError: naming the item and the offending key
    """
    name = name or configuration.get("name") or "unk"
    for key, validator in validator_set.fields.items():
        try:
            validator(configuration.get(key))
        except ValidationError as e:
            raise ValidationError(f"{e} in {name}.{key}") from e
