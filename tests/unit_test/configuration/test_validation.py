import pytest

from cbim.configuration.types import ConfigurationType, Lifecycle, Partition, PartitionStrategy, is_same_index
from cbim.configuration.validation import (
    INDEX_VALIDATORS,
    NODE_MAP_VALIDATORS,
    VALIDATORS,
    validate_fields,
)
from cbim.definition.index_definition import IndexDefinition
from cbim.exceptions import ValidationError


class TestFieldValidation:
    """Field validators applied to raw configuration items"""

    @pytest.mark.parametrize(
        "configuration",
        [
            {"name": "idx", "index_key": "`type`"},
            {"name": "idx", "index_key": ["`type`", "`name`"], "condition": "`type` = 'a'"},
            {"name": "idx", "partition": {"exprs": ["`id`"], "strategy": "hash", "num_partition": 8}},
            {"name": "idx", "partition": None},
            {"name": "idx", "nodes": ["a", "b"], "num_replica": 1, "manual_replica": True},
            {"name": "idx", "lifecycle": {"drop": True}, "retain_deleted_xattr": False},
        ],
    )
    def test_valid(self, configuration):
        validate_fields(INDEX_VALIDATORS, configuration)

    @pytest.mark.parametrize(
        "configuration, message",
        [
            ({"name": "idx", "is_primary": "yes"}, "is_primary must be a boolean in idx.is_primary"),
            ({"name": "idx", "index_key": [1]}, "index_key must be a string or array of strings"),
            ({"name": "idx", "condition": 5}, "condition must be a string"),
            ({"name": "idx", "partition": {"strategy": "range"}}, "Invalid partition strategy"),
            ({"name": "idx", "partition": {"num_partition": 0}}, "num_partition must be a positive number"),
            ({"name": "idx", "partition": "HASH(id)"}, "Invalid partition"),
            ({"name": "idx", "nodes": "a"}, "nodes must be an array of strings"),
            ({"name": "idx", "num_replica": -1}, "num_replica must not be negative"),
            ({"name": "idx", "num_replica": True}, "num_replica must be a number"),
            ({"name": "idx", "lifecycle": "drop"}, "lifecycle is invalid"),
            ({"name": "idx", "post_process": 5}, "post_process must be a function"),
        ],
    )
    def test_invalid(self, configuration, message):
        with pytest.raises(ValidationError, match=message):
            validate_fields(INDEX_VALIDATORS, configuration)

    def test_node_map(self):
        validate_fields(NODE_MAP_VALIDATORS, {"type": "nodeMap", "map": {"a": "b"}})

        with pytest.raises(ValidationError, match="Invalid node map"):
            validate_fields(NODE_MAP_VALIDATORS, {"type": "nodeMap", "map": {"a": 1}})

    def test_dispatch_table(self):
        assert VALIDATORS[ConfigurationType.INDEX] is INDEX_VALIDATORS
        assert VALIDATORS[ConfigurationType.OVERRIDE] is INDEX_VALIDATORS
        assert VALIDATORS[ConfigurationType.NODE_MAP] is NODE_MAP_VALIDATORS


class TestConfigurationTypes:
    def test_partition_str(self):
        partition = Partition.from_dict({"exprs": ["`a`", "`b`"], "strategy": "hash"})

        assert partition.strategy == PartitionStrategy.HASH
        assert str(partition) == "HASH(`a`,`b`)"

    def test_partition_merge_returns_copy(self):
        partition = Partition(["`a`"], PartitionStrategy.HASH, 4)

        merged = partition.merge({"num_partition": 8})

        assert merged.num_partition == 8
        assert partition.num_partition == 4

    def test_lifecycle_merge(self):
        lifecycle = Lifecycle()

        lifecycle.merge({"drop": True})
        lifecycle.merge({})

        assert lifecycle.drop is True

    def test_is_same_index(self):
        definition = IndexDefinition({"name": "idx", "scope": "s", "collection": "c", "index_key": ["a"]})

        assert is_same_index(definition, {"name": "idx", "scope": "s", "collection": "c"})
        assert not is_same_index(definition, {"name": "idx"})
