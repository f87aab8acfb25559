from cbim.definition.index_definition import IndexDefinition
from cbim.definition.node_map import NodeMap


class TestNodeMap:
    def test_get_unmapped_returns_alias(self):
        node_map = NodeMap({"a": "a.example.com:8091"})

        assert node_map.get("a") == "a.example.com:8091"
        assert node_map.get("b") == "b"

    def test_later_merge_overwrites(self):
        node_map = NodeMap({"a": "first"})

        node_map.merge({"a": "second", "b": "other"})

        assert node_map.get("a") == "second"
        assert node_map.get("b") == "other"

    def test_apply(self):
        node_map = NodeMap({"a": "a.example.com", "b": "b.example.com"})
        with_nodes = IndexDefinition({"name": "idx1", "index_key": ["`type`"], "nodes": ["a", "c"]})
        without_nodes = IndexDefinition({"name": "idx2", "index_key": ["`type`"]})

        node_map.apply([with_nodes, without_nodes])

        assert with_nodes.nodes == ["a.example.com", "c"]
        assert without_nodes.nodes is None
