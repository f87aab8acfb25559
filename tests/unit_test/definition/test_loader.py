import io
import json
import logging

import pytest

from cbim.definition.loader import DefinitionLoader
from cbim.exceptions import DuplicateDefinitionError, ValidationError

YAML_DEFINITIONS = """
name: idx1
index_key:
  - type
---
name: idx2
scope: inventory
collection: airline
index_key: name
---
type: override
name: idx1
num_replica: 1
---
type: nodeMap
map:
  a: a.example.com
"""


class TestDefinitionLoader:
    def test_load_yaml_documents(self, tmp_path):
        (tmp_path / "indexes.yaml").write_text(YAML_DEFINITIONS)

        definitions, node_map = DefinitionLoader().load_definitions([str(tmp_path / "indexes.yaml")])

        assert [d.name for d in definitions] == ["idx1", "idx2"]
        assert definitions[0].num_replica == 1
        assert definitions[1].scope == "inventory"
        assert definitions[1].index_key == ["name"]
        assert node_map.get("a") == "a.example.com"

    def test_load_directory_in_order(self, tmp_path):
        (tmp_path / "b.json").write_text(json.dumps({"name": "idx_b", "index_key": ["b"]}))
        (tmp_path / "a.yml").write_text("name: idx_a\nindex_key: [a]\n")
        (tmp_path / "notes.txt").write_text("not an index")

        definitions, _ = DefinitionLoader().load_definitions([str(tmp_path)])

        assert [d.name for d in definitions] == ["idx_a", "idx_b"]

    def test_override_in_later_file(self, tmp_path):
        (tmp_path / "1-base.yaml").write_text("name: idx\nindex_key: [a]\n")
        (tmp_path / "2-override.yaml").write_text("type: override\nname: idx\nnodes: [a, b]\n")

        definitions, _ = DefinitionLoader().load_definitions([str(tmp_path)])

        assert definitions[0].nodes == ["a", "b"]
        assert definitions[0].num_replica == 1

    def test_dangling_override_is_warning(self, tmp_path, caplog):
        (tmp_path / "indexes.yaml").write_text("type: override\nname: missing\nnum_replica: 1\n")

        with caplog.at_level(logging.WARNING):
            definitions, _ = DefinitionLoader().load_definitions([str(tmp_path / "indexes.yaml")])

        assert definitions == []
        assert "No index definition found 'missing'" in caplog.text

    def test_duplicate_definition(self, tmp_path):
        (tmp_path / "indexes.yaml").write_text("name: idx\nindex_key: [a]\n---\nname: idx\nindex_key: [b]\n")

        with pytest.raises(DuplicateDefinitionError):
            DefinitionLoader().load_definitions([str(tmp_path / "indexes.yaml")])

    def test_same_name_in_other_collection_is_not_duplicate(self, tmp_path):
        (tmp_path / "indexes.yaml").write_text(
            "name: idx\nindex_key: [a]\n---\nname: idx\nscope: s\ncollection: c\nindex_key: [b]\n"
        )

        definitions, _ = DefinitionLoader().load_definitions([str(tmp_path / "indexes.yaml")])

        assert len(definitions) == 2

    def test_unknown_type(self, tmp_path):
        (tmp_path / "indexes.yaml").write_text("type: view\nname: idx\n")

        with pytest.raises(ValidationError, match="Unknown definition type"):
            DefinitionLoader().load_definitions([str(tmp_path / "indexes.yaml")])

    def test_null_type_is_index(self, tmp_path):
        (tmp_path / "indexes.json").write_text(json.dumps({"type": None, "name": "idx", "index_key": ["a"]}))

        definitions, _ = DefinitionLoader().load_definitions([str(tmp_path / "indexes.json")])

        assert [d.name for d in definitions] == ["idx"]

    def test_invalid_node_map(self, tmp_path):
        (tmp_path / "indexes.yaml").write_text("type: nodeMap\nmap: [a, b]\n")

        with pytest.raises(ValidationError, match="Invalid node map"):
            DefinitionLoader().load_definitions([str(tmp_path / "indexes.yaml")])

    def test_missing_path(self, tmp_path):
        with pytest.raises(ValidationError, match="Path not found"):
            DefinitionLoader().load_definitions([str(tmp_path / "missing.yaml")])

    def test_stdin_json(self):
        stdin = io.StringIO(json.dumps({"name": "idx", "index_key": ["a"]}))

        definitions, _ = DefinitionLoader(stdin=stdin).load_definitions(["-"])

        assert definitions[0].name == "idx"

    def test_stdin_yaml(self):
        stdin = io.StringIO("name: idx\nindex_key: [a]\n---\nname: idx2\nindex_key: [b]\n")

        definitions, _ = DefinitionLoader(stdin=stdin).load_definitions(["-"])

        assert [d.name for d in definitions] == ["idx", "idx2"]
