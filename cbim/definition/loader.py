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

import json
import logging
import re
import sys
from pathlib import Path
from typing import Callable, Iterable, List, Optional, TextIO, Tuple

import yaml

from cbim.configuration.types import ConfigurationItem, ConfigurationType, get_type, is_same_index
from cbim.configuration.validation import VALIDATORS, validate_fields
from cbim.definition.index_definition import IndexDefinition
from cbim.definition.node_map import NodeMap
from cbim.exceptions import DanglingOverrideWarning, DuplicateDefinitionError, ValidationError

INDEX_EXTENSIONS = (".json", ".yaml", ".yml")
STDIN_PATH = "-"

_JSON_START = re.compile(r"^\s*{")

ConfigItemHandler = Callable[[ConfigurationItem], None]


class DefinitionLoader:
    """Loads index definitions from files, directories or stdin"""

    def __init__(self, logger: Optional[logging.Logger] = None, stdin: Optional[TextIO] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.stdin = stdin

    def load_definitions(self, paths: Iterable[str]) -> Tuple[List[IndexDefinition], NodeMap]:
        """
        Loads definitions from disk

        Args:
            paths: Files, directories (direct children only) or "-" for stdin

        Returns:
            The index definitions, with overrides applied, and the merged node map
        """
        definitions: List[IndexDefinition] = []
        node_map = NodeMap()

        def handler(configuration: ConfigurationItem) -> None:
            self._process_configuration(definitions, node_map, configuration)

        files: List[Path] = []
        for path in paths:
            if path == STDIN_PATH:
                self._load_from_stdin(handler)
                continue

            file_path = Path(path)
            if file_path.is_dir():
                files.extend(sorted(child for child in file_path.iterdir() if child.is_file()))
            elif file_path.exists():
                files.append(file_path)
            else:
                raise ValidationError(f"Path not found: {path}")

        for file_path in files:
            if file_path.suffix.lower() in INDEX_EXTENSIONS:
                self._load_definition(file_path, handler)

        return definitions, node_map

    def _load_definition(self, file_path: Path, handler: ConfigItemHandler) -> None:
        """Loads index definitions from a file"""
        contents = file_path.read_text(encoding="utf-8")

        self.logger.debug(f"Loading definitions from {file_path}")

        if file_path.suffix.lower() == ".json":
            handler(json.loads(contents))
        else:
            self._load_yaml(contents, handler)

    def _load_from_stdin(self, handler: ConfigItemHandler) -> None:
        data = (self.stdin or sys.stdin).read()

        if _JSON_START.match(data):
            handler(json.loads(data))
        else:
            self._load_yaml(data, handler)

    @staticmethod
    def _load_yaml(contents: str, handler: ConfigItemHandler) -> None:
        for document in yaml.safe_load_all(contents):
            if document is not None:
                handler(document)

    def _process_configuration(
        self, definitions: List[IndexDefinition], node_map: NodeMap, configuration: ConfigurationItem
    ) -> None:
        """
        Adds an index definition, applies an override to its matching definition
        or merges a node map, depending on the type of the configuration item
        """
        if not isinstance(configuration, dict):
            raise ValidationError("Definition must be a mapping")

        try:
            configuration_type = get_type(configuration)
        except ValueError:
            raise ValidationError(f"Unknown definition type '{configuration.get('type')}'")

        match: Optional[IndexDefinition] = None
        if configuration_type in (ConfigurationType.INDEX, ConfigurationType.OVERRIDE):
            match = next((d for d in definitions if is_same_index(d, configuration)), None)

        if configuration_type == ConfigurationType.OVERRIDE and match is None:
            # Ignore overrides with no matching index
            self.logger.warning(str(DanglingOverrideWarning(configuration.get("name"))))
            return

        validate_fields(VALIDATORS[configuration_type], configuration)

        if configuration_type == ConfigurationType.NODE_MAP:
            node_map.merge(configuration["map"])
        elif configuration_type == ConfigurationType.OVERRIDE:
            match.apply_override(configuration)
        else:
            if match is not None:
                raise DuplicateDefinitionError(configuration["name"])

            definitions.append(IndexDefinition(configuration))
