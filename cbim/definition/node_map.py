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

from typing import Dict, Iterable, Optional


class NodeMap:
    """Stores a map of node aliases to their fully qualified name"""

    def __init__(self, configuration: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = {}

        if configuration:
            self.merge(configuration)

    def merge(self, values: Dict[str, str]) -> None:
        """Adds or overwrites mapped nodes"""
        self._values.update(values)

    def get(self, node: str) -> str:
        return self._values.get(node) or node

    def apply(self, definitions: Iterable) -> None:
        """Applies node mappings to the node lists of index definitions"""
        for definition in definitions:
            if definition.nodes:
                definition.nodes = [self.get(node) for node in definition.nodes]

