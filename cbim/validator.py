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
from typing import List, Optional, Sequence, Union

from cbim.definition.index_definition import IndexDefinition
from cbim.definition.loader import DefinitionLoader
from cbim.definition.node_map import NodeMap
from cbim.exceptions import InvalidDefinitionError, StoreError
from cbim.store.base import IndexStore


# Reserved index name used to validate syntax with EXPLAIN
VALIDATE_INDEX_NAME = "__cbim_validate"


class Validator:
    """Validates index definition files, optionally checking syntax against a cluster"""

    def __init__(self, paths: Union[str, Sequence[str]], logger: Optional[logging.Logger] = None):
        self.paths: List[str] = [paths] if isinstance(paths, str) else list(paths)
        self.logger = logger or logging.getLogger(__name__)

    async def execute(self, store: Optional[IndexStore] = None) -> None:
        loader = DefinitionLoader(self.logger)
        definitions, node_map = loader.load_definitions(self.paths)

        if store is not None:
            await self.validate_syntax(store, definitions, node_map)

        self.logger.info("Definitions validated, no errors found.")

    async def validate_syntax(self, store: IndexStore, definitions: List[IndexDefinition], node_map: NodeMap) -> None:
        """
        Uses EXPLAIN CREATE INDEX to validate the syntax of each definition.
        So long as there is no real index with the reserved name, no index is created.
        """
        node_map.apply(definitions)

        for definition in definitions:
            if definition.lifecycle.drop:
                continue

            statement = definition.get_create_statement(store.bucket_name, VALIDATE_INDEX_NAME)

            try:
                await store.get_query_plan(statement)
            except StoreError as e:
                raise InvalidDefinitionError(definition.name, str(e)) from e
