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
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from cbim.definition.index_definition import MutationContext
from cbim.definition.loader import STDIN_PATH, DefinitionLoader
from cbim.exceptions import ValidationError
from cbim.plan.mutations import IndexMutation
from cbim.plan.plan import Plan, PlanOptions
from cbim.store.base import IndexStore

logger = logging.getLogger(__name__)

# Returns True if the sync should continue
ConfirmSyncCallback = Callable[[str], Awaitable[bool]]


@dataclass
class SyncOptions:
    interactive: bool = True
    confirm_sync: Optional[ConfirmSyncCallback] = None
    dry_run: bool = False
    # Only perform mutations which don't risk data or availability loss
    safe: bool = False
    build_timeout: Optional[float] = None
    build_delay: float = 3.0
    logger: logging.Logger = field(default=logger)


class Sync:
    """Synchronizes the indexes on a bucket with definitions loaded from disk"""

    def __init__(self, store: IndexStore, paths: Union[str, Sequence[str]], options: Optional[SyncOptions] = None):
        self.store = store
        self.paths: List[str] = [paths] if isinstance(paths, str) else list(paths)
        self.options = options or SyncOptions()

        if STDIN_PATH in self.paths:
            # Can't prompt when definitions come from stdin
            self.options.interactive = False

    @property
    def logger(self) -> logging.Logger:
        return self.options.logger

    async def execute(self) -> None:
        plan = await self.create_plan()

        if self.options.interactive:
            plan.print()

        if self.options.dry_run or plan.is_empty():
            return

        if self.options.interactive and self.options.confirm_sync:
            if not await self.options.confirm_sync("Execute index sync plan?"):
                self.logger.info("Cancelling due to user input...")
                return

        await plan.execute()

    async def create_plan(self) -> Plan:
        loader = DefinitionLoader(self.logger)
        definitions, node_map = loader.load_definitions(self.paths)

        if not definitions:
            self.logger.warning("No index definitions found")

        if len([definition for definition in definitions if definition.is_primary]) > 1:
            raise ValidationError("Cannot define more than one primary index")

        node_map.apply(definitions)

        context = MutationContext(
            current_indexes=await self.store.get_indexes(),
            cluster_version=await self.store.get_cluster_version(),
            is_secure=self.store.is_secure,
        )
        self.logger.debug(f"Found {len(context.current_indexes)} indexes on cluster version {context.cluster_version}")

        # Normalize before comparing, so formatting differences don't cause updates
        for definition in definitions:
            await definition.normalize(self.store)

        mutations: List[IndexMutation] = [
            mutation for definition in definitions for mutation in definition.get_mutations(context)
        ]

        if self.options.safe:
            skipped = [mutation for mutation in mutations if not mutation.is_safe()]
            for mutation in skipped:
                self.logger.info(f"Skipping unsafe mutation {mutation.display_name} in safe mode")
            mutations = [mutation for mutation in mutations if mutation.is_safe()]

        return Plan(
            self.store,
            mutations,
            PlanOptions(
                logger=self.logger,
                build_timeout=self.options.build_timeout,
                build_delay=self.options.build_delay,
            ),
        )
