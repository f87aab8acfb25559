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

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from cbim.exceptions import PlanFailure
from cbim.plan.mutations import IndexMutation
from cbim.store.base import IndexStore
from cbim.utils import format_elapsed

logger = logging.getLogger(__name__)


@dataclass
class PlanOptions:
    logger: logging.Logger = field(default=logger)
    # Seconds to wait for indexes to build, None waits forever
    build_timeout: Optional[float] = None
    # Seconds to wait before building indexes
    build_delay: float = 3.0


class Plan:
    """A set of index mutations grouped into phases, executed in phase order"""

    def __init__(self, store: IndexStore, mutations: Iterable[IndexMutation], options: Optional[PlanOptions] = None):
        self.store = store
        self.options = options or PlanOptions()
        self._phases: Dict[int, List[IndexMutation]] = defaultdict(list)

        self.add_mutation(*mutations)

    @property
    def logger(self) -> logging.Logger:
        return self.options.logger

    @property
    def phases(self) -> List[Tuple[int, List[IndexMutation]]]:
        """Non-empty phases in ascending order"""
        return [(num, mutations) for num, mutations in sorted(self._phases.items()) if mutations]

    @property
    def mutations(self) -> List[IndexMutation]:
        return [mutation for _, mutations in self.phases for mutation in mutations]

    def add_mutation(self, *mutations: IndexMutation) -> None:
        """Adds mutations to the plan, grouped by their phase"""
        for mutation in mutations:
            self._phases[mutation.phase].append(mutation)

    def is_empty(self) -> bool:
        return not self.phases

    def print(self) -> None:
        if self.is_empty():
            self.logger.info("No mutations to be performed")
            return

        self.logger.info("")
        self.logger.info("Index sync plan:")
        self.logger.info("")

        for mutation in self.mutations:
            mutation.print(self.logger)
            self.logger.info("")

    async def execute(self) -> None:
        """
        Executes the plan phase by phase.

        Mutation failures are logged and counted without stopping the rest of their phase,
        but any failure causes all later phases to be skipped. A failure while building
        or waiting for the phase's indexes counts as one error.

        Raises:
            PlanFailure: If any mutation or index build failed
        """
        error_count = 0
        skip_count = 0

        for phase_num, mutations in self.phases:
            if error_count > 0:
                self.logger.info(f"Skipping phase {phase_num} ({len(mutations)} tasks)")
                skip_count += len(mutations)
                continue

            self.logger.info(f"Executing phase {phase_num}...")

            for mutation in mutations:
                try:
                    await mutation.execute(self.store, self.logger)
                except Exception as e:
                    self.logger.error(f"Failed to execute {mutation.display_name}: {e}")
                    error_count += 1

            try:
                await self._build_indexes(mutations)
            except Exception as e:
                self.logger.error(f"Failed to build indexes: {e}")
                error_count += 1

        if error_count == 0:
            self.logger.info("Plan completed")
            self.logger.info("")
            return

        raise PlanFailure(error_count, skip_count)

    async def _build_indexes(self, mutations: List[IndexMutation]) -> None:
        self.logger.info("Building indexes...")

        # Give index nodes time to synchronize before building, reducing race conditions
        if self.options.build_delay > 0:
            await asyncio.sleep(self.options.build_delay)

        keyspaces = sorted({(mutation.scope, mutation.collection) for mutation in mutations})
        for scope, collection in keyspaces:
            await self.store.build_deferred_indexes(scope, collection)

            online = await self.store.wait_for_index_build(
                self.options.build_timeout, self._index_build_tick_handler, scope, collection
            )
            if not online:
                self.logger.warning("Some indexes are not online")

    def _index_build_tick_handler(self, seconds: float) -> None:
        # Keeps output flowing for log watchers which time out on silence
        self.logger.info(f"Building {format_elapsed(seconds)}...")
