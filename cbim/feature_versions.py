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

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Version:
    major: int
    minor: int

    @classmethod
    def from_compatibility(cls, cluster_compatibility: int) -> "Version":
        """Decodes the clusterCompatibility value reported by the cluster manager"""
        return cls(major=cluster_compatibility // 65536, minor=cluster_compatibility & 65535)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


class FeatureVersions:
    """
    Tests for compatibility with various features,
    given a cluster version from clusterCompatibility.
    """

    @staticmethod
    def alter_index_move(version: Optional[Version]) -> bool:
        """
        Tests for ALTER INDEX move compatibility.
        An unknown version is assumed to be compatible.
        """
        return version is None or version.major > 5 or (version.major == 5 and version.minor >= 5)

    @staticmethod
    def alter_index_replica_count(version: Optional[Version]) -> bool:
        """Tests for ALTER INDEX replica_count compatibility"""
        return version is not None and (version.major > 6 or (version.major == 6 and version.minor >= 5))
