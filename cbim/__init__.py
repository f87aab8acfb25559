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
Declarative index management for Couchbase GSI indexes

Index definitions are described in YAML or JSON files. A sync compares them
against the indexes on the cluster and applies the create, update, drop, move
and resize operations needed to converge, in phases ordered to minimize risk.

Key components:
- IndexDefinition: desired state of an index, and the diff against a live index
- Plan: phased execution of index mutations
- Sync / Validator: entry points used by the command line
"""

__version__ = "2.1.0"
