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


class IndexManagerError(Exception):
    """Base class for all index manager errors"""


class ValidationError(IndexManagerError, ValueError):
    """Raised when an index definition is malformed or contradictory"""


class DuplicateDefinitionError(ValidationError):
    """Raised when two index definitions share the same scope, collection and name"""

    def __init__(self, name: str):
        super().__init__(f"Duplicate index definition '{name}'")
        self.name = name


class InvalidDefinitionError(IndexManagerError):
    """Raised when the index store rejects a dry-run statement for a definition"""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid index definition for {name}: {reason}")
        self.name = name
        self.reason = reason


class StoreError(IndexManagerError):
    """Raised when an operation against the index store fails"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class PlanFailure(IndexManagerError):
    """Raised at the end of a plan execution if any mutation failed"""

    def __init__(self, error_count: int, skip_count: int = 0):
        if skip_count > 0:
            message = f"Plan failed with {error_count} errors, {skip_count} skipped"
        else:
            message = f"Plan completed with {error_count} errors"
        super().__init__(message)
        self.error_count = error_count
        self.skip_count = skip_count


class DanglingOverrideWarning(UserWarning):
    """An override which does not match any index definition"""

    def __init__(self, name: str):
        super().__init__(f"No index definition found '{name}'")
        self.name = name
