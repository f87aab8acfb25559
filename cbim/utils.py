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

import re

DEFAULT_SCOPE = "_default"
DEFAULT_COLLECTION = "_default"

DEFAULT_PORT = 8091
DEFAULT_SECURE_PORT = 18091

_PORT_PATTERN = re.compile(r":\d+$")


def ensure_escaped(identifier: str) -> str:
    """Ensures that the N1QL identifier is escaped with backticks"""
    if identifier.startswith("`"):
        return identifier
    return "`" + identifier.replace("`", "``") + "`"


def get_keyspace(bucket: str, scope: str = DEFAULT_SCOPE, collection: str = DEFAULT_COLLECTION) -> str:
    if scope == DEFAULT_SCOPE and collection == DEFAULT_COLLECTION:
        return ensure_escaped(bucket)
    return f"{ensure_escaped(bucket)}.{ensure_escaped(scope)}.{ensure_escaped(collection)}"


def ensure_port(server: str, is_secure: bool = False) -> str:
    """Ensures that a server name has a port number appended, defaults to 8091"""
    if _PORT_PATTERN.search(server):
        return server
    return f"{server}:{DEFAULT_SECURE_PORT if is_secure else DEFAULT_PORT}"


def format_elapsed(seconds: float) -> str:
    """Formats elapsed seconds as 1m05s"""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"
