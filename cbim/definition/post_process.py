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
from typing import Any, Callable, Dict, List, Union

from cbim.exceptions import ValidationError

logger = logging.getLogger(__name__)

PostProcessHook = Callable[[Any], None]

_HOOKS: Dict[str, PostProcessHook] = {}


def register_post_process(name: str):
    """
    Registers a post processing hook which can be referenced by name
    from the post_process key of a definition file.

    The hook is called with the IndexDefinition once all other keys are applied,
    and may change any of its fields before the definition is validated.
    """

    def decorator(fn: PostProcessHook) -> PostProcessHook:
        if name in _HOOKS and _HOOKS[name] is not fn:
            logger.warning(f"Replacing post process hook '{name}'")
        _HOOKS[name] = fn
        return fn

    return decorator


def unregister_post_process(name: str) -> None:
    _HOOKS.pop(name, None)


def list_post_process() -> List[str]:
    return sorted(_HOOKS)


def resolve_post_process(value: Union[str, PostProcessHook]) -> PostProcessHook:
    if callable(value):
        return value

    if isinstance(value, str):
        hook = _HOOKS.get(value.strip())
        if hook is None:
            raise ValidationError(f"Unknown post_process hook '{value}'")
        return hook

    raise ValidationError("post_process must be a function or the name of a registered hook")
