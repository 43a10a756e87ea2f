from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable

from config.defaults import SCRIPT_FILES


def _default_false(*args, **kwargs) -> bool:
    return False


@dataclass(frozen=True)
class CommandDeps:
    # Execution
    runner: Any = None
    registry_holder: Any = None
    services: Any = None

    # Scripts
    scripts_dir: str = "scripts"
    script_files: tuple[str, ...] = SCRIPT_FILES
    lua_max_memory: int | None = None
    replace_newlines: bool = True

    # Command tree
    sync_commands: Callable | None = None


@dataclass(frozen=True)
class CommandGates:
    allowed_channel_ids: set[int] = field(default_factory=set)
    user_is_owner: Callable[[Any], bool] = _default_false
