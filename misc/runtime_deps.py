from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class HostServices:
    # built once at startup, shared read-only by every execution
    inference: Any
    currency: Any
    comfy: Any
    http_client: Any
    catalog: Any
    fetch_max_bytes: int = 25 * 1024 * 1024


class RegistryHolder:
    """The command registry currently in effect; `!reload` swaps it."""

    def __init__(self, registry) -> None:
        self.registry = registry

    def get(self):
        return self.registry

    def replace(self, registry) -> None:
        self.registry = registry


@dataclass(frozen=True)
class RuntimeDeps:
    runner: Any
    interaction_store: Any
    allowed_channel_ids: set[int]
    reply_chain_max_depth: int


@dataclass(frozen=True)
class RuntimeBootDeps:
    sync_commands: Callable
