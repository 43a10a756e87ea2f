from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from config.defaults import INTERACTION_CONTEXT_CAPACITY


@dataclass(frozen=True, slots=True)
class InteractionContext:
    command_name: str
    options: dict[str, Any] = field(default_factory=dict)
    user_id: int = 0
    channel_id: int = 0
    guild_id: int | None = None


class InteractionContextStore:
    """Bounded LRU of the interaction behind each message the bot produced."""

    def __init__(self, capacity: int = INTERACTION_CONTEXT_CAPACITY) -> None:
        if int(capacity) <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = int(capacity)
        self._entries: OrderedDict[int, InteractionContext] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def put(self, message_id: int, context: InteractionContext) -> None:
        with self._lock:
            key = int(message_id)
            self._entries[key] = context
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def put_many(self, message_ids, context: InteractionContext) -> None:
        for message_id in message_ids:
            self.put(message_id, context)

    def get(self, message_id: int) -> InteractionContext | None:
        with self._lock:
            key = int(message_id)
            context = self._entries.get(key)
            if context is not None:
                self._entries.move_to_end(key)
            return context
