from __future__ import annotations

import unittest

from chain.interaction_store import InteractionContext
from chain.interaction_store import InteractionContextStore


def ctx(name: str) -> InteractionContext:
    return InteractionContext(command_name=name, options={"prompt": name}, user_id=1, channel_id=2)


class InteractionContextStoreTests(unittest.TestCase):
    def test_oldest_entry_is_evicted(self):
        store = InteractionContextStore(capacity=2)
        store.put(1, ctx("a"))
        store.put(2, ctx("b"))
        store.put(3, ctx("c"))
        self.assertEqual(len(store), 2)
        self.assertIsNone(store.get(1))
        self.assertEqual(store.get(3).command_name, "c")

    def test_get_refreshes_recency(self):
        store = InteractionContextStore(capacity=2)
        store.put(1, ctx("a"))
        store.put(2, ctx("b"))
        self.assertIsNotNone(store.get(1))
        store.put(3, ctx("c"))
        self.assertIsNotNone(store.get(1))
        self.assertIsNone(store.get(2))

    def test_put_many_maps_every_chunk(self):
        store = InteractionContextStore(capacity=10)
        store.put_many([11, 12, 13], ctx("ask"))
        self.assertEqual(store.get(12).options, {"prompt": "ask"})
        self.assertEqual(len(store), 3)

    def test_rejects_non_positive_capacity(self):
        with self.assertRaises(ValueError):
            InteractionContextStore(capacity=0)


if __name__ == "__main__":
    unittest.main()
