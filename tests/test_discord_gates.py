from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest import mock

try:
    from misc.discord_gates import message_in_allowed_channels
    from misc.discord_gates import user_in_owner_set
except ModuleNotFoundError:
    message_in_allowed_channels = None


class FakeThread:
    def __init__(self, channel_id: int, parent_id: int):
        self.id = int(channel_id)
        self.parent = SimpleNamespace(id=int(parent_id))


def in_guild(channel):
    return SimpleNamespace(guild=SimpleNamespace(id=1), channel=channel)


@unittest.skipIf(message_in_allowed_channels is None, "discord.py not installed")
class ReplyChannelGateTests(unittest.TestCase):
    def test_empty_allowlist_means_everywhere(self):
        self.assertTrue(message_in_allowed_channels(in_guild(SimpleNamespace(id=999)), set()))

    def test_listed_and_unlisted_channels(self):
        self.assertTrue(message_in_allowed_channels(in_guild(SimpleNamespace(id=123)), {123}))
        self.assertFalse(message_in_allowed_channels(in_guild(SimpleNamespace(id=999)), {123}))

    def test_direct_messages_pass(self):
        dm = SimpleNamespace(guild=None, channel=SimpleNamespace(id=999))
        self.assertTrue(message_in_allowed_channels(dm, {123}))

    def test_threads_follow_their_parent(self):
        with mock.patch("misc.discord_gates.discord.Thread", FakeThread):
            self.assertTrue(message_in_allowed_channels(in_guild(FakeThread(777, 123)), {123}))
            self.assertFalse(message_in_allowed_channels(in_guild(FakeThread(777, 456)), {123}))


@unittest.skipIf(message_in_allowed_channels is None, "discord.py not installed")
class OwnerGateTests(unittest.TestCase):
    def test_owner_set(self):
        self.assertTrue(user_in_owner_set(SimpleNamespace(id=42), {42}))
        self.assertFalse(user_in_owner_set(SimpleNamespace(id=7), {42}))
        self.assertFalse(user_in_owner_set(SimpleNamespace(id=42), set()))


if __name__ == "__main__":
    unittest.main()
