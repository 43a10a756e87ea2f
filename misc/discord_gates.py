from __future__ import annotations

import discord


def message_in_allowed_channels(message: discord.Message, allowed_channel_ids: set[int]) -> bool:
    # an empty allowlist means every channel
    if not allowed_channel_ids:
        return True
    if getattr(message, "guild", None) is None:
        return True

    channel_id = int(getattr(message.channel, "id", 0) or 0)
    if channel_id in allowed_channel_ids:
        return True
    # thread: allow if parent is allowed
    if isinstance(message.channel, discord.Thread) and message.channel.parent:
        return int(message.channel.parent.id) in allowed_channel_ids
    return False


def user_in_owner_set(user, owner_user_ids: set[int]) -> bool:
    return int(getattr(user, "id", 0) or 0) in owner_user_ids
