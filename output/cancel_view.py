from __future__ import annotations

import threading

import discord


def build_cancel_view(*, owner_user_id: int, cancel_event: threading.Event) -> discord.ui.View:
    class CancelView(discord.ui.View):
        def __init__(self):
            super().__init__(timeout=None)

        async def interaction_check(self, interaction: discord.Interaction) -> bool:
            if int(interaction.user.id) == int(owner_user_id):
                return True
            await interaction.response.send_message(
                "Only the person who started this can cancel it.",
                ephemeral=True,
            )
            return False

        @discord.ui.button(label="Cancel", style=discord.ButtonStyle.danger)
        async def cancel_button(self, interaction: discord.Interaction, button: discord.ui.Button):
            cancel_event.set()
            button.disabled = True
            await interaction.response.defer()
            self.stop()

    return CancelView()
