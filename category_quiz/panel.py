"""
Discord rendering of the session engine's view state.
One QuizHost binds a SessionEngine to a single panel message and re-renders it
whenever the engine reports a change.
"""
import asyncio
import logging
from typing import Optional, Tuple

import discord

from .models import CategoryListView, CompletionView, QuestionView, ViewState
from .session_engine import SessionEngine, SessionPhase

logger = logging.getLogger(__name__)

OPTION_LETTERS = ("A", "B", "C", "D")

# Discord limits
MAX_BUTTON_LABEL = 80
MAX_CATEGORY_BUTTONS = 20


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 1] + "…"


def _timer_style(time_left: int) -> Tuple[int, str]:
    # Colour and emoji for the remaining time
    if time_left > 5:
        return 0x00ff00, "⏱️"
    if time_left > 2:
        return 0xff6600, "⚠️"
    return 0xff0000, "🚨"


def build_embed(view: ViewState) -> discord.Embed:
    """Create the panel embed for a view state."""
    if isinstance(view, CategoryListView):
        embed = discord.Embed(
            title="📚 Select a Subject",
            description="Choose a topic to challenge yourself",
            color=0x6200ea
        )
        if view.categories:
            embed.add_field(
                name="Subjects",
                value="\n".join(f"• {name}" for name in view.categories),
                inline=False
            )
        else:
            embed.add_field(name="Subjects", value="No quiz categories available.", inline=False)
        return embed

    if isinstance(view, CompletionView):
        embed = discord.Embed(
            title="🏆 Quiz Completed!",
            description=view.category,
            color=0xffd700
        )
        embed.add_field(name="Your Score", value=f"{view.score} / {view.total_questions}", inline=True)
        embed.add_field(name="Correct", value=f"{view.percentage}%", inline=True)
        return embed

    color, timer_emoji = _timer_style(view.time_left)
    option_lines = [
        f"**{OPTION_LETTERS[i]}.** {option}" + (" ◀" if view.selected == i else "")
        for i, option in enumerate(view.options)
    ]
    embed = discord.Embed(
        title=f"🎯 {view.category} · Question {view.cursor + 1}/{view.total_questions}",
        description=f"{view.question}\n\n" + "\n".join(option_lines),
        color=color
    )
    embed.add_field(
        name=f"{timer_emoji} Time Left",
        value=f"{view.time_left} second{'s' if view.time_left != 1 else ''}",
        inline=True
    )
    if view.locked:
        embed.set_footer(text="Time's up!" if view.selected is None else "Answer locked in")
    return embed


class QuizPanel(discord.ui.View):
    """Buttons for the current view state."""

    def __init__(self, host: "QuizHost", view: ViewState):
        super().__init__(timeout=None)
        self.host = host

        if isinstance(view, CategoryListView):
            for name in view.categories[:MAX_CATEGORY_BUTTONS]:
                self._add_button(
                    _truncate(name, MAX_BUTTON_LABEL),
                    discord.ButtonStyle.primary,
                    lambda interaction, name=name: host.on_category(interaction, name)
                )
        elif isinstance(view, QuestionView):
            for i, option in enumerate(view.options):
                style = (discord.ButtonStyle.success if view.selected == i
                         else discord.ButtonStyle.secondary)
                self._add_button(
                    _truncate(f"{OPTION_LETTERS[i]}. {option}", MAX_BUTTON_LABEL),
                    style,
                    lambda interaction, i=i: host.on_option(interaction, i),
                    row=i,
                    disabled=view.locked
                )
            self._add_button("Back", discord.ButtonStyle.danger, host.on_back, row=4)
        elif isinstance(view, CompletionView):
            self._add_button("Restart Quiz", discord.ButtonStyle.success, host.on_restart)
            self._add_button("Choose Another Subject", discord.ButtonStyle.secondary, host.on_back)

    def _add_button(self, label, style, handler, row=None, disabled=False) -> None:
        button = discord.ui.Button(label=label, style=style, row=row, disabled=disabled)

        async def callback(interaction: discord.Interaction):
            await handler(interaction)

        button.callback = callback
        self.add_item(button)

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return await self.host.check_interaction(interaction)


class QuizHost:
    """Connects one session engine to one Discord panel message."""

    def __init__(self, engine: SessionEngine):
        self.engine = engine
        self.owner_id: Optional[int] = None
        self.message: Optional[discord.Message] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._dirty = False
        engine.add_listener(self._on_view_change)

    def claim(self, user_id: int) -> bool:
        """
        Make user_id the player. A running session can only be taken over
        once its owner has gone back to category selection.
        """
        if self.owner_id in (None, user_id) or self.engine.phase is SessionPhase.CATEGORY_SELECT:
            self.owner_id = user_id
            return True
        return False

    def render(self) -> Tuple[discord.Embed, QuizPanel]:
        view = self.engine.view_state
        return build_embed(view), QuizPanel(self, view)

    async def open_panel(self, channel) -> discord.Message:
        """Post a fresh panel message and make it the one kept up to date."""
        embed, panel = self.render()
        self.message = await channel.send(embed=embed, view=panel)
        return self.message

    async def check_interaction(self, interaction: discord.Interaction) -> bool:
        if self.message is None or interaction.message is None or interaction.message.id != self.message.id:
            await self._reply(interaction, "This quiz panel is no longer active. Use `/quiz` to open a new one.")
            return False
        if interaction.user.id != self.owner_id:
            await self._reply(interaction, "This quiz belongs to another player.")
            return False
        return True

    async def on_category(self, interaction: discord.Interaction, name: str) -> None:
        await self._acknowledge(interaction)
        self.engine.select_category(name)

    async def on_option(self, interaction: discord.Interaction, index: int) -> None:
        await self._acknowledge(interaction)
        self.engine.submit_answer(index)

    async def on_restart(self, interaction: discord.Interaction) -> None:
        await self._acknowledge(interaction)
        self.engine.restart()

    async def on_back(self, interaction: discord.Interaction) -> None:
        await self._acknowledge(interaction)
        self.engine.back_to_categories()

    async def refresh(self) -> None:
        """Re-render the panel message from the current view state."""
        if self.message is None:
            return
        embed, panel = self.render()
        try:
            await self.message.edit(embed=embed, view=panel)
        except discord.HTTPException as e:
            # Log error but don't raise to avoid breaking quiz flow
            logger.error(f"Failed to update quiz panel: {e}")

    def _on_view_change(self, view: ViewState) -> None:
        if self.message is None:
            return
        self._dirty = True
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; panel refresh skipped")
            return
        self._refresh_task = loop.create_task(self._flush())

    async def _flush(self) -> None:
        # Changes arriving during an edit are folded into one more edit
        while self._dirty:
            self._dirty = False
            await self.refresh()

    async def _acknowledge(self, interaction: discord.Interaction) -> None:
        try:
            await interaction.response.defer()
        except discord.HTTPException as e:
            logger.warning(f"Failed to acknowledge interaction: {e}")

    async def _reply(self, interaction: discord.Interaction, message: str) -> None:
        try:
            await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send panel response to user")
