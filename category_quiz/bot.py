import discord
from discord.ext import commands
import logging
import os
from typing import Optional

from .config_manager import ConfigManager
from .panel import QuizHost
from .question_bank import BankValidationError, QuestionBank
from .remote_sync import FirebaseRealtimeStore, InMemoryStore, RemoteSync
from .session_engine import SessionEngine

logger = logging.getLogger(__name__)


def create_store(config_manager: ConfigManager):
    """Pick the remote store from the configured settings."""
    remote_settings = config_manager.get_remote_settings()
    if remote_settings.database_url:
        logger.info(f"Using remote database {remote_settings.database_url}")
        return FirebaseRealtimeStore(remote_settings.database_url, remote_settings.auth_token)
    logger.warning("No remote database configured; scores and bank updates stay in memory")
    return InMemoryStore()


def load_question_bank(config_manager: ConfigManager) -> QuestionBank:
    """Load the configured bank file, or the bundled bank."""
    bank_file = config_manager.get_bank_file()
    if bank_file:
        try:
            return QuestionBank.from_file(bank_file)
        except (OSError, BankValidationError) as e:
            logger.error(f"Failed to load question bank {bank_file}: {e}; using bundled bank")
    return QuestionBank.load_bundled()


class QuizBot(commands.Bot):
    """Discord bot hosting a single category quiz session"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,  # Fallback prefix, mainly using slash commands
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.question_bank: Optional[QuestionBank] = None
        self.remote_store = None
        self.remote_sync: Optional[RemoteSync] = None
        self.engine: Optional[SessionEngine] = None
        self.host: Optional[QuizHost] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            errors = self.config_manager.apply_config(self.app_config)
            for error in errors:
                logger.warning(f"Configuration value ignored: {error}")
            self.config_manager.require_valid()

            self.question_bank = load_question_bank(self.config_manager)
            self.remote_store = create_store(self.config_manager)
            self.remote_sync = RemoteSync(self.remote_store)
            self.engine = SessionEngine(
                self.question_bank,
                self.remote_sync,
                self.config_manager.get_quiz_settings(),
                session_id="discord"
            )
            self.host = QuizHost(self.engine)

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quiz", description="Open the quiz panel in this channel")
        async def quiz_command(interaction: discord.Interaction):
            await self.handle_quiz(interaction)

        @self.tree.command(name="categories", description="List the quiz subjects and their question counts")
        async def categories_command(interaction: discord.Interaction):
            await self.handle_categories(interaction)

        @self.tree.command(name="status", description="Show the current quiz progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.engine is not None:
            self.engine.close()
        if isinstance(self.remote_store, FirebaseRealtimeStore):
            self.remote_store.close()
        await super().close()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        help_embed = discord.Embed(
            title="🎯 Quiz Bot Commands",
            description="Pick a subject and answer each question before the timer runs out",
            color=0x00ff00
        )
        help_embed.add_field(
            name="🎮 Commands",
            value=(
                "`/quiz` - Open the quiz panel in this channel\n"
                "`/categories` - List the available subjects\n"
                "`/status` - Show the current quiz progress\n"
                "`/help` - Show this message"
            ),
            inline=False
        )
        help_embed.add_field(
            name="⚙️ Current Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        try:
            await interaction.response.send_message(embed=help_embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")

    async def handle_quiz(self, interaction: discord.Interaction):
        """Handle /quiz command: post a panel owned by the caller"""
        if not self.host.claim(interaction.user.id):
            await self.send_error_response(
                interaction,
                "Another player is in the middle of a quiz. Try again once they go back to the subject list.",
                "❌ Quiz In Progress"
            )
            return

        try:
            await interaction.response.send_message("🎯 Quiz panel opened below.", ephemeral=True)
            await self.host.open_panel(interaction.channel)
            logger.info(f"Opened quiz panel for user {interaction.user.id} in channel {interaction.channel_id}")
        except discord.HTTPException as e:
            logger.error(f"Failed to open quiz panel: {e}")
            await self.send_error_response(interaction, "Failed to open the quiz panel", "❌ Quiz Error")

    async def handle_categories(self, interaction: discord.Interaction):
        """Handle /categories command"""
        categories = self.question_bank.categories
        if categories:
            lines = [
                f"• **{name}** - {self.question_bank.get_question_count(name)} questions"
                for name in categories
            ]
            description = "\n".join(lines)
        else:
            description = "No quiz categories available."

        embed = discord.Embed(title="📚 Quiz Subjects", description=description, color=0x6200ea)
        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in categories command: {e}")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        progress = self.engine.get_session_progress()
        embed = discord.Embed(title="📊 Quiz Status", color=0x6699ff)

        if progress['category'] is None:
            embed.description = "No quiz in progress. Use `/quiz` to pick a subject."
        else:
            embed.add_field(name="📚 Subject", value=progress['category'], inline=True)
            embed.add_field(
                name="❓ Question",
                value=f"{progress['current_question']}/{progress['total_questions']}",
                inline=True
            )
            embed.add_field(name="✅ Score", value=str(progress['score']), inline=True)
            if progress['completed']:
                embed.set_footer(text="Quiz completed")

        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=0xff0000
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Discord Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
