import asyncio
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from tourney.config import Config
from tourney.database.database import Database
from tourney.services.configuration import ConfigurationService
from tourney.services.tournament_completion import TournamentCompletionService
from tourney.utils.logger import setup_logger

class TournamentBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.config_service: Optional[ConfigurationService] = None
        self.completion_service: Optional[TournamentCompletionService] = None
        self.event_queue: asyncio.Queue = asyncio.Queue()
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Tournament Bot...")

        # Initialize database
        self.db = Database()
        await self.db.initialize()

        # Initialize configuration service and load configs
        self.config_service = ConfigurationService(self.db.session_factory)
        await self.config_service.load_all()
        self.logger.info("Configuration service initialized")

        self.completion_service = TournamentCompletionService(
            self.db.session_factory,
            config_service=self.config_service,
            event_queue=self.event_queue
        )

        # Load cogs
        await self.load_cogs()

        # Sync slash commands
        await self._sync_commands()

        self.logger.info("Tournament Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'tourney.cogs.tournament',
            'tourney.cogs.events',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except Exception as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        try:
            guild_ids = Config.get_guild_ids()

            if guild_ids:
                # Guild-specific sync (instant updates)
                for guild_id in guild_ids:
                    try:
                        guild = discord.Object(id=guild_id)
                        self.tree.copy_global_to(guild=guild)
                        synced = await self.tree.sync(guild=guild)
                        self.logger.info(f"Synced {len(synced)} command(s) to guild {guild_id}")
                    except discord.HTTPException as e:
                        self.logger.error(f"Failed to sync commands to guild {guild_id}: {e}", exc_info=True)
            else:
                # Global sync (can take up to 1 hour)
                synced = await self.tree.sync()
                self.logger.info(f"Synced {len(synced)} command(s) globally")
        except discord.HTTPException as e:
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)
            # Bot keeps working with prefix commands

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="Tournament scoring | /tournament-complete")
        )

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            message = "❌ You don't have permission to use this command."
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=True)
            message = "❌ An unexpected error occurred while processing your command."

        embed = discord.Embed(title=message, color=discord.Color.red())
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def on_command_error(self, ctx: commands.Context, error: Exception):
        """Global error handler for commands"""
        if isinstance(error, commands.CommandNotFound):
            return

        if isinstance(error, commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{ctx.command.name if ctx.command else 'Unknown'}' by user {ctx.author}")
            await ctx.send("❌ You don't have permission to use this command.")
            return

        if isinstance(error, commands.MissingRequiredArgument):
            await ctx.send(f"❌ Missing required argument: `{error.param.name}`")
            return

        if isinstance(error, commands.BadArgument):
            await ctx.send(f"❌ Invalid argument: {error}")
            return

        self.logger.error(f"Unexpected error in command {ctx.command}: {error}", exc_info=error)
        embed = discord.Embed(
            title="❌ An error occurred",
            description="An unexpected error occurred while processing your command.",
            color=discord.Color.red()
        )
        await ctx.send(embed=embed)

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Tournament Bot...")

        if self.db:
            await self.db.close()

        await super().close()

async def main():
    """Main entry point"""
    Config.validate()

    bot = TournamentBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        await bot.close()

if __name__ == "__main__":
    asyncio.run(main())
