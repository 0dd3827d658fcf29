"""
Events Cog - Game Event Consumer

Drains the game-event queue filled by tournament finalization and posts
champion and level-up announcements to the configured channel.
"""

import asyncio
import discord
from discord.ext import commands, tasks

from tourney.config import Config
from tourney.utils.embeds import build_event_announcement
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)


class EventsCog(commands.Cog):
    """Consumes game events emitted after finalization commits"""

    def __init__(self, bot):
        self.bot = bot
        self.queue: asyncio.Queue = bot.event_queue
        self.logger = logger

    async def cog_load(self):
        self.drain_events.start()
        self.logger.info("EventsCog: Event consumer started")

    async def cog_unload(self):
        self.drain_events.cancel()
        self.logger.info("EventsCog: Event consumer stopped")

    @tasks.loop(seconds=5)
    async def drain_events(self):
        """Announce every queued event; events without an announcement are only logged."""
        while not self.queue.empty():
            event = self.queue.get_nowait()
            try:
                await self.handle_event(event)
            except discord.HTTPException as e:
                self.logger.error(f"Failed to announce {event.name} for user {event.user_id}: {e}")
            except Exception as e:
                # One bad event must not stop the loop
                self.logger.error(f"Error handling {event.name} for user {event.user_id}: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    @drain_events.before_loop
    async def before_drain_events(self):
        """Wait for bot to be ready before announcing"""
        await self.bot.wait_until_ready()

    async def handle_event(self, event):
        self.logger.debug(f"Game event {event.name} for user {event.user_id}: {event.payload}")

        channel = self.bot.get_channel(Config.ANNOUNCEMENT_CHANNEL_ID) if Config.ANNOUNCEMENT_CHANNEL_ID else None
        if channel is None:
            return

        user = await self.bot.db.get_user(event.user_id)
        if user is None:
            return
        mention = f"<@{user.discord_id}>" if user.discord_id else user.username

        embed = build_event_announcement(event, mention)
        if embed:
            await channel.send(embed=embed)


async def setup(bot):
    await bot.add_cog(EventsCog(bot))
