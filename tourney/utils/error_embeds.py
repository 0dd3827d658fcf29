"""
Centralized error embeds for consistent error handling across the bot.
"""

import discord
from tourney.utils.exceptions import TournamentCompletionError


class ErrorEmbeds:
    """Centralized error embed factory."""
    
    @staticmethod
    def user_not_found(name: str) -> discord.Embed:
        """Create embed for when a user has no competitive profile."""
        return discord.Embed(
            title="Player Not Found",
            description=f"{name} has not played any tournaments yet.",
            color=discord.Color.red()
        )
    
    @staticmethod
    def completion_failed(error: TournamentCompletionError) -> discord.Embed:
        """Create embed for a rejected or failed finalization."""
        embed = discord.Embed(
            title="Tournament Not Finalized",
            description=error.user_message,
            color=discord.Color.orange() if not error.retryable else discord.Color.red()
        )
        if error.retryable:
            embed.set_footer(text="Nothing was saved. You can safely run the command again.")
        return embed
    
    @staticmethod
    def permission_denied() -> discord.Embed:
        """Create embed for callers who may not finalize a tournament."""
        return discord.Embed(
            title="❌ Permission Denied",
            description="Only the tournament organizer or an administrator can finalize a tournament.",
            color=discord.Color.red()
        )
    
    @staticmethod
    def command_error(error: str) -> discord.Embed:
        """Create embed for general command errors."""
        return discord.Embed(
            title="Command Error",
            description=f"An error occurred: {error}\n\nPlease try again or contact an administrator.",
            color=discord.Color.red()
        )
