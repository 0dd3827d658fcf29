"""
Tournament Cog - Finalization, Awards & Competitive Profiles

Exposes tournament finalization to organizers and administrators and lets
everyone view stored awards and competitive profiles.
"""

import json
import discord
from discord import app_commands
from discord.ext import commands
from typing import Optional

from tourney.config import Config
from tourney.utils.embeds import build_awards_embed, build_competitive_profile_embed
from tourney.utils.error_embeds import ErrorEmbeds
from tourney.utils.exceptions import TournamentCompletionError
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)


class TournamentCog(commands.Cog):
    """Tournament completion and competitive scoring commands"""

    def __init__(self, bot):
        self.bot = bot
        self.logger = logger

    async def _can_finalize(self, author, tournament) -> bool:
        """Organizer, flagged admin user, guild administrator or bot owner."""
        if author.id == Config.OWNER_DISCORD_ID:
            return True
        permissions = getattr(author, 'guild_permissions', None)
        if permissions and permissions.administrator:
            return True
        user = await self.bot.db.get_user_by_discord_id(author.id)
        if not user:
            return False
        return user.is_admin or (tournament.created_by is not None and tournament.created_by == user.id)

    @commands.hybrid_command(name='tournament-complete', description="Finalize a tournament and award competitive points")
    @app_commands.describe(tournament_id="ID of the tournament to finalize")
    async def tournament_complete(self, ctx, tournament_id: int):
        """Finalize a tournament and award competitive points"""
        tournament = await self.bot.db.get_tournament(tournament_id)
        if tournament and not await self._can_finalize(ctx.author, tournament):
            self.logger.info(f"Finalize of tournament {tournament_id} denied for {ctx.author}")
            await ctx.send(embed=ErrorEmbeds.permission_denied(), ephemeral=True)
            return

        await ctx.defer()
        try:
            outcome = await self.bot.completion_service.finalize_with_retry(tournament_id)
        except TournamentCompletionError as e:
            self.logger.info(f"Finalize of tournament {tournament_id} rejected: {e}")
            await ctx.send(embed=ErrorEmbeds.completion_failed(e))
            return

        embed = build_awards_embed(tournament.name, outcome.awards, outcome.already_awarded)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name='tournament-awards', description="Show the stored awards of a finalized tournament")
    @app_commands.describe(tournament_id="ID of the tournament")
    async def tournament_awards(self, ctx, tournament_id: int):
        """Show the stored awards of a finalized tournament"""
        try:
            awards = await self.bot.completion_service.get_awards(tournament_id)
        except TournamentCompletionError as e:
            await ctx.send(embed=ErrorEmbeds.completion_failed(e), ephemeral=True)
            return

        tournament = await self.bot.db.get_tournament(tournament_id)
        await ctx.send(embed=build_awards_embed(tournament.name, awards, already_awarded=bool(awards)))

    @commands.hybrid_command(name='competitive-profile', description="View a competitive profile")
    @app_commands.describe(member="Member to view (defaults to yourself)")
    async def competitive_profile(self, ctx, member: Optional[discord.Member] = None):
        """View a competitive profile"""
        target = member or ctx.author
        user = await self.bot.db.get_user_by_discord_id(target.id)
        if not user:
            await ctx.send(embed=ErrorEmbeds.user_not_found(target.display_name), ephemeral=True)
            return

        profile = await self.bot.db.get_competitive_profile(user.id)
        recent = await self.bot.db.get_recent_history(user.id)
        await ctx.send(embed=build_competitive_profile_embed(profile, recent, target))

    # ============================================================================
    # Scoring configuration
    # ============================================================================

    def _is_config_admin(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id == Config.OWNER_DISCORD_ID:
            return True
        permissions = getattr(interaction.user, 'guild_permissions', None)
        return bool(permissions and permissions.administrator)

    @app_commands.command(name="scoring-config-list", description="List scoring configuration values")
    @app_commands.describe(category="Configuration category to filter by (e.g., 'decay', 'scoring')")
    async def scoring_config_list(self, interaction: discord.Interaction, category: Optional[str] = None):
        """List scoring configuration values, optionally filtered by category."""
        if not self._is_config_admin(interaction):
            await interaction.response.send_message("❌ You need administrator permissions to use this command.", ephemeral=True)
            return

        config_service = self.bot.config_service
        configs = config_service.get_by_category(category) if category else config_service.list_all()
        if not configs:
            await interaction.response.send_message(
                f"No configuration found for category '{category}'." if category
                else "No configuration found.",
                ephemeral=True
            )
            return

        output = "```json\n" + "\n".join(f"{key}: {value}" for key, value in sorted(configs.items())) + "\n```"
        await interaction.response.send_message(output, ephemeral=True)

    @app_commands.command(name="scoring-config-set", description="Set a scoring configuration value")
    @app_commands.describe(
        key="Configuration key (e.g., 'decay.grace_days')",
        value="Configuration value (JSON format for numbers)"
    )
    async def scoring_config_set(self, interaction: discord.Interaction, key: str, value: str):
        """Set a scoring configuration value."""
        if not self._is_config_admin(interaction):
            await interaction.response.send_message("❌ You need administrator permissions to use this command.", ephemeral=True)
            return

        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            # Treat as string if not valid JSON
            parsed_value = value

        try:
            await self.bot.config_service.set(key, parsed_value, interaction.user.id)
        except ValueError as e:
            await interaction.response.send_message(f"❌ {e}", ephemeral=True)
            return

        self.logger.info(f"{interaction.user} set {key} = {parsed_value}")
        await interaction.response.send_message(
            f"✅ Configuration updated: **{key}** = `{parsed_value}`",
            ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(TournamentCog(bot))
