"""
Shared embed utilities for the tournament scoring bot.

Provides the embeds for award tables, competitive profiles and
post-finalization announcements so every cog formats them the same way.
"""

import discord
from typing import Optional, List
from tourney.constants import UIConstants
from tourney.data_models.awards import PointsAwardData, GameEvent
from tourney.database.models import User, CompetitiveHistory
from tourney.utils.levels import level_progress


def _signed(value: float) -> str:
    return f"{value:+.2f}"


def build_awards_embed(tournament_name: str, awards: List[PointsAwardData],
                       already_awarded: bool = False) -> discord.Embed:
    """
    Build the award table for a finalized tournament.
    
    Args:
        tournament_name: Display name of the tournament
        awards: Awards ordered by placement
        already_awarded: True when the awards come from an earlier finalization
        
    Returns:
        Formatted Discord embed ready for display
    """
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Results: {tournament_name}",
        color=UIConstants.GOLD_RANK_COLOR
    )
    
    if not awards:
        embed.description = "No awards have been recorded for this tournament."
        return embed
    
    lines = []
    for award in awards[:UIConstants.MAX_AWARD_ROWS]:
        name = award.username or f"User {award.user_id}"
        lines.append(
            f"**#{award.placement}** {name} `{_signed(award.points)}` "
            f"({award.wins}W/{award.losses}L)"
        )
    embed.description = "\n".join(lines)
    
    if len(awards) > UIConstants.MAX_AWARD_ROWS:
        embed.add_field(
            name="Note",
            value=f"Showing top {UIConstants.MAX_AWARD_ROWS} of {len(awards)} participants",
            inline=False
        )
    
    # Breakdown for the champion only; full breakdowns live in history
    champion = awards[0]
    b = champion.breakdown
    embed.add_field(
        name="Champion Breakdown",
        value=(
            f"**Placement:** {_signed(b.base_placement)}\n"
            f"**Wins:** {_signed(b.wins_points)}\n"
            f"**Difficulty:** {_signed(b.difficulty_points)}\n"
            f"**Penalties:** {_signed(b.penalties)}\n"
            f"**Decay:** {_signed(b.decay)}\n"
            f"**Total:** {_signed(b.total)}"
        ),
        inline=False
    )
    
    if already_awarded:
        embed.set_footer(text="Points were already awarded for this tournament.")
    return embed


def build_competitive_profile_embed(user: User, recent: List[CompetitiveHistory],
                                    target_member: Optional[discord.abc.User] = None) -> discord.Embed:
    """Build the competitive profile card for a user."""
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Competitive Profile: {user.username}",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    if target_member:
        embed.set_thumbnail(url=target_member.display_avatar.url)
    
    into_level, to_next = level_progress(user.points)
    embed.add_field(
        name="📊 Standing",
        value=(
            f"**Points:** {user.points:,.2f}\n"
            f"**Level:** {user.level or 1} ({into_level:.0f}/{into_level + to_next:.0f})\n"
            f"**Decay Lost:** {user.decay_total or 0:,.2f}"
        ),
        inline=True
    )
    embed.add_field(
        name="⚔️ Record",
        value=(
            f"**Tournaments:** {user.tournaments_played or 0}\n"
            f"**Wins:** {user.wins or 0} | **Losses:** {user.losses or 0}\n"
            f"**Win Rate:** {user.win_rate:.1f}%"
        ),
        inline=True
    )
    
    if recent:
        history_text = "\n".join(
            f"#{row.placement} {row.tournament_name} `{_signed(row.points)}`"
            for row in recent
        )
        embed.add_field(name="🕒 Recent Tournaments", value=history_text, inline=False)
    
    if user.highlighted_wins:
        upset_text = "\n".join(
            f"{UIConstants.UPSET_EMOJI} beat {win.opponent_username} (Lv {win.opponent_level}) in {win.tournament_name}"
            for win in user.highlighted_wins[-3:]
        )
        embed.add_field(name="Highlighted Wins", value=upset_text, inline=False)
    
    if user.last_competitive_at:
        embed.set_footer(text=f"Last competitive activity: {user.last_competitive_at:%Y-%m-%d}")
    return embed


def build_event_announcement(event: GameEvent, mention: str) -> Optional[discord.Embed]:
    """Announcement embed for champion and level-up events; None for the rest."""
    tournament_name = event.payload.get('tournament_name', 'a tournament')
    if event.name == 'tournament_won':
        return discord.Embed(
            title=f"{UIConstants.TROPHY_EMOJI} Tournament Champion",
            description=f"{mention} won **{tournament_name}**!",
            color=UIConstants.GOLD_RANK_COLOR
        )
    if event.name == 'level_up':
        return discord.Embed(
            title=f"{UIConstants.LEVEL_UP_EMOJI} Level Up",
            description=(
                f"{mention} reached level **{event.payload['new_level']}** "
                f"(from {event.payload['old_level']}) after {tournament_name}."
            ),
            color=UIConstants.SUCCESS_COLOR
        )
    return None
