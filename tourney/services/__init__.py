"""
Services package for the tournament scoring bot.
"""

from .base import BaseService
from .configuration import ConfigurationService
from .tournament_completion import TournamentCompletionService

__all__ = ['BaseService', 'ConfigurationService', 'TournamentCompletionService']
