"""
Configuration management service for the tournament scoring bot.

Runtime overrides for scoring parameters live in the configurations table,
are cached in memory and every change is written to the audit log.
"""

import json
import logging
import math
from typing import Any, Dict
from sqlalchemy import select
from tourney.config import Config
from tourney.database.models import Configuration, AuditLog
from tourney.services.base import BaseService
from tourney.utils.bracket import DUPLICATE_POLICIES
from tourney.utils.decay import DecayPolicy

logger = logging.getLogger(__name__)

# Numeric scoring keys: (type, minimum)
NUMERIC_KEYS = {
    'decay.grace_days': (int, 0),
    'decay.weekly_rate': (float, 0),
    'decay.cap': (float, 0),
    'scoring.upset_level_gap': (int, 0),
}


def validate_value(key: str, value: Any) -> Any:
    """
    Coerce and range-check a value for a known scoring key.

    Raises:
        ValueError: The value cannot be used for this key
    """
    if key == 'scoring.duplicate_result_policy':
        if value not in DUPLICATE_POLICIES:
            raise ValueError(f"{key} must be one of {', '.join(DUPLICATE_POLICIES)}")
        return value

    if key not in NUMERIC_KEYS:
        return value

    cast, minimum = NUMERIC_KEYS[key]
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number, got {value!r}") from None
    if not math.isfinite(number) or number < minimum:
        raise ValueError(f"{key} must be a finite number >= {minimum}, got {value!r}")
    if cast is int:
        if not number.is_integer():
            raise ValueError(f"{key} must be a whole number, got {value!r}")
        return int(number)
    return number


class ConfigurationService(BaseService):
    """Manages scoring configuration with simple caching and audit trail."""
    
    def __init__(self, session_factory):
        super().__init__(session_factory)
        self._cache: Dict[str, Any] = {}
    
    async def load_all(self):
        """Load all configurations from database into memory."""
        new_cache = {}
        async with self.get_session() as session:
            result = await session.execute(select(Configuration))
            for config in result.scalars().all():
                try:
                    new_cache[config.key] = validate_value(config.key, json.loads(config.value))
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON for config key '{config.key}', skipping")
                    continue
                except ValueError as e:
                    logger.warning(f"Invalid value for config key '{config.key}', skipping: {e}")
                    continue
        
        self._cache = new_cache
        logger.info(f"Loaded {len(self._cache)} configuration parameters")
    
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key.
        
        Args:
            key: Configuration key (e.g., 'decay.grace_days')
            default: Default value if key not found
        """
        return self._cache.get(key, default)
    
    async def set(self, key: str, value: Any, user_id: int):
        """
        Set configuration value and persist it with an audit entry.
        
        Args:
            key: Configuration key
            value: Configuration value (will be JSON-encoded)
            user_id: Discord user ID for audit trail

        Raises:
            ValueError: Invalid value for a scoring key; nothing is written
        """
        value = validate_value(key, value)
        
        async with self.get_session() as session:
            result = await session.execute(
                select(Configuration).where(Configuration.key == key)
            )
            config = result.scalar_one_or_none()
            
            if config:
                old_value = config.value
                config.value = json.dumps(value)
            else:
                old_value = None
                session.add(Configuration(key=key, value=json.dumps(value)))
            
            old_value_parsed = None
            if old_value:
                try:
                    old_value_parsed = json.loads(old_value)
                except json.JSONDecodeError:
                    old_value_parsed = {"error": "invalid JSON", "raw": old_value}
            
            session.add(AuditLog(
                user_id=user_id,
                action='config_set',
                details=json.dumps({
                    'key': key,
                    'old_value': old_value_parsed,
                    'new_value': value
                })
            ))
        
        # Reload after the write so the cache matches the database
        await self.load_all()
    
    def list_all(self) -> Dict[str, Any]:
        """Return a copy of every cached configuration value."""
        return self._cache.copy()
    
    def get_by_category(self, category: str) -> Dict[str, Any]:
        """Get all configuration values for a category (e.g. 'decay')."""
        prefix = f"{category}."
        return {
            key[len(prefix):]: value
            for key, value in self._cache.items()
            if key.startswith(prefix)
        }
    
    def decay_policy(self) -> DecayPolicy:
        return DecayPolicy.from_config_service(self)
    
    def duplicate_result_policy(self) -> str:
        return self.get('scoring.duplicate_result_policy', Config.DUPLICATE_RESULT_POLICY)
    
    def upset_level_gap(self) -> int:
        return int(self.get('scoring.upset_level_gap', Config.UPSET_LEVEL_GAP))
