"""
Configuration seed data for the tournament scoring bot.

Seeds the runtime-tunable scoring parameters with their default values.
"""

import json
import asyncio
from tourney.config import Config
from tourney.database.models import Configuration
from tourney.database.database import Database

INITIAL_CONFIGS = {
    # Decay (3 parameters)
    'decay.grace_days': Config.DECAY_GRACE_DAYS,
    'decay.weekly_rate': Config.DECAY_WEEKLY_RATE,
    'decay.cap': Config.DECAY_CAP,
    
    # Scoring (2 parameters)
    'scoring.duplicate_result_policy': Config.DUPLICATE_RESULT_POLICY,
    'scoring.upset_level_gap': Config.UPSET_LEVEL_GAP,
}

async def seed_configurations(db: Database = None):
    """Seed all initial configuration values, keeping existing overrides."""
    owns_db = db is None
    if owns_db:
        db = Database()
        await db.initialize()
    
    try:
        async with db.transaction() as session:
            for key, value in INITIAL_CONFIGS.items():
                existing = await session.get(Configuration, key)
                if existing is None:
                    session.add(Configuration(key=key, value=json.dumps(value)))
        print(f"Seeded {len(INITIAL_CONFIGS)} configuration parameters")
    finally:
        if owns_db:
            await db.close()

if __name__ == "__main__":
    asyncio.run(seed_configurations())
