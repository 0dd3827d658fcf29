import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Bot configuration settings"""
    
    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))
    ANNOUNCEMENT_CHANNEL_ID = int(os.getenv('ANNOUNCEMENT_CHANNEL_ID', 0))
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///tournament.db')
    
    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    
    # Logging settings
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_FILE_PREFIX = os.getenv('LOG_FILE_PREFIX', 'tourney')
    
    # Competitive level settings
    POINTS_PER_LEVEL = 100
    
    # Inactivity decay settings
    DECAY_GRACE_DAYS = 14
    DECAY_WEEKLY_RATE = 0.01   # 1% of current points per inactive week
    DECAY_CAP = 50             # Never decay more than this in one tournament
    
    # Scoring settings
    UPSET_LEVEL_GAP = 3        # Opponent level >= own level + gap counts as an upset
    DUPLICATE_RESULT_POLICY = os.getenv('DUPLICATE_RESULT_POLICY', 'first_seen')
    
    # Finalization settings
    FINALIZE_MAX_RETRIES = int(os.getenv('FINALIZE_MAX_RETRIES', 3))
    
    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []
    
    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.DISCORD_GUILD_ID and not cls.DISCORD_GUILD_IDS:
            raise ValueError("Either DISCORD_GUILD_ID or DISCORD_GUILD_IDS is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.DUPLICATE_RESULT_POLICY not in ('first_seen', 'last_seen'):
            raise ValueError("DUPLICATE_RESULT_POLICY must be 'first_seen' or 'last_seen'")
