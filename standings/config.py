import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Standings core configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///standings.db')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    # Redis settings (optional, enables cross-process player locks)
    REDIS_URL = os.getenv('REDIS_URL', '')
    PLAYER_LOCK_TTL_SECONDS = float(os.getenv('PLAYER_LOCK_TTL_SECONDS', 10))

    # Submission settings
    SUBMISSION_TIMEOUT_SECONDS = float(os.getenv('SUBMISSION_TIMEOUT_SECONDS', 5))
    SUBMISSION_MAX_RETRIES = int(os.getenv('SUBMISSION_MAX_RETRIES', 3))

    # Query settings
    QUERY_TIMEOUT_SECONDS = float(os.getenv('QUERY_TIMEOUT_SECONDS', 5))
    DEFAULT_PAGE_SIZE = int(os.getenv('DEFAULT_PAGE_SIZE', 50))
    MAX_PAGE_SIZE = int(os.getenv('MAX_PAGE_SIZE', 100))
    LEADERBOARD_CACHE_TTL_SECONDS = float(os.getenv('LEADERBOARD_CACHE_TTL_SECONDS', 30))

    # Player defaults (profile collaborator)
    STARTING_RANKING_POINTS = 1000

    # Logging settings
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'

    @classmethod
    def validate(cls):
        """Validate that configuration values are usable"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if cls.SUBMISSION_TIMEOUT_SECONDS <= 0 or cls.QUERY_TIMEOUT_SECONDS <= 0:
            raise ValueError("Timeouts must be positive")
        if cls.SUBMISSION_MAX_RETRIES < 1:
            raise ValueError("SUBMISSION_MAX_RETRIES must be at least 1")
        if not 1 <= cls.DEFAULT_PAGE_SIZE <= cls.MAX_PAGE_SIZE:
            raise ValueError("DEFAULT_PAGE_SIZE must be between 1 and MAX_PAGE_SIZE")
