"""
Configuration settings for Script Healer
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _optional_float(name):
    value = os.getenv(name)
    return float(value) if value else None


class Config:
    """Application configuration"""

    # Retry policy
    MAX_ATTEMPTS = int(os.getenv('HEALER_MAX_ATTEMPTS', '3'))
    MAX_ATTEMPTS_LIMIT = int(os.getenv('HEALER_MAX_ATTEMPTS_LIMIT', '10'))
    RETRY_DELAY = float(os.getenv('HEALER_RETRY_DELAY', '2'))  # seconds between attempts

    # Timeouts (seconds)
    CAPTURE_TIMEOUT = float(os.getenv('CAPTURE_TIMEOUT', '5'))
    ADVISORY_TIMEOUT = float(os.getenv('ADVISORY_TIMEOUT', '20'))
    SESSION_TIMEOUT = _optional_float('SESSION_TIMEOUT')

    # Rule-based fixes (milliseconds, inserted into scripts)
    SETTLE_DELAY_MS = int(os.getenv('SETTLE_DELAY_MS', '1000'))
    FIND_TIMEOUT_MS = int(os.getenv('FIND_TIMEOUT_MS', '3000'))

    # Advisory service
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
    ADVISORY_MODEL = os.getenv('ADVISORY_MODEL', 'gpt-4o')
    ADVISORY_BASE_URL = os.getenv('ADVISORY_BASE_URL')

    # External collaborators
    INTERPRETER_COMMAND = os.getenv('INTERPRETER_COMMAND', 'node')
    CAPTURE_COMMAND = os.getenv('CAPTURE_COMMAND')

    # Session archive
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///script_healer.db')
    PERSIST_SESSIONS = os.getenv('PERSIST_SESSIONS', 'false').lower() in ('1', 'true', 'yes')

    # Logging Configuration
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', '')

    @classmethod
    def validate(cls):
        """Validate configuration needed by the advisory tier"""
        required_vars = ['OPENAI_API_KEY']
        missing = [var for var in required_vars if not getattr(cls, var)]

        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        return True
