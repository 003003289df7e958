"""
Centralized configuration for the Mau card game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.rules.hand_size)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class RuleDefaults:
    """Card game rule parameters."""
    hand_size: int = 5
    seven_penalty: int = 3
    burn_size: int = 4


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Room settings
    MAX_PLAYERS_PER_ROOM: int = 4
    MIN_PLAYERS_TO_START: int = 2
    ROOM_CODE_LENGTH: int = 5
    MAX_NAME_LENGTH: int = 20

    # Game rules
    rules: RuleDefaults = field(default_factory=RuleDefaults)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            MAX_PLAYERS_PER_ROOM=get_env_int("MAX_PLAYERS_PER_ROOM", 4),
            MIN_PLAYERS_TO_START=get_env_int("MIN_PLAYERS_TO_START", 2),
            ROOM_CODE_LENGTH=get_env_int("ROOM_CODE_LENGTH", 5),
            MAX_NAME_LENGTH=get_env_int("MAX_NAME_LENGTH", 20),
            rules=RuleDefaults(
                hand_size=get_env_int("RULE_HAND_SIZE", 5),
                seven_penalty=get_env_int("RULE_SEVEN_PENALTY", 3),
                burn_size=get_env_int("RULE_BURN_SIZE", 4),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
