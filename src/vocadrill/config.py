"""Configuration settings for the practice engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
LOGS_DIR = DATA_DIR / "logs"

# Practice settings
BATTERY_SIZE = 5  # words per battery
OPTION_COUNT = 5  # choices shown in multiple-choice phases
FINAL_PHASE = 3
MASTERY_GATES = ("entire_list", "encountered")


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        LOGS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else None


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///vocadrill.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    max_bytes: int = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))


@dataclass
class PracticeSettings:
    """Practice engine settings."""
    battery_size: int = int(os.getenv("BATTERY_SIZE", str(BATTERY_SIZE)))
    option_count: int = int(os.getenv("OPTION_COUNT", str(OPTION_COUNT)))
    mastery_gate: str = os.getenv("MASTERY_GATE", "entire_list")
    seed: Optional[int] = field(default_factory=lambda: _optional_int("PRACTICE_SEED"))
    write_retries: int = int(os.getenv("WRITE_RETRIES", "3"))


@dataclass
class MonitoringSettings:
    """Metrics endpoint settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_practice_settings() -> PracticeSettings:
    """Get practice settings."""
    return PracticeSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    practice: PracticeSettings = field(default_factory=get_practice_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if self.practice.battery_size < 1:
            raise ValueError("BATTERY_SIZE must be positive")

        if self.practice.option_count < 2:
            raise ValueError("OPTION_COUNT must be at least 2")

        if self.practice.mastery_gate not in MASTERY_GATES:
            raise ValueError(f"MASTERY_GATE must be one of {', '.join(MASTERY_GATES)}")

        if self.practice.write_retries < 1:
            raise ValueError("WRITE_RETRIES must be positive")


# Create global settings instance
settings = Settings()
settings.validate()
