# config.py
"""Configuration module for GTM Command Center.

Settings are loaded from:
1. .env file (if present)
2. Environment variables

Reading configuration never raises; the ``validate_for_*`` helpers raise
``ConfigError`` when a collaborator is about to be used without credentials.
"""

import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_TRUTHY = ("true", "1")


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


class GTMConfig:
    """GTM Command Center configuration loaded from environment variables.

    Attributes:
        APP_ENV: Application environment (dev or prod).
        GEMINI_API_KEY: Generative Language API key.
        SUPABASE_URL: Hosted data service URL.
        SUPABASE_ANON_KEY: Hosted data service anonymous key.
        THROTTLE_LOG_MAX_ENTRIES: Cap on retained throttle log entries.
        THROTTLE_LOG_PATH: Optional JSON file backing the throttle log.
    """

    def __init__(self):
        """Initialize the configuration from environment variables."""
        self.logger = logging.getLogger(__name__)

        # Application environment
        self.APP_ENV = self._get_optional("APP_ENV", "dev")
        self.DEBUG = self._get_bool("DEBUG")
        self.LOG_LEVEL = self._get_optional("LOG_LEVEL", "INFO")

        # Generative AI settings
        self.GEMINI_API_KEY = self._get_optional(
            "GEMINI_API_KEY", self._get_optional("API_KEY")
        )
        self.GEMINI_MODEL = self._get_optional("GEMINI_MODEL", "gemini-2.5-flash")
        self.GEMINI_STRATEGY_MODEL = self._get_optional(
            "GEMINI_STRATEGY_MODEL", "gemini-3-pro-preview"
        )
        self.GEMINI_THINKING_BUDGET = self._get_int("GEMINI_THINKING_BUDGET", 32768)
        self.GEMINI_TIMEOUT_SECONDS = self._get_int("GEMINI_TIMEOUT_SECONDS", 60)

        # Hosted data service settings
        self.SUPABASE_URL = self._get_optional(
            "SUPABASE_URL", self._get_optional("NEXT_PUBLIC_SUPABASE_URL")
        )
        self.SUPABASE_ANON_KEY = self._get_optional(
            "SUPABASE_ANON_KEY", self._get_optional("NEXT_PUBLIC_SUPABASE_ANON_KEY")
        )
        self.DATA_TIMEOUT_SECONDS = self._get_int("DATA_TIMEOUT_SECONDS", 30)

        # Throttle log settings
        self.THROTTLE_LOG_MAX_ENTRIES = self._get_int("THROTTLE_LOG_MAX_ENTRIES", 100)
        self.THROTTLE_LOG_PATH = self._get_optional("THROTTLE_LOG_PATH")

    def is_gemini_configured(self) -> bool:
        """Check whether an AI API key is available."""
        return bool(self.GEMINI_API_KEY)

    def is_supabase_configured(self) -> bool:
        """Check whether both data service URL and key are available."""
        return self.SUPABASE_URL != "" and self.SUPABASE_ANON_KEY != ""

    def validate_for_gemini(self) -> None:
        """Validate configuration required for AI generation.

        Raises:
            ConfigError: If the API key is missing.
        """
        if not self.is_gemini_configured():
            raise ConfigError("GEMINI_API_KEY is required for AI generation")

    def validate_for_supabase(self) -> None:
        """Validate configuration required for data access.

        Raises:
            ConfigError: If the data service URL or key is missing.
        """
        if not self.SUPABASE_URL:
            raise ConfigError("SUPABASE_URL is required for data access")
        if not self.SUPABASE_ANON_KEY:
            raise ConfigError("SUPABASE_ANON_KEY is required for data access")

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.APP_ENV.lower() in ["prod", "production"]

    def get_log_level(self) -> int:
        """Resolve the configured level name; DEBUG=true always wins."""
        if self.DEBUG:
            return logging.DEBUG
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO

    def _get_optional(self, name: str, default: str = "") -> str:
        """Read an environment variable, or the default when it is unset."""
        return os.environ.get(name, default)

    def _get_int(self, name: str, default: int) -> int:
        """Get an integer configuration value, falling back on invalid input."""
        raw = self._get_optional(name)
        if raw == "":
            return default
        try:
            return int(raw)
        except ValueError:
            self.logger.warning(
                "Environment variable %s is not an integer (%r), using %d",
                name,
                raw,
                default,
            )
            return default

    def _get_bool(self, name: str) -> bool:
        """Read a flag; only ``true`` and ``1`` (any case) switch it on."""
        return os.environ.get(name, "").lower() in _TRUTHY


# Create a global instance of GTMConfig
config = GTMConfig()
