"""
Configuration for the website generator backend.

Values come from environment variables so the same code runs locally,
in tests and in production.
"""

import os


class Config:
    """Base configuration"""
    DB_PATH = os.environ.get("SITEGEN_DB_PATH", "sitegen.db")
    USERS_DB_PATH = os.environ.get("SITEGEN_USERS_DB_PATH", "users.db")

    # Generation cache
    CACHE_TTL_SECONDS = float(os.environ.get("SITEGEN_CACHE_TTL_SECONDS", 3600))  # 1 hour
    GENERATION_TIMEOUT_SECONDS = float(os.environ.get("SITEGEN_GENERATION_TIMEOUT_SECONDS", 120))

    # Variations
    DEFAULT_VARIATIONS = int(os.environ.get("SITEGEN_DEFAULT_VARIATIONS", 3))
    MAX_VARIATIONS = int(os.environ.get("SITEGEN_MAX_VARIATIONS", 10))

    # Artifacts
    DEFAULT_CONTENT_TYPE = os.environ.get("SITEGEN_DEFAULT_CONTENT_TYPE", "general")
    DEFAULT_LIST_LIMIT = int(os.environ.get("SITEGEN_DEFAULT_LIST_LIMIT", 50))
    MAX_LIST_LIMIT = int(os.environ.get("SITEGEN_MAX_LIST_LIMIT", 200))

    LOG_LEVEL = os.environ.get("SITEGEN_LOG_LEVEL", "INFO").upper()

    @classmethod
    def from_env(cls) -> "Config":
        """Build a config instance, re-reading the environment."""
        config = cls()
        config.DB_PATH = os.environ.get("SITEGEN_DB_PATH", cls.DB_PATH)
        config.USERS_DB_PATH = os.environ.get("SITEGEN_USERS_DB_PATH", cls.USERS_DB_PATH)
        config.CACHE_TTL_SECONDS = float(os.environ.get("SITEGEN_CACHE_TTL_SECONDS", cls.CACHE_TTL_SECONDS))
        config.GENERATION_TIMEOUT_SECONDS = float(
            os.environ.get("SITEGEN_GENERATION_TIMEOUT_SECONDS", cls.GENERATION_TIMEOUT_SECONDS))
        config.DEFAULT_VARIATIONS = int(os.environ.get("SITEGEN_DEFAULT_VARIATIONS", cls.DEFAULT_VARIATIONS))
        config.MAX_VARIATIONS = int(os.environ.get("SITEGEN_MAX_VARIATIONS", cls.MAX_VARIATIONS))
        config.DEFAULT_CONTENT_TYPE = os.environ.get("SITEGEN_DEFAULT_CONTENT_TYPE", cls.DEFAULT_CONTENT_TYPE)
        config.DEFAULT_LIST_LIMIT = int(os.environ.get("SITEGEN_DEFAULT_LIST_LIMIT", cls.DEFAULT_LIST_LIMIT))
        config.MAX_LIST_LIMIT = int(os.environ.get("SITEGEN_MAX_LIST_LIMIT", cls.MAX_LIST_LIMIT))
        config.LOG_LEVEL = os.environ.get("SITEGEN_LOG_LEVEL", cls.LOG_LEVEL).upper()
        return config


class TestingConfig(Config):
    """Testing configuration; callers point the database paths at a temp dir."""
    CACHE_TTL_SECONDS = 60.0
    GENERATION_TIMEOUT_SECONDS = 5.0
    MAX_VARIATIONS = 5
    LOG_LEVEL = "DEBUG"
