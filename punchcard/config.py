"""
Configuration management for the Punchcard loyalty ledger.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Commerce platform defaults (credentials live on each Merchant)
    DISCOUNT_API_VERSION = os.getenv('DISCOUNT_API_VERSION', '2026-01')
    DISCOUNT_API_TIMEOUT = float(os.getenv('DISCOUNT_API_TIMEOUT', '30'))

    # Loyalty program defaults
    DEFAULT_WINDOW_MONTHS = 12
    REDEMPTION_AMOUNT_MATCH_RATIO = 0.95  # discount >= 95% of item value counts as a redemption

    # Discount outbox retry policy
    OUTBOX_BATCH_SIZE = _env_int('OUTBOX_BATCH_SIZE', 50)
    OUTBOX_MAX_ATTEMPTS = _env_int('OUTBOX_MAX_ATTEMPTS', 5)
    OUTBOX_BACKOFF_SECONDS = _env_int('OUTBOX_BACKOFF_SECONDS', 30)
    OUTBOX_LEASE_SECONDS = _env_int('OUTBOX_LEASE_SECONDS', 300)

    # Background jobs
    SCHEDULER_ENABLED = os.getenv('ENABLE_SCHEDULER') == 'true'
    OUTBOX_POLL_MINUTES = _env_int('OUTBOX_POLL_MINUTES', 1)
    EXPIRATION_SWEEP_HOUR = _env_int('EXPIRATION_SWEEP_HOUR', 3)


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///punchcard_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }

    SCHEDULER_ENABLED = os.getenv('ENABLE_SCHEDULER', 'true') == 'true'

    @classmethod
    def validate_database_url(cls) -> str:
        """
        Validate the database URL in production.

        The ledger relies on row locks and partial unique indexes, so
        production must run on PostgreSQL.

        Raises:
            ConfigurationError: If DATABASE_URL is missing or not PostgreSQL
        """
        from .utils.exceptions import ConfigurationError

        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ConfigurationError('DATABASE_URL environment variable is not set')
        if not cls.SQLALCHEMY_DATABASE_URI.startswith('postgresql'):
            raise ConfigurationError(
                'Production requires a PostgreSQL DATABASE_URL '
                f'(got {cls.SQLALCHEMY_DATABASE_URI.split(":", 1)[0]})'
            )
        return cls.SQLALCHEMY_DATABASE_URI


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCHEDULER_ENABLED = False
    OUTBOX_BACKOFF_SECONDS = 10


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Args:
        config_name: The configuration environment name

    Raises:
        ConfigurationError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_database_url()
