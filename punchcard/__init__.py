"""
Punchcard frequent-buyer loyalty ledger
Flask application factory
"""
import os
import logging
from flask import Flask

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    validate_config(config_name)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Register models with the metadata
    from . import models  # noqa: F401

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            from .utils.db import enable_sqlite_savepoints
            enable_sqlite_savepoints(db.engine)

    # Background jobs: outbox delivery and expiration sweeps
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'punchcard'}

    logger.info(f'Punchcard app created ({config_name})')
    return app
