"""
Collecto Vault loyalty backend
Flask application factory
"""
import os
import logging
from flask import Flask

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging
from .utils.cache import init_cache

logger = logging.getLogger(__name__)

__version__ = '1.0.0'


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

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    setup_logging(app.config.get('LOG_LEVEL'))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Partner reference data cache (Redis with graceful fallback)
    init_cache(app)

    # Models must be imported for db.create_all() and flask db migrate
    from . import models  # noqa: F401

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'collecto-vault', 'version': __version__}

    logger.info(f'Collecto Vault app created ({config_name})')
    return app
