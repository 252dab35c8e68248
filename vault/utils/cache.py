"""
Cache utilities for Collecto Vault.

Provides Redis-backed caching with graceful fallback to simple in-memory caching.
Uses Flask-Caching for integration with Flask app. The cache only ever holds
partner reference data (service listings); points balances and the
transaction journal are never cached.

Usage:
    from vault.utils.cache import cache

    value = cache.get('key')
    cache.set('key', value, timeout=300)

Environment Variables:
    REDIS_URL: Redis connection URL (e.g., redis://localhost:6379/0)
              Falls back to simple cache if not set or unavailable.
"""
import os
import logging
from flask_caching import Cache

logger = logging.getLogger(__name__)

# Global cache instance - initialized in init_cache()
cache = Cache()


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fallback to the configured local cache.

    Args:
        app: Flask application instance

    Returns:
        bool: True if Redis connected, False if using fallback
    """
    redis_url = os.getenv('REDIS_URL')

    if redis_url and not app.config.get('TESTING'):
        try:
            import redis
            r = redis.from_url(redis_url, socket_connect_timeout=2)
            r.ping()

            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_KEY_PREFIX'] = 'vault:'
            app.config.setdefault('CACHE_DEFAULT_TIMEOUT', 300)

            cache.init_app(app)
            logger.info('[Vault] Redis cache connected: %s', redis_url.split('@')[-1])
            return True

        except Exception as e:
            logger.warning('[Vault] Redis unavailable (%s), using simple cache', str(e))
            app.config['CACHE_TYPE'] = 'SimpleCache'

    app.config.setdefault('CACHE_TYPE', 'SimpleCache')
    app.config.setdefault('CACHE_DEFAULT_TIMEOUT', 300)

    cache.init_app(app)
    logger.info('[Vault] Using %s (no Redis)', app.config['CACHE_TYPE'])
    return False


def cache_key(*parts) -> str:
    """Build a namespaced cache key from its parts."""
    return ':'.join(str(p) for p in parts)
