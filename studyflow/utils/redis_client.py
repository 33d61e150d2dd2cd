import os

import redis

from .logger import get_logger

LOG = get_logger()

REDIS_URL = os.getenv('REDIS_URL', None)
REDIS_ENABLED = os.getenv('REDIS_ENABLED', 'true').lower() in ('1', 'true', 'yes')


def connect_redis():
    """Return a connected Redis client, or None when Redis is disabled or unreachable.

    Callers fall back to their in-process store on None.
    """
    if not REDIS_ENABLED:
        LOG.info('redis_disabled')
        return None
    try:
        if REDIS_URL:
            client = redis.from_url(REDIS_URL, decode_responses=True)
        else:
            client = redis.Redis(host=os.getenv('REDIS_HOST', 'redis'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None, decode_responses=True, socket_timeout=3)
        client.ping()
        LOG.info('redis_connected', extra={'redis_url': REDIS_URL})
        return client
    except redis.RedisError as e:
        LOG.warning('redis_unavailable', extra={'error': str(e)})
        return None
