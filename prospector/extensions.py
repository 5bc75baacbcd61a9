"""
Shared client instances.

redis.from_url does not connect until first use, so importing this module is
safe when Redis is not running (tests, one-off scripts).
"""
import logging
import redis

from prospector.config import REDIS_URL

logger = logging.getLogger('prospector.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)
