"""
Redis-backed circuit breaker for the n8n provider webhooks.

States:
  - CLOSED    → calls pass through
  - OPEN      → provider failed `failure_threshold` times in a row; check()
                and call() short-circuit with CircuitOpenError until
                `reset_timeout` passes
  - HALF_OPEN → one trial call is allowed; success closes, failure re-opens

The single-lead API routes short-circuit on an open breaker. Pipeline runs
only record through it (see CircuitBreaker.record) so breaker state never
carries over from one run to the next.

All Redis bookkeeping fails open: if Redis is unreachable the breaker behaves
as CLOSED and the provider call still runs.
"""
import logging
import time

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'

# name → (failure_threshold, reset_timeout seconds)
PROVIDER_BREAKERS = {
    'n8n_search': (3, 300),
    'n8n_ads': (5, 120),
    'n8n_ai': (5, 120),
    'n8n_diagnostic': (3, 600),
}


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is open, provider unavailable")


class CircuitBreaker:
    """
    Usage:
        cb = get_breaker('n8n_ads')
        cb.check()  # single-lead routes only
        data = cb.record(post_webhook, url, payload, timeout=120)
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    # ── State ─────────────────────────────────────────────────────────

    @property
    def state(self):
        try:
            current = self.redis.get(self._key('state'))
            if current is None:
                return CLOSED
            if current == OPEN and self._seconds_since_failure() > self.reset_timeout:
                self.redis.set(self._key('state'), HALF_OPEN)
                return HALF_OPEN
            return current
        except Exception:
            return CLOSED

    def _seconds_since_failure(self):
        last = self.redis.get(self._key('last_failure'))
        if not last:
            return float('inf')
        return time.time() - float(last)

    @property
    def failure_count(self):
        try:
            val = self.redis.get(self._key('failures'))
            return int(val) if val else 0
        except Exception:
            return 0

    # ── Calls ─────────────────────────────────────────────────────────

    def check(self):
        """Raise CircuitOpenError while the breaker is open."""
        if self.state != OPEN:
            return
        retry_after = None
        try:
            retry_after = max(0.0, self.reset_timeout - self._seconds_since_failure())
        except Exception:
            pass
        raise CircuitOpenError(self.name, retry_after=retry_after)

    def call(self, func, *args, **kwargs):
        """Run func through the breaker; re-raises whatever func raises."""
        self.check()
        return self.record(func, *args, **kwargs)

    def record(self, func, *args, **kwargs):
        """
        Run func and update the breaker's bookkeeping, whatever the state.

        Pipeline runs call providers this way: an open circuit left behind by
        another run must not keep this run's leads from being sent.
        """
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('health'), 'success', 1)
            pipe.hset(self._key('health'), 'last_success', str(time.time()))
            pipe.execute()
        except Exception:
            logger.debug("Breaker '%s': could not record success", self.name)

    def _on_failure(self, error):
        try:
            count = self.redis.incr(self._key('failures'))
            self.redis.set(self._key('last_failure'), str(time.time()))
            pipe = self.redis.pipeline()
            pipe.hincrby(self._key('health'), 'failure', 1)
            pipe.hset(self._key('health'), 'last_failure', str(time.time()))
            pipe.hset(self._key('health'), 'last_error', str(error)[:200])
            pipe.execute()
        except Exception:
            logger.debug("Breaker '%s': could not record failure", self.name)
            return

        if count >= self.failure_threshold:
            try:
                self.redis.set(self._key('state'), OPEN)
            except Exception:
                return
            logger.warning("Circuit '%s' OPENED after %d failures: %s", self.name, count, error)
        else:
            logger.info("Circuit '%s' failure %d/%d: %s", self.name, count, self.failure_threshold, error)

    def reset(self):
        """Force the breaker back to CLOSED."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('last_failure'))
            pipe.execute()
            logger.info("Circuit '%s' manually reset", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)

    def get_health(self) -> dict:
        """Health snapshot for /api/health."""
        health = {
            'name': self.name,
            'state': 'unknown',
            'failure_count': 0,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': 0,
            'total_failure': 0,
            'last_success': None,
            'last_failure': None,
            'last_error': '',
        }
        try:
            data = self.redis.hgetall(self._key('health')) or {}
        except Exception:
            return health
        health.update({
            'state': self.state,
            'failure_count': self.failure_count,
            'total_success': int(data.get('success', 0)),
            'total_failure': int(data.get('failure', 0)),
            'last_success': float(data['last_success']) if data.get('last_success') else None,
            'last_failure': float(data['last_failure']) if data.get('last_failure') else None,
            'last_error': data.get('last_error', ''),
        })
        return health


# ── Registry ──────────────────────────────────────────────────────────────────

_registry = {}


def get_breaker(name, redis_client=None):
    """Get or create the named breaker (one instance per name)."""
    if name not in _registry:
        if redis_client is None:
            from prospector.extensions import redis_client
        threshold, timeout = PROVIDER_BREAKERS.get(name, (3, 300))
        _registry[name] = CircuitBreaker(name, redis_client, failure_threshold=threshold, reset_timeout=timeout)
    return _registry[name]


def get_all_breakers():
    return dict(_registry)


def init_breakers(redis_client):
    """Register a breaker for every provider webhook."""
    for name, (threshold, timeout) in PROVIDER_BREAKERS.items():
        _registry[name] = CircuitBreaker(name, redis_client, failure_threshold=threshold, reset_timeout=timeout)
    return dict(_registry)
