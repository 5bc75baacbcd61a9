"""Shared test fixtures."""
import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from prospector.database import Base


class FakeRedis:
    """Minimal in-memory Redis fake for circuit breaker bookkeeping."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}

    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value):
        self.get_store[key] = value

    def incr(self, key):
        val = int(self.get_store.get(key, 0)) + 1
        self.get_store[key] = str(val)
        return val

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)

    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = value

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that applies queued ops on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def set(self, key, value):
        self._ops.append(('set', key, value))
        return self

    def delete(self, *keys):
        self._ops.append(('delete', keys))
        return self

    def hincrby(self, key, field, amount):
        self._ops.append(('hincrby', key, field, amount))
        return self

    def hset(self, key, field, value):
        self._ops.append(('hset', key, field, value))
        return self

    def execute(self):
        for op in self._ops:
            if op[0] == 'set':
                self._redis.set(op[1], op[2])
            elif op[0] == 'delete':
                self._redis.delete(*op[1])
            elif op[0] == 'hincrby':
                self._redis.hincrby(op[1], op[2], op[3])
            elif op[0] == 'hset':
                self._redis.hset(op[1], op[2], op[3])
        self._ops = []


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import prospector.models.db_run
    import prospector.models.lead
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine, expire_on_commit=False)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that services calling session.close()
    in their finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('prospector.database.get_session', return_value=db_session), \
         patch('prospector.services.db.get_session', return_value=db_session), \
         patch('prospector.services.lead_store.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture
def fake_redis():
    """In-memory Redis fake with dict-backed storage."""
    return FakeRedis()


@pytest.fixture(autouse=True)
def breakers(fake_redis):
    """Fresh provider breakers backed by the fake Redis for every test."""
    from prospector.services.circuit_breaker import _registry, init_breakers
    _registry.clear()
    with patch('prospector.extensions.redis_client', fake_redis):
        yield init_breakers(fake_redis)
    _registry.clear()


@pytest.fixture(autouse=True)
def reset_limits():
    """Drop any cached limits.yaml between tests."""
    from prospector.pipeline.limits_config import reset_cache
    reset_cache()
    yield
    reset_cache()


@pytest.fixture
def mock_redis():
    """Mock Redis client for code paths that only need call assertions."""
    mock = MagicMock()
    mock.get.return_value = None
    with patch('prospector.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app(fake_redis):
    """Flask test app."""
    from prospector import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def fake_clock():
    """Deterministic clock: sleep() advances now() instead of blocking."""
    class FakeClock:
        def __init__(self):
            self.now = 0.0
            self.sleeps = []

        def sleep(self, seconds):
            self.sleeps.append(seconds)
            self.now += seconds

    return FakeClock()


@pytest.fixture
def make_run():
    """Factory fixture — builds an unsaved PipelineRun."""
    from prospector.models.run import PipelineRun

    def _make(**overrides):
        defaults = dict(
            tenant_id='tenant-a',
            category='academia',
            areas=[{'name': 'São Paulo', 'lat': -23.55, 'lng': -46.63, 'radius': 5000}],
            score_min=40,
            max_per_area=10,
            verify_ads=True,
            run_ai=True,
            run_diagnostic=False,
        )
        defaults.update(overrides)
        return PipelineRun(**defaults)
    return _make


@pytest.fixture
def provider_lead():
    """Factory for a search-workflow lead dict."""
    def _make(place_id, **overrides):
        lead = {
            'googlePlaceId': place_id,
            'nome': f'Business {place_id}',
            'endereco': 'Rua A, 100',
            'cidade': 'São Paulo',
            'estado': 'SP',
            'telefone': '11999990000',
            'whatsapp': '5511999990000',
            'site': f'https://{place_id}.example.com',
            'rating': 4.5,
            'totalReviews': 30,
            'tipos': ['gym'],
            'horarioFuncionamento': ['Mon 6-22'],
            'score': 85,
            'classificacao': 'HOT',
            'prioridade': 1,
            'oportunidades': ['FEW_REVIEWS'],
            'temSite': True,
            'siteSeguro': True,
            'temTelefone': True,
            'temWhatsapp': True,
        }
        lead.update(overrides)
        return lead
    return _make
