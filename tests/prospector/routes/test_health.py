"""Tests for /health, /api/health and /api/health/<service>/reset."""
import time


class TestLiveness:

    def test_health(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.get_json() == {'status': 'healthy'}


class TestApiHealth:
    """GET /api/health returns circuit breaker states."""

    def test_all_provider_breakers_listed(self, client):
        data = client.get('/api/health').get_json()
        assert data['status'] == 'healthy'
        assert data['open_circuits'] == []
        assert set(data['services']) == {'n8n_search', 'n8n_ads', 'n8n_ai', 'n8n_diagnostic'}

    def test_service_has_expected_fields(self, client):
        svc = client.get('/api/health').get_json()['services']['n8n_ai']
        assert svc['name'] == 'n8n_ai'
        assert svc['state'] == 'closed'
        assert svc['failure_threshold'] == 5
        for key in ('failure_count', 'total_success', 'total_failure', 'last_error'):
            assert key in svc

    def test_open_breaker_degrades_status(self, client, fake_redis):
        fake_redis.set('cb:n8n_search:state', 'open')
        fake_redis.set('cb:n8n_search:last_failure', str(time.time()))
        data = client.get('/api/health').get_json()
        assert data['status'] == 'degraded'
        assert data['open_circuits'] == ['n8n_search']


class TestResetCircuit:
    """POST /api/health/<service>/reset closes a circuit breaker."""

    def test_reset_known_service(self, client, fake_redis):
        fake_redis.set('cb:n8n_ads:state', 'open')
        fake_redis.set('cb:n8n_ads:failures', '5')
        resp = client.post('/api/health/n8n_ads/reset')
        assert resp.status_code == 200
        data = resp.get_json()
        assert data['success'] is True
        assert data['service']['state'] == 'closed'
        assert data['service']['failure_count'] == 0

    def test_reset_unknown_service_404(self, client):
        resp = client.post('/api/health/nonexistent/reset')
        assert resp.status_code == 404
        assert resp.get_json()['success'] is False
