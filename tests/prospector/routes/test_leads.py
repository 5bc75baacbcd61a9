"""Tests for the /api/leads endpoints."""
import time
from unittest.mock import patch

import pytest

from prospector.errors import ProviderTimeout
from prospector.services.lead_store import merge_lead_fields, upsert_leads

TENANT = {'X-Tenant-Id': 'tenant-a'}


@pytest.fixture
def leads(provider_lead):
    ids = upsert_leads('tenant-a', [
        provider_lead('site'),
        provider_lead('nosite', site=None, temSite=False),
    ]).new_ids
    return dict(zip(['site', 'nosite'], ids))


class TestLeadStats:

    def test_stats_merge_leads_and_runs(self, client, leads, make_run):
        make_run().save()
        data = client.get('/api/leads/stats', headers=TENANT).get_json()
        assert data['success'] is True
        assert data['stats']['total'] == 2
        assert data['stats']['without_website'] == 1
        assert data['stats']['total_runs'] == 1
        assert data['stats']['last_run']['category'] == 'academia'

    def test_other_tenant_sees_nothing(self, client, leads):
        stats = client.get('/api/leads/stats', headers={'X-Tenant-Id': 'tenant-b'}).get_json()['stats']
        assert stats['total'] == 0
        assert stats['last_run'] is None


class TestVerifyAds:

    @patch('prospector.services.n8n.verify_ads')
    def test_verifies_and_returns_lead(self, mock_verify, client, leads):
        mock_verify.return_value = {'success': True, 'fazGoogleAds': True, 'usaGoogleAnalytics': True}
        resp = client.post(f"/api/leads/{leads['site']}/verify-ads", headers=TENANT)
        assert resp.status_code == 200
        lead = resp.get_json()['lead']
        assert lead['marketing']['level'] == 'ADVANCED'
        assert lead['marketing']['google_ads'] is True

    def test_no_website_400(self, client, leads):
        resp = client.post(f"/api/leads/{leads['nosite']}/verify-ads", headers=TENANT)
        assert resp.status_code == 400

    def test_other_tenant_404(self, client, leads):
        resp = client.post(f"/api/leads/{leads['site']}/verify-ads", headers={'X-Tenant-Id': 'tenant-b'})
        assert resp.status_code == 404

    @patch('prospector.services.n8n.verify_ads')
    def test_provider_failure_502(self, mock_verify, client, leads):
        mock_verify.side_effect = ProviderTimeout('ads verification timed out after 120s')
        resp = client.post(f"/api/leads/{leads['site']}/verify-ads", headers=TENANT)
        assert resp.status_code == 502
        assert 'timed out' in resp.get_json()['error']

    def test_open_circuit_503(self, client, leads, fake_redis):
        fake_redis.set('cb:n8n_ads:state', 'open')
        fake_redis.set('cb:n8n_ads:last_failure', str(time.time()))
        resp = client.post(f"/api/leads/{leads['site']}/verify-ads", headers=TENANT)
        assert resp.status_code == 503
        assert 'retry_after' in resp.get_json()


class TestAnalyze:

    @patch('prospector.services.n8n.analyze_lead')
    def test_analyze(self, mock_analyze, client, leads):
        mock_analyze.return_value = {'success': True, 'analiseIA': {'scoreFinal': 77, 'classificacao': 'warm'}}
        resp = client.post(f"/api/leads/{leads['site']}/analyze", headers=TENANT)
        assert resp.status_code == 200
        lead = resp.get_json()['lead']
        assert lead['final_score'] == 77
        assert lead['ai_classification'] == 'WARM'
        mock_analyze.assert_called_once_with('site', leads['site'])

    def test_missing_lead_404(self, client):
        assert client.post('/api/leads/999/analyze', headers=TENANT).status_code == 404


class TestDiagnostic:

    @patch('prospector.services.n8n.request_diagnostic')
    def test_create_then_fetch(self, mock_request, client, leads):
        mock_request.return_value = [{'diagnosticoIA': {'scoreGeral': 82, 'resumoExecutivo': 'Solid base.'}}]
        resp = client.post(f"/api/leads/{leads['site']}/diagnostic", headers=TENANT)
        assert resp.status_code == 200
        assert resp.get_json()['lead']['diagnostic_temperature'] == 'HOT'

        resp = client.get(f"/api/leads/{leads['site']}/diagnostic", headers=TENANT)
        assert resp.status_code == 200
        diagnostic = resp.get_json()['diagnostic']
        assert diagnostic['classification']['score'] == 82
        assert diagnostic['diagnosis']['summary'] == 'Solid base.'

    def test_fetch_without_diagnostic_404(self, client, leads):
        resp = client.get(f"/api/leads/{leads['site']}/diagnostic", headers=TENANT)
        assert resp.status_code == 404


class TestRescore:

    def test_rescore_includes_marketing_level(self, client, leads):
        before = client.post(f"/api/leads/{leads['site']}/rescore", headers=TENANT).get_json()['lead']
        merge_lead_fields(leads['site'], {'marketing_level': 'NONE'})
        after = client.post(f"/api/leads/{leads['site']}/rescore", headers=TENANT).get_json()['lead']
        assert after['score'] > before['score']
