"""Tests for prospector.pipeline.manager — run creation, orchestration, resume, response."""
import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from prospector.errors import ProviderTimeout, QuotaExceeded, RunPersistenceError
from prospector.models.db_run import DbPipelineRun
from prospector.models.run import PipelineRun
from prospector.services.circuit_breaker import CLOSED, OPEN
from prospector.pipeline.manager import (
    build_response, create_run, execute_run, resume_run, run_pipeline, sort_leads_by_final_score,
    _generate_run_summary,
)


# ── Helpers ──────────────────────────────────────────────────────────────────

class WorkerKilled(BaseException):
    """Simulates the worker process dying mid-stage."""


def _ai_response(final_score):
    return {
        'success': True,
        'analiseIA': {'scoreFinal': final_score, 'classificacao': 'HOT', 'resumo': 'ok'},
    }


@pytest.fixture
def providers(provider_lead):
    """Patched n8n calls: A is HOT with a site, B is WARM without one."""
    lead_a = provider_lead('A', nome='Academia A', classificacao='HOT')
    lead_b = provider_lead('B', nome='Academia B', classificacao='WARM', score=65,
                           site=None, temSite=False)
    scores = {'A': 90, 'B': 70}
    with patch('prospector.services.n8n.search_area') as search, \
         patch('prospector.services.n8n.verify_ads') as verify, \
         patch('prospector.services.n8n.analyze_lead') as analyze, \
         patch('prospector.services.n8n.request_diagnostic') as diagnose:
        search.return_value = {'success': True, 'leads': [lead_a, lead_b]}
        verify.return_value = {'success': True, 'fazGoogleAds': True}
        analyze.side_effect = lambda place_id, lead_id: _ai_response(scores[place_id])
        diagnose.return_value = {'diagnosticoIA': {'scoreGeral': 88}}
        yield SimpleNamespace(search=search, verify=verify, analyze=analyze, diagnose=diagnose)


def _area(name, lat=-22.9, lng=-47.06, radius=5000):
    return {'name': name, 'lat': lat, 'lng': lng, 'radius': radius}


REQUEST = {
    'category': 'academia',
    'areas': [{'name': 'São Paulo', 'lat': -23.55, 'lng': -46.63, 'radius': 5000}],
    'score_min': 40,
    'max_per_area': 10,
}


# ── Sorting ──────────────────────────────────────────────────────────────────

class TestSortLeads:

    def test_highest_first_nulls_last(self):
        leads = [SimpleNamespace(id=1, final_score=None), SimpleNamespace(id=2, final_score=70),
                 SimpleNamespace(id=3, final_score=90)]
        assert [lead.final_score for lead in sort_leads_by_final_score(leads)] == [90, 70, None]

    def test_unscored_keep_their_order(self):
        leads = [SimpleNamespace(id=i, final_score=None) for i in (5, 3, 9)]
        assert [lead.id for lead in sort_leads_by_final_score(leads)] == [5, 3, 9]


# ── create_run ────────────────────────────────────────────────────────────────

class TestCreateRun:

    def test_defaults(self, db_session):
        run = create_run('tenant-a', {'category': 'academia', 'areas': [_area('Campinas')]})
        assert run.status == 'pending'
        assert run.score_min == 40
        assert run.max_per_area == 10
        assert (run.verify_ads, run.run_ai, run.run_diagnostic) == (True, True, False)
        assert db_session.get(DbPipelineRun, run.id) is not None

    def test_flags_and_client_ref(self):
        run = create_run('tenant-a', dict(REQUEST, verify_ads=False, run_diagnostic=True, client_ref='c-1'))
        assert run.verify_ads is False
        assert run.run_diagnostic is True
        assert run.client_ref == 'c-1'

    @pytest.mark.parametrize('data', [
        {'areas': [_area('Campinas')]},
        {'category': 'academia'},
        {'category': 'academia', 'areas': []},
        {'category': 'academia', 'areas': [{'lat': 1}]},
        {'category': 'academia', 'areas': [_area('X', lat='north')]},
        {'category': 'academia', 'areas': [_area('X')], 'max_per_area': 0},
        {'category': 'academia', 'areas': [{'name': 'X', 'lat': -22.9, 'lng': -47.06}]},
        {'category': 'academia', 'areas': [{'name': 'X'}]},
        {'category': 'academia', 'areas': [_area('X', lat=95)]},
        {'category': 'academia', 'areas': [_area('X', radius=0)]},
        {'category': 'academia', 'areas': [_area('X')], 'score_min': 101},
        {'category': 'academia', 'areas': [_area('X')], 'score_min': -1},
        {'category': 'academia', 'areas': [_area('X')], 'score_min': 'high'},
    ])
    def test_invalid_requests(self, data):
        with pytest.raises(ValueError):
            create_run('tenant-a', data)

    def test_quota_rejection_creates_nothing(self, db_session):
        areas = [_area(f'Area {i}') for i in range(4)]
        with patch('prospector.services.n8n.search_area') as search:
            with pytest.raises(QuotaExceeded) as exc_info:
                create_run('tenant-a', {'category': 'academia', 'areas': areas})
        assert exc_info.value.limit == 3
        search.assert_not_called()
        assert db_session.query(DbPipelineRun).count() == 0


# ── execute_run ──────────────────────────────────────────────────────────────

class TestExecuteRun:

    def test_end_to_end(self, providers, fake_clock):
        run = create_run('tenant-a', REQUEST)
        execute_run(run, sleep=fake_clock.sleep)

        assert run.status == 'completed'
        assert run.finished_at is not None
        response = build_response(run)
        assert response['success'] is True
        stats = response['stats']
        assert stats['search']['total'] == 2
        assert stats['search']['new'] == 2
        assert stats['search']['by_area'] == {'São Paulo': 2}
        assert stats['ads_verified'] == 1
        assert stats['analyzed'] == 2
        assert stats['diagnosed'] == 0
        assert stats['errors'] == []
        assert [lead['name'] for lead in response['leads']] == ['Academia A', 'Academia B']
        assert [lead['final_score'] for lead in response['leads']] == [90, 70]
        assert response['summary']['total_leads'] == 2

        providers.verify.assert_called_once()
        providers.diagnose.assert_not_called()
        # one ads delay, two AI delays
        assert fake_clock.sleeps == [0.5, 1.0, 1.0]

    def test_run_is_persisted_completed(self, providers, fake_clock):
        run = create_run('tenant-a', REQUEST)
        run_pipeline(run.id, sleep=fake_clock.sleep)
        loaded = PipelineRun.load(run.id)
        assert loaded.status == 'completed'
        assert loaded.completed_stages == ['search', 'ads_verification', 'ai_analysis']
        assert loaded.ai_analyzed == 2

    def test_diagnostic_runs_when_enabled(self, providers, fake_clock):
        run = create_run('tenant-a', dict(REQUEST, run_diagnostic=True))
        execute_run(run, sleep=fake_clock.sleep)
        assert run.diagnosed == 1
        providers.diagnose.assert_called_once()

    def test_disabled_stages_are_not_called(self, providers, fake_clock):
        run = create_run('tenant-a', dict(REQUEST, verify_ads=False, run_ai=False))
        execute_run(run, sleep=fake_clock.sleep)
        assert run.status == 'completed'
        providers.verify.assert_not_called()
        providers.analyze.assert_not_called()
        assert fake_clock.sleeps == []

    def test_partial_enrichment_failure_still_completes(self, providers, fake_clock):
        providers.analyze.side_effect = [_ai_response(90), ProviderTimeout('AI analysis timed out after 120s')]
        run = create_run('tenant-a', REQUEST)
        execute_run(run, sleep=fake_clock.sleep)

        assert run.status == 'completed'
        assert run.ai_analyzed == 1
        assert run.error_messages == ['AI Academia B: AI analysis timed out after 120s']
        leads = build_response(run)['leads']
        assert [lead['final_score'] for lead in leads] == [90, None]

    def test_candidate_query_failure_is_contained(self, providers, fake_clock):
        run = create_run('tenant-a', REQUEST)
        with patch('prospector.services.lead_store.ads_candidates', side_effect=RuntimeError('db hiccup')):
            execute_run(run, sleep=fake_clock.sleep)
        assert run.status == 'completed'
        assert run.ads_verified == 0
        assert run.ai_analyzed == 2
        assert run.error_messages == ['Ads: db hiccup']

    def test_all_areas_failing_fails_run(self, providers, fake_clock):
        providers.search.side_effect = ProviderTimeout('search timed out after 120s')
        run = create_run('tenant-a', dict(REQUEST, areas=[_area('Campinas'), _area('Santos', lat=-23.96, lng=-46.33)]))
        execute_run(run, sleep=fake_clock.sleep)

        assert run.status == 'failed'
        assert run.error_message == 'All 2 areas failed'
        assert run.error_messages == [
            'Search Campinas: search timed out after 120s',
            'Search Santos: search timed out after 120s',
            'Search: All 2 areas failed',
        ]
        providers.verify.assert_not_called()
        response = build_response(run)
        assert response['success'] is False
        assert response['error'] == 'All 2 areas failed'
        assert response['leads'] == []

    def test_one_area_failing_keeps_run_alive(self, providers, fake_clock):
        providers.search.side_effect = [
            ProviderTimeout('search timed out after 120s'),
            providers.search.return_value,
        ]
        run = create_run('tenant-a', dict(REQUEST, areas=[_area('Campinas'), _area('Santos', lat=-23.96, lng=-46.33)]))
        execute_run(run, sleep=fake_clock.sleep)
        assert run.status == 'completed'
        assert run.leads_new == 2
        assert run.error_messages[0] == 'Search Campinas: search timed out after 120s'

    def test_second_run_finds_only_duplicates(self, providers, fake_clock):
        execute_run(create_run('tenant-a', REQUEST), sleep=fake_clock.sleep)
        providers.verify.reset_mock()
        providers.analyze.reset_mock()

        second = execute_run(create_run('tenant-a', REQUEST), sleep=fake_clock.sleep)
        assert second.status == 'completed'
        assert second.leads_found == 2
        assert second.leads_new == 0
        assert second.leads_duplicate == 2
        providers.verify.assert_not_called()
        providers.analyze.assert_not_called()
        assert build_response(second)['leads'] == []
        assert second.stage_outputs['ai_analysis']['processed'] == 0

    def test_empty_search(self, providers, fake_clock):
        providers.search.return_value = {'success': True, 'leads': []}
        run = execute_run(create_run('tenant-a', REQUEST), sleep=fake_clock.sleep)
        assert run.status == 'completed'
        assert run.summary.startswith('No academia found')

    def test_persistence_failure_fails_run(self, providers, fake_clock):
        from prospector.services import db as db_service
        real_persist = db_service.persist_run

        def flaky(run):
            if run.current_stage == 'ai_analysis':
                raise RunPersistenceError('database unavailable')
            return real_persist(run)

        run = create_run('tenant-a', REQUEST)
        with patch('prospector.services.db.persist_run', side_effect=flaky):
            execute_run(run, sleep=fake_clock.sleep)

        assert run.status == 'failed'
        assert run.error_message == 'database unavailable'
        providers.analyze.assert_not_called()
        assert PipelineRun.load(run.id).status == 'processing'


class TestRunsShareNoBreakerState:

    @patch('prospector.services.n8n.requests.post')
    def test_failed_run_does_not_block_next_run(self, mock_post, provider_lead, breakers, fake_clock):
        areas = [_area('Campinas'), _area('Santos', lat=-23.96, lng=-46.33), _area('Sorocaba', lat=-23.5, lng=-47.46)]
        request = dict(REQUEST, areas=areas, verify_ads=False, run_ai=False)
        mock_post.side_effect = requests.exceptions.Timeout('read timed out')

        first = execute_run(create_run('tenant-a', request), sleep=fake_clock.sleep)
        assert first.status == 'failed'
        assert breakers['n8n_search'].state == OPEN

        mock_post.reset_mock()
        mock_post.side_effect = None
        mock_post.return_value = MagicMock(
            ok=True, status_code=200,
            text=json.dumps({'success': True, 'leads': [provider_lead('A')]}),
        )
        second = execute_run(create_run('tenant-b', request), sleep=fake_clock.sleep)

        assert second.status == 'completed'
        assert mock_post.call_count == 3
        assert second.leads_new == 1
        assert second.errors == []
        assert breakers['n8n_search'].state == CLOSED


# ── resume_run ───────────────────────────────────────────────────────────────

class TestResumeRun:

    def test_resumes_at_first_unfinished_stage(self, providers, fake_clock):
        run = create_run('tenant-a', REQUEST)
        with patch('prospector.pipeline.ai.AIAnalysisStage.run', side_effect=WorkerKilled):
            with pytest.raises(WorkerKilled):
                execute_run(run, sleep=fake_clock.sleep)

        interrupted = PipelineRun.load(run.id)
        assert interrupted.status == 'processing'
        assert interrupted.completed_stages == ['search', 'ads_verification']
        providers.search.reset_mock()
        providers.verify.reset_mock()

        resumed = resume_run(run.id, tenant_id='tenant-a', sleep=fake_clock.sleep)

        assert resumed.status == 'completed'
        providers.search.assert_not_called()
        providers.verify.assert_not_called()
        assert providers.analyze.call_count == 2
        assert resumed.ads_verified == 1
        assert resumed.ai_analyzed == 2

    def test_resume_failed_search(self, providers, fake_clock):
        providers.search.side_effect = ProviderTimeout('search timed out after 120s')
        run = execute_run(create_run('tenant-a', REQUEST), sleep=fake_clock.sleep)
        assert run.status == 'failed'

        providers.search.side_effect = None
        resumed = resume_run(run.id, sleep=fake_clock.sleep)
        assert resumed.status == 'completed'
        assert resumed.error_message is None
        assert resumed.leads_new == 2

    def test_resume_after_interrupted_upsert_enriches_every_lead(self, providers, fake_clock):
        from prospector.services import lead_store
        real_upsert_one = lead_store._upsert_one
        seen = []

        def breaks_on_second(session, values):
            seen.append(values['place_id'])
            if len(seen) == 2:
                raise RuntimeError('connection reset')
            return real_upsert_one(session, values)

        run = create_run('tenant-a', REQUEST)
        with patch('prospector.services.lead_store._upsert_one', side_effect=breaks_on_second):
            execute_run(run, sleep=fake_clock.sleep)

        assert run.status == 'failed'
        assert run.error_message == 'Lead upsert interrupted: connection reset'
        assert run.summary.startswith('Search for academia failed. ')
        interrupted = PipelineRun.load(run.id)
        assert interrupted.completed_stages == []
        assert len(interrupted.lead_ids) == 1
        providers.analyze.assert_not_called()

        resumed = resume_run(run.id, sleep=fake_clock.sleep)

        assert resumed.status == 'completed'
        assert resumed.leads_new == 2
        assert resumed.leads_duplicate == 0
        assert len(resumed.lead_ids) == 2
        assert resumed.stage_outputs['search']['new_by_city'] == {'São Paulo': 2}
        providers.verify.assert_called_once()
        assert sorted(c.args[0] for c in providers.analyze.call_args_list) == ['A', 'B']
        assert resumed.ai_analyzed == 2

    def test_missing_run(self):
        with pytest.raises(LookupError):
            resume_run('nope')

    def test_other_tenant_cannot_resume(self, providers, fake_clock):
        run = create_run('tenant-a', REQUEST)
        with pytest.raises(LookupError):
            resume_run(run.id, tenant_id='tenant-b')

    def test_completed_run_rejected(self, providers, fake_clock):
        run = execute_run(create_run('tenant-a', REQUEST), sleep=fake_clock.sleep)
        with pytest.raises(ValueError):
            resume_run(run.id, sleep=fake_clock.sleep)


# ── Summary ──────────────────────────────────────────────────────────────────

class TestRunSummary:

    def test_completed_summary(self, make_run):
        run = make_run()
        run.leads_found = 12
        run.leads_new = 9
        run.leads_duplicate = 3
        run.search_stats = {'hot': 4, 'warm': 5}
        run.ads_verified = 6
        run.ai_analyzed = 9
        summary = _generate_run_summary(run)
        assert summary.startswith('Found 12 academia in 1 area(s) (9 new, 3 already known).')
        assert '4 HOT and 5 WARM.' in summary
        assert '6 ads verified, 9 AI-analyzed.' in summary

    def test_errors_mentioned(self, make_run):
        run = make_run()
        run.leads_found = 1
        run.leads_new = 1
        run.add_error('ai_analysis', 'boom', lead_name='X')
        assert 'Warning: 1 error(s) along the way.' in _generate_run_summary(run)

    def test_failed_summary(self, make_run):
        run = make_run()
        run.add_error('search', 'All 1 areas failed')
        assert _generate_run_summary(run, failed=True) == (
            'Search for academia failed in all 1 area(s). Error: Search: All 1 areas failed'
        )
