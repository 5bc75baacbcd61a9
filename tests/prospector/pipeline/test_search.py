"""Tests for prospector.pipeline.search — per-area search and upsert."""
from unittest.mock import patch

import pytest

from prospector.errors import ProviderTimeout, SearchFailed
from prospector.models.lead import Lead
from prospector.pipeline.search import SearchStage, combined_search_stats, stats_by_city

AREAS = [
    {'name': 'Campinas', 'lat': -22.9, 'lng': -47.06, 'radius': 5000},
    {'name': 'Santos', 'lat': -23.96, 'lng': -46.33, 'radius': 5000},
]


class TestStats:

    def test_combined_stats(self, provider_lead):
        leads = [
            provider_lead('a', classificacao='HOT'),
            provider_lead('b', classificacao='WARM', site=None, temSite=False, whatsapp=None, temWhatsapp=False),
            provider_lead('c', classificacao='COOL', siteSeguro=False),
            provider_lead('d', classificacao='COLD'),
        ]
        assert combined_search_stats(leads) == {
            'total': 4, 'hot': 1, 'warm': 1, 'cool': 1, 'cold': 1,
            'with_whatsapp': 3, 'without_website': 1, 'insecure_site': 1,
        }

    def test_stats_by_city(self, provider_lead):
        leads = [
            provider_lead('a', cidade='Campinas', classificacao='HOT'),
            provider_lead('b', cidade='Campinas', classificacao='WARM'),
            provider_lead('c', cidade=None, classificacao='COLD'),
        ]
        assert stats_by_city(leads) == {
            'Campinas': {'total': 2, 'hot': 1, 'warm': 1, 'cool': 0},
            'Unknown': {'total': 1, 'hot': 0, 'warm': 0, 'cool': 0},
        }


class TestSearchStage:

    @patch('prospector.services.n8n.search_area')
    def test_searches_areas_sequentially_and_upserts(self, mock_search, make_run, provider_lead, db_session):
        mock_search.side_effect = [
            {'success': True, 'leads': [provider_lead('a', cidade='Campinas')]},
            {'success': True, 'leads': [provider_lead('b', cidade='Santos'), provider_lead('c', cidade='Santos')]},
        ]
        run = make_run(areas=AREAS, client_ref='client-7')
        result = SearchStage().run([], run)

        assert [c.kwargs['area']['name'] for c in mock_search.call_args_list] == ['Campinas', 'Santos']
        first = mock_search.call_args_list[0].kwargs
        assert first['category'] == 'academia'
        assert first['request_id'] == run.request_id
        assert first['client_ref'] == 'client-7'

        assert len(result.lead_ids) == 3
        assert result.meta['total'] == 3
        assert result.meta['new'] == 3
        assert result.meta['new_by_city'] == {'Campinas': 1, 'Santos': 2}
        assert [a['status'] for a in result.meta['areas']] == ['ok', 'ok']
        assert db_session.query(Lead).filter_by(run_id=run.id).count() == 3

    @patch('prospector.services.n8n.search_area')
    def test_one_area_failing_is_not_fatal(self, mock_search, make_run, provider_lead):
        mock_search.side_effect = [
            ProviderTimeout('search timed out after 120s'),
            {'success': True, 'leads': [provider_lead('b', cidade='Santos')]},
        ]
        result = SearchStage().run([], make_run(areas=AREAS))

        assert len(result.lead_ids) == 1
        assert result.failed == 1
        assert result.errors == [{'message': 'search timed out after 120s', 'lead_name': 'Campinas', 'lead_id': None}]
        assert result.meta['areas'][0] == {'name': 'Campinas', 'status': 'failed', 'error': 'search timed out after 120s'}

    @patch('prospector.services.n8n.search_area')
    def test_every_area_failing_raises(self, mock_search, make_run):
        mock_search.side_effect = ProviderTimeout('search timed out after 120s')
        with pytest.raises(SearchFailed) as exc_info:
            SearchStage().run([], make_run(areas=AREAS))
        assert [e['area'] for e in exc_info.value.area_errors] == ['Campinas', 'Santos']
        assert mock_search.call_count == 2

    @patch('prospector.services.n8n.search_area')
    def test_duplicates_are_not_forwarded(self, mock_search, make_run, provider_lead):
        mock_search.return_value = {'success': True, 'leads': [provider_lead('a'), provider_lead('b')]}
        first = SearchStage().run([], make_run())
        second = SearchStage().run([], make_run())

        assert len(first.lead_ids) == 2
        assert second.lead_ids == []
        assert second.meta['total'] == 2
        assert second.meta['duplicates'] == 2

    @patch('prospector.services.n8n.search_area')
    def test_empty_results_are_a_successful_search(self, mock_search, make_run):
        mock_search.return_value = {'success': True, 'leads': []}
        result = SearchStage().run([], make_run())
        assert result.lead_ids == []
        assert result.meta['search_stats']['total'] == 0

    @patch('prospector.services.n8n.search_area')
    def test_search_never_sleeps(self, mock_search, make_run, fake_clock):
        mock_search.return_value = {'success': True, 'leads': []}
        SearchStage(sleep=fake_clock.sleep).run([], make_run(areas=AREAS))
        assert fake_clock.sleeps == []
