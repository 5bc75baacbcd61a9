"""
Pipeline Stage 1: SEARCH — Discover businesses area by area.

Areas are searched sequentially; an area that fails is recorded and
skipped. Only when every area fails is the stage (and the run) failed.
The combined provider leads are then upserted into the lead store.
"""
import logging
from typing import Dict, List, Any

from prospector.errors import SearchFailed
from prospector.pipeline.base import StageAdapter, StageResult

logger = logging.getLogger('pipeline.search')


# ── Stats ─────────────────────────────────────────────────────────────────────

def combined_search_stats(leads: List[Dict]) -> Dict[str, int]:
    """Counters over raw provider leads from every successful area."""
    stats = {
        'total': len(leads),
        'hot': 0,
        'warm': 0,
        'cool': 0,
        'cold': 0,
        'with_whatsapp': 0,
        'without_website': 0,
        'insecure_site': 0,
    }
    for lead in leads:
        classification = (lead.get('classificacao') or '').lower()
        if classification in ('hot', 'warm', 'cool', 'cold'):
            stats[classification] += 1
        if lead.get('temWhatsapp') or lead.get('whatsapp'):
            stats['with_whatsapp'] += 1
        has_site = lead.get('temSite') if 'temSite' in lead else bool(lead.get('site'))
        if not has_site:
            stats['without_website'] += 1
        elif lead.get('siteSeguro') is False:
            stats['insecure_site'] += 1
    return stats


def stats_by_city(leads: List[Dict]) -> Dict[str, Dict[str, int]]:
    """{city: {total, hot, warm, cool}}; leads without a city count under 'Unknown'."""
    by_city: Dict[str, Dict[str, int]] = {}
    for lead in leads:
        city = lead.get('cidade') or 'Unknown'
        bucket = by_city.setdefault(city, {'total': 0, 'hot': 0, 'warm': 0, 'cool': 0})
        bucket['total'] += 1
        classification = (lead.get('classificacao') or '').lower()
        if classification in ('hot', 'warm', 'cool'):
            bucket[classification] += 1
    return by_city


# ── Adapter ───────────────────────────────────────────────────────────────────

class SearchStage(StageAdapter):
    """Query the search workflow per area and upsert the results."""
    stage = 'search'
    description = 'Find businesses by category in each area, scored and classified'
    apis = ['n8n search workflow']

    def run(self, lead_ids: List[int], run: Any) -> StageResult:
        from prospector.services import n8n
        from prospector.services.lead_store import upsert_leads

        found: List[Dict] = []
        areas: List[Dict] = []
        result = StageResult(lead_ids=[])

        for area in run.areas:
            name = area.get('name', '')
            try:
                data = n8n.search_area(
                    category=run.category,
                    area=area,
                    score_min=run.score_min,
                    max_per_area=run.max_per_area,
                    request_id=run.request_id,
                    client_ref=run.client_ref,
                )
            except Exception as e:
                logger.warning("Search failed for area %s: %s", name, e)
                areas.append({'name': name, 'status': 'failed', 'error': str(e)})
                result.add_error(str(e), lead_name=name)
                continue

            area_leads = [lead for lead in (data.get('leads') or []) if isinstance(lead, dict)]
            areas.append({'name': name, 'status': 'ok', 'leads': len(area_leads)})
            found.extend(area_leads)

        if areas and all(a['status'] == 'failed' for a in areas):
            raise SearchFailed(
                f"All {len(areas)} areas failed",
                area_errors=[{'area': a['name'], 'message': a['error']} for a in areas],
            )

        upserted = upsert_leads(run.tenant_id, found, run_id=run.id, client_ref=run.client_ref)
        logger.info("Search found %d leads (%d new, %d duplicates) across %d areas",
                    len(found), upserted.new, upserted.duplicates, len(areas))

        result.lead_ids = upserted.new_ids
        result.processed = len(found)
        result.succeeded = upserted.new
        result.skipped = upserted.duplicates + upserted.skipped
        result.failed = sum(1 for a in areas if a['status'] == 'failed')
        result.meta = {
            'areas': areas,
            'search_stats': combined_search_stats(found),
            'area_stats': stats_by_city(found),
            'new_by_city': upserted.new_by_city,
            'total': len(found),
            'new': upserted.new,
            'duplicates': upserted.duplicates,
            'duplicate_ids': upserted.duplicate_ids,
        }
        return result
