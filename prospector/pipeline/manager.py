"""
Pipeline Manager — Run orchestration using the stage adapter registry.

Launches a PipelineRun through the 4 pipeline stages:
  SEARCH → ADS VERIFICATION → AI ANALYSIS → DEEP DIAGNOSTIC

Search is the only stage whose failure fails the run. The enrichment stages
work on the lead ids the search stage inserted, re-query the store for their
own candidates, and fold per-lead failures into the run's error list.
After every stage a marker lands in stage_outputs so a crashed run can be
resumed from the first unfinished stage.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Type

from prospector.config import PIPELINE_STAGES, PIPELINE_JOB_TIMEOUT
from prospector.errors import RunPersistenceError, SearchFailed, UpsertInterrupted
from prospector.models.run import PipelineRun
from prospector.pipeline.base import StageAdapter, StageResult
from prospector.pipeline.limits_config import get_request_defaults
from prospector.pipeline.quota import validate_quota
from prospector.services.notifications import notify_run_complete, notify_run_failed

logger = logging.getLogger('pipeline.manager')

from prospector.pipeline import search as search_mod
from prospector.pipeline import ads as ads_mod
from prospector.pipeline import ai as ai_mod
from prospector.pipeline import diagnostic as diagnostic_mod


# ── Lazy RQ queue (avoids import-time Redis connection) ──────────────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from prospector.extensions import redis_client
        from rq import Queue
        _queue = Queue(connection=redis_client)
    return _queue


# ── Stage registry ────────────────────────────────────────────────────────────

STAGE_REGISTRY: Dict[str, Type[StageAdapter]] = {
    'search':           search_mod.SearchStage,
    'ads_verification': ads_mod.AdsVerificationStage,
    'ai_analysis':      ai_mod.AIAnalysisStage,
    'deep_diagnostic':  diagnostic_mod.DeepDiagnosticStage,
}

# Run counter fed by each enrichment stage's successes
_STAGE_COUNTERS = {
    'ads_verification': 'ads_verified',
    'ai_analysis': 'ai_analyzed',
    'deep_diagnostic': 'diagnosed',
}


# ── Request parsing ──────────────────────────────────────────────────────────

def _flag(data: Dict, key: str, default: bool) -> bool:
    value = data.get(key)
    return default if value is None else bool(value)


def _parse_areas(raw) -> List[Dict]:
    if not isinstance(raw, list) or not raw:
        raise ValueError("areas must be a non-empty list")
    areas = []
    for i, area in enumerate(raw):
        if not isinstance(area, dict) or not str(area.get('name') or '').strip():
            raise ValueError(f"areas[{i}] must be an object with a name")
        missing = [key for key in ('lat', 'lng', 'radius') if area.get(key) is None]
        if missing:
            raise ValueError(f"areas[{i}] is missing {', '.join(missing)}")
        try:
            lat, lng, radius = float(area['lat']), float(area['lng']), float(area['radius'])
        except (TypeError, ValueError):
            raise ValueError(f"areas[{i}] lat, lng and radius must be numbers")
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise ValueError(f"areas[{i}] coordinates out of range")
        if radius <= 0:
            raise ValueError(f"areas[{i}] radius must be positive")
        areas.append({'name': str(area['name']).strip(), 'lat': lat, 'lng': lng, 'radius': radius})
    return areas


def create_run(tenant_id: str, data: Dict) -> PipelineRun:
    """
    Validate a pipeline request and persist a new pending PipelineRun.

    Raises ValueError for malformed input, QuotaExceeded when the request is
    too large (nothing is created or called), RunPersistenceError when the
    record cannot be written.
    """
    category = str(data.get('category') or '').strip()
    if not category:
        raise ValueError("category is required")
    areas = _parse_areas(data.get('areas'))

    defaults = get_request_defaults()
    try:
        score_min = int(data['score_min']) if data.get('score_min') is not None else defaults['score_min']
        max_per_area = int(data['max_per_area']) if data.get('max_per_area') is not None else None
    except (TypeError, ValueError):
        raise ValueError("score_min and max_per_area must be integers")
    if not 0 <= score_min <= 100:
        raise ValueError("score_min must be between 0 and 100")
    if max_per_area is not None and max_per_area < 1:
        raise ValueError("max_per_area must be at least 1")

    max_per_area = validate_quota(len(areas), max_per_area)

    run = PipelineRun(
        tenant_id=tenant_id,
        category=category,
        areas=areas,
        score_min=score_min,
        max_per_area=max_per_area,
        verify_ads=_flag(data, 'verify_ads', True),
        run_ai=_flag(data, 'run_ai', True),
        run_diagnostic=_flag(data, 'run_diagnostic', False),
        client_ref=data.get('client_ref') or None,
    )
    run.save()
    logger.info("Created run %s (%s) for tenant %s: category=%s areas=%d max_per_area=%d",
                run.id, run.request_id, tenant_id, category, len(areas), max_per_area)
    return run


def enqueue_run(run: PipelineRun):
    """Hand the run to an RQ worker."""
    _get_queue().enqueue(run_pipeline, run.id, job_timeout=PIPELINE_JOB_TIMEOUT)
    logger.info("Run %s enqueued", run.id)


def enqueue_resume(run: PipelineRun):
    _get_queue().enqueue(resume_run, run.id, tenant_id=run.tenant_id, job_timeout=PIPELINE_JOB_TIMEOUT)
    logger.info("Run %s enqueued for resume", run.id)


def get_run_status(run_id: str, tenant_id: str = None) -> Optional[dict]:
    run = PipelineRun.load(run_id, tenant_id=tenant_id)
    if not run:
        return None
    return run.to_dict()


# ── Pipeline runner ──────────────────────────────────────────────────────────

def run_pipeline(run_id: str, sleep: Callable[[float], None] = None) -> Optional[PipelineRun]:
    """RQ entry point: load the run and execute its remaining stages."""
    run = PipelineRun.load(run_id)
    if not run:
        logger.error("Run %s not found", run_id)
        return None
    return execute_run(run, sleep=sleep)


def execute_run(run: PipelineRun, sleep: Callable[[float], None] = None) -> PipelineRun:
    """
    Execute every enabled stage not yet marked complete.

    The run ends `completed` unless search fails entirely or the run record
    stops persisting; per-lead errors only add to run.errors.
    """
    try:
        _execute(run, sleep)
    except RunPersistenceError as e:
        logger.error("Run %s could not be persisted: %s", run.id, e)
        run.status = 'failed'
        run.error_message = str(e)
        try:
            run.save()
        except RunPersistenceError:
            logger.error("Run %s left in its last persisted state", run.id)
        notify_run_failed(run)
    return run


def _execute(run: PipelineRun, sleep):
    if run.status != 'processing':
        run.start()

    resumed = run.completed_stages
    if resumed:
        logger.info("Resuming run %s, already completed: %s", run.id, ', '.join(resumed),
                    extra={'run_id': run.id})
    else:
        logger.info("Starting run %s: category=%s areas=%d", run.id, run.category, len(run.areas),
                    extra={'run_id': run.id})

    for stage_name in PIPELINE_STAGES:
        if stage_name in resumed:
            continue
        if not run.stage_enabled(stage_name):
            logger.info("Stage '%s' disabled for run %s", stage_name, run.id)
            continue

        lead_ids = run.lead_ids
        if stage_name != 'search' and not lead_ids:
            logger.info("No new leads, skipping stage '%s'", stage_name)
            run.mark_stage_complete(stage_name, processed=0, succeeded=0, failed=0)
            run.save()
            continue

        adapter = STAGE_REGISTRY[stage_name](sleep=sleep)
        run.update_stage(stage_name)

        try:
            logger.info("Stage '%s' — %s — %d leads in", stage_name, adapter.__class__.__name__, len(lead_ids))
            result: StageResult = adapter.run(lead_ids, run)
        except SearchFailed as e:
            _fail_search(run, e)
            return
        except UpsertInterrupted as e:
            _keep_partial_search(run, e.result)
            _fail_search(run, e)
            return
        except Exception as e:
            if stage_name == 'search':
                _fail_search(run, e)
                return
            # Candidate selection failed; the stage contributes nothing
            logger.error("Stage '%s' FAILED: %s", stage_name, e, exc_info=True)
            run.add_error(stage_name, str(e))
            run.mark_stage_complete(stage_name, processed=0, succeeded=0, failed=0, error=str(e))
            run.save()
            continue

        _apply_result(run, stage_name, result)
        run.save()

        logger.info("Stage '%s' done (processed=%d, succeeded=%d, failed=%d, skipped=%d)",
                    stage_name, result.processed, result.succeeded, result.failed, result.skipped,
                    extra={'run_id': run.id})

    run.summary = _generate_run_summary(run)
    run.complete()
    notify_run_complete(run)
    logger.info("Run %s completed — found=%d new=%d ads=%d ai=%d diagnosed=%d errors=%d",
                run.id, run.leads_found, run.leads_new, run.ads_verified,
                run.ai_analyzed, run.diagnosed, len(run.errors), extra={'run_id': run.id})


def _apply_result(run: PipelineRun, stage_name: str, result: StageResult):
    for error in result.errors:
        run.add_error(stage_name, error['message'], lead_name=error.get('lead_name', ''),
                      lead_id=error.get('lead_id'))

    if stage_name == 'search':
        meta = result.meta
        # Leads an interrupted earlier attempt inserted come back as duplicates
        carried = run.lead_ids
        lead_ids = carried + [i for i in result.lead_ids if i not in carried]
        recounted = set(meta.get('duplicate_ids', [])) & set(carried)
        run.leads_found = meta.get('total', 0)
        run.leads_new = len(lead_ids)
        run.leads_duplicate = meta.get('duplicates', 0) - len(recounted)
        run.search_stats = meta.get('search_stats')
        run.area_stats = meta.get('area_stats')
        run.mark_stage_complete(
            stage_name,
            lead_ids=lead_ids,
            areas=meta.get('areas', []),
            new_by_city=_merge_counts(
                (run.stage_outputs.get('search') or {}).get('new_by_city', {}),
                meta.get('new_by_city', {}),
            ),
        )
        return

    counter = _STAGE_COUNTERS[stage_name]
    setattr(run, counter, getattr(run, counter) + result.succeeded)
    run.mark_stage_complete(
        stage_name,
        processed=result.processed,
        succeeded=result.succeeded,
        failed=result.failed,
    )


def _merge_counts(*counts: Dict[str, int]) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for bucket in counts:
        for key, value in bucket.items():
            merged[key] = merged.get(key, 0) + value
    return merged


def _keep_partial_search(run: PipelineRun, partial):
    """Record leads committed before the upsert broke off; search stays unfinished."""
    if partial is None:
        return
    previous = run.stage_outputs.get('search') or {}
    carried = run.lead_ids
    run.stage_outputs = dict(run.stage_outputs or {})
    run.stage_outputs['search'] = {
        'completed': False,
        'lead_ids': carried + [i for i in partial.new_ids if i not in carried],
        'new_by_city': _merge_counts(previous.get('new_by_city', {}), partial.new_by_city),
    }
    logger.warning("Run %s keeps %d leads inserted before the upsert failed",
                   run.id, len(run.stage_outputs['search']['lead_ids']), extra={'run_id': run.id})


def _fail_search(run: PipelineRun, error: Exception):
    logger.error("Search FAILED for run %s: %s", run.id, error, extra={'run_id': run.id})
    for area_error in getattr(error, 'area_errors', []):
        run.add_error('search', area_error['message'], lead_name=area_error['area'])
    run.add_error('search', str(error))
    run.summary = _generate_run_summary(run, failed=True, all_areas=isinstance(error, SearchFailed))
    run.fail(str(error))
    notify_run_failed(run)


def resume_run(run_id: str, tenant_id: str = None, sleep: Callable[[float], None] = None) -> PipelineRun:
    """
    Re-enter a failed or interrupted run at its first unfinished stage.

    Raises LookupError when the run does not exist and ValueError when it
    already completed.
    """
    run = PipelineRun.load(run_id, tenant_id=tenant_id)
    if not run:
        raise LookupError(f"Run {run_id} not found")
    if run.status == 'completed':
        raise ValueError(f"Run {run_id} already completed")

    run.status = 'processing'
    run.error_message = None
    run.finished_at = None
    run.save()
    return execute_run(run, sleep=sleep)


# ── Response ─────────────────────────────────────────────────────────────────

def sort_leads_by_final_score(leads: List[Any]) -> List[Any]:
    """Highest AI final score first; leads never scored go last, keeping their order."""
    scored = [lead for lead in leads if lead.final_score is not None]
    unscored = [lead for lead in leads if lead.final_score is None]
    return sorted(scored, key=lambda lead: lead.final_score, reverse=True) + unscored


def build_response(run: PipelineRun) -> Dict[str, Any]:
    """Caller-facing result: run, per-stage counts, errors, sorted leads."""
    from prospector.services.lead_store import get_leads

    search_output = run.stage_outputs.get('search') or {}
    stats = {
        'search': {
            'total': run.leads_found,
            'new': run.leads_new,
            'duplicates': run.leads_duplicate,
            'by_area': search_output.get('new_by_city', {}),
        },
        'ads_verified': run.ads_verified,
        'analyzed': run.ai_analyzed,
        'diagnosed': run.diagnosed,
        'errors': run.error_messages,
    }
    response = {
        'success': run.status == 'completed',
        'pipeline': run.to_dict(),
        'stats': stats,
    }
    if run.status == 'failed':
        response['error'] = run.error_message
        response['leads'] = []
        return response

    leads = sort_leads_by_final_score(get_leads(run.lead_ids))
    response['leads'] = [lead.to_dict() for lead in leads]
    response['summary'] = {
        'total_leads': run.leads_found,
        'new_leads': run.leads_new,
        'ads_verified': run.ads_verified,
        'analyzed': run.ai_analyzed,
        'diagnosed': run.diagnosed,
        'errors': len(run.errors),
    }
    return response


# ── Run summary generator ────────────────────────────────────────────────────

def _generate_run_summary(run, failed: bool = False, all_areas: bool = True) -> str:
    """Human-readable one-paragraph summary. Pure Python, no API calls."""
    found = run.leads_found or 0
    new = run.leads_new or 0
    dupes = run.leads_duplicate or 0
    areas = len(run.areas or [])
    category = run.category or 'businesses'

    if failed:
        if all_areas:
            parts = [f"Search for {category} failed in all {areas} area(s)."]
        else:
            parts = [f"Search for {category} failed."]
        if run.errors:
            parts.append(f"Error: {run.errors[-1]['message']}")
        return ' '.join(parts)

    if found == 0:
        return f"No {category} found in {areas} area(s). Try another category or a larger radius."

    lines = []
    discovery = f"Found {found} {category} in {areas} area(s)"
    if dupes:
        discovery += f" ({new} new, {dupes} already known)"
    discovery += "."
    lines.append(discovery)

    hot = (run.search_stats or {}).get('hot', 0)
    warm = (run.search_stats or {}).get('warm', 0)
    if hot or warm:
        lines.append(f"{hot} HOT and {warm} WARM.")

    enriched = []
    if run.ads_verified:
        enriched.append(f"{run.ads_verified} ads verified")
    if run.ai_analyzed:
        enriched.append(f"{run.ai_analyzed} AI-analyzed")
    if run.diagnosed:
        enriched.append(f"{run.diagnosed} diagnosed")
    if enriched:
        lines.append(', '.join(enriched) + '.')

    if run.errors:
        lines.append(f"Warning: {len(run.errors)} error(s) along the way.")

    return ' '.join(lines)
