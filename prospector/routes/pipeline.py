"""
Pipeline routes — start, list, inspect and resume prospecting runs.
"""
import logging
from flask import Blueprint, request, jsonify

from prospector.config import DEFAULT_TENANT_ID
from prospector.errors import QuotaExceeded, RunPersistenceError
from prospector.models.run import PipelineRun
from prospector.pipeline.base import get_pipeline_info
from prospector.pipeline.manager import (
    STAGE_REGISTRY, build_response, create_run, enqueue_resume, enqueue_run,
    execute_run, get_run_status, resume_run,
)

logger = logging.getLogger('routes.pipeline')

bp = Blueprint('pipeline', __name__)


def current_tenant() -> str:
    """Tenant from the X-Tenant-Id header, else the configured default."""
    return (request.headers.get('X-Tenant-Id') or '').strip() or DEFAULT_TENANT_ID


def _status_code(response: dict) -> int:
    return 200 if response['success'] else 500


# ── Run API ──────────────────────────────────────────────────────────────────

@bp.route('/api/pipelines', methods=['POST'])
def start_pipeline():
    """
    Create a run and execute it.

    Synchronous by default: the response carries stats and the sorted
    leads. With "async": true the run is enqueued and 202 is returned.
    """
    data = request.get_json(silent=True) or {}
    tenant_id = current_tenant()

    try:
        run = create_run(tenant_id, data)
    except QuotaExceeded as e:
        logger.info("Quota rejected request for tenant %s: %s", tenant_id, e)
        return jsonify({
            'success': False,
            'error': str(e),
            'limit': e.limit,
            'requested': e.requested,
        }), 400
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except RunPersistenceError as e:
        return jsonify({'success': False, 'error': str(e)}), 500

    if data.get('async'):
        enqueue_run(run)
        return jsonify({'success': True, 'pipeline': run.to_dict()}), 202

    run = execute_run(run)
    response = build_response(run)
    return jsonify(response), _status_code(response)


@bp.route('/api/pipelines')
def list_pipelines():
    """Recent runs for the tenant, newest first."""
    limit = request.args.get('limit', 10, type=int)
    limit = max(1, min(limit, 100))
    runs = PipelineRun.list_recent(current_tenant(), limit=limit)
    return jsonify({'success': True, 'pipelines': [run.to_dict() for run in runs]})


@bp.route('/api/pipelines/<run_id>')
def get_pipeline(run_id):
    """Get a single run's status."""
    status = get_run_status(run_id, tenant_id=current_tenant())
    if not status:
        return jsonify({'success': False, 'error': 'Pipeline run not found'}), 404
    return jsonify({'success': True, 'pipeline': status})


@bp.route('/api/pipelines/<run_id>/resume', methods=['POST'])
def resume_pipeline(run_id):
    """Continue a failed or interrupted run from its first unfinished stage."""
    data = request.get_json(silent=True) or {}
    tenant_id = current_tenant()

    run = PipelineRun.load(run_id, tenant_id=tenant_id)
    if not run:
        return jsonify({'success': False, 'error': 'Pipeline run not found'}), 404
    if run.status == 'completed':
        return jsonify({'success': False, 'error': 'Pipeline run already completed'}), 409

    if data.get('async'):
        enqueue_resume(run)
        return jsonify({'success': True, 'pipeline': run.to_dict()}), 202

    run = resume_run(run_id, tenant_id=tenant_id)
    response = build_response(run)
    return jsonify(response), _status_code(response)


@bp.route('/api/pipeline-info')
def pipeline_info():
    """Return metadata for all pipeline stages.

    Response shape: { "search": { "description": "...", "apis": [...], "delay": 0.0, "timeout": 120.0 }, ... }
    """
    return jsonify(get_pipeline_info(STAGE_REGISTRY))
