"""
Pipeline run persistence — called from the PipelineRun model and routes.

Unlike lead enrichment writes, a run write that fails raises
RunPersistenceError: a run whose record cannot be saved is a failed run.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from prospector.config import RUN_STATUSES
from prospector.database import get_session
from prospector.errors import RunPersistenceError
from prospector.models.db_run import DbPipelineRun

logger = logging.getLogger('services.db')


_MUTABLE_FIELDS = (
    'status', 'current_stage', 'search_stats', 'area_stats',
    'leads_found', 'leads_new', 'leads_duplicate',
    'ads_verified', 'ai_analyzed', 'diagnosed',
    'error_message', 'finished_at',
)


def persist_run(run):
    """
    INSERT or UPDATE the pipeline_runs row for `run`.

    Called on creation, after every stage marker, and on completion/failure.
    """
    session = get_session()
    try:
        db_run = session.get(DbPipelineRun, run.id)
        if db_run is None:
            db_run = DbPipelineRun(
                id=run.id,
                request_id=run.request_id,
                tenant_id=run.tenant_id,
                client_ref=run.client_ref,
                category=run.category,
                areas=run.areas,
                score_min=run.score_min,
                max_per_area=run.max_per_area,
                verify_ads=run.verify_ads,
                run_ai=run.run_ai,
                run_diagnostic=run.run_diagnostic,
                created_at=run.created_at,
            )
            session.add(db_run)

        for field in _MUTABLE_FIELDS:
            setattr(db_run, field, getattr(run, field))
        # JSON columns only notice reassignment, so hand over fresh containers
        db_run.errors = list(run.errors)
        db_run.stage_outputs = dict(run.stage_outputs or {}) or None
        db_run.summary = run.summary or None
        db_run.updated_at = datetime.now(timezone.utc)

        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to persist run %s", run.id, exc_info=True)
        raise RunPersistenceError(f"Could not save pipeline run {run.id}: {e}") from e
    finally:
        session.close()


def get_run_row(run_id: str):
    session = get_session()
    try:
        return session.get(DbPipelineRun, run_id)
    finally:
        session.close()


def list_run_rows(tenant_id: str, limit: int = 10):
    """Newest first."""
    session = get_session()
    try:
        return (
            session.query(DbPipelineRun)
            .filter(DbPipelineRun.tenant_id == tenant_id)
            .order_by(DbPipelineRun.created_at.desc())
            .limit(limit)
            .all()
        )
    finally:
        session.close()


def run_overview(tenant_id: str) -> dict:
    """Run counts (total and per status) and the most recent run, for the lead stats endpoint."""
    session = get_session()
    try:
        by_status = {s: 0 for s in RUN_STATUSES}
        rows = (
            session.query(DbPipelineRun.status, func.count(DbPipelineRun.id))
            .filter(DbPipelineRun.tenant_id == tenant_id)
            .group_by(DbPipelineRun.status)
            .all()
        )
        for status, count in rows:
            if status in by_status:
                by_status[status] = count
        latest = (
            session.query(DbPipelineRun)
            .filter(DbPipelineRun.tenant_id == tenant_id)
            .order_by(DbPipelineRun.created_at.desc())
            .first()
        )
        last_run = None
        if latest is not None:
            last_run = {
                'id': latest.id,
                'category': latest.category,
                'created_at': latest.created_at.isoformat() if latest.created_at else None,
                'leads_found': latest.leads_found or 0,
            }
        return {'total_runs': sum(count for _, count in rows), 'runs_by_status': by_status,
                'last_run': last_run}
    finally:
        session.close()
