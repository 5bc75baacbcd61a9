"""
Lead routes — tenant statistics and single-lead enrichment.

The single-lead endpoints reuse the pipeline stage adapters so a lead
enriched here is stored exactly as the pipeline would store it.
"""
import logging
from flask import Blueprint, jsonify

from prospector.errors import ProviderError
from prospector.pipeline.ads import AdsVerificationStage
from prospector.pipeline.ai import AIAnalysisStage
from prospector.pipeline.diagnostic import DeepDiagnosticStage
from prospector.pipeline.scoring import rescore_lead
from prospector.routes.pipeline import current_tenant
from prospector.services.circuit_breaker import CircuitOpenError, get_breaker
from prospector.services.db import run_overview
from prospector.services.lead_store import get_lead, merge_lead_fields, tenant_lead_stats

logger = logging.getLogger('routes.leads')

bp = Blueprint('leads', __name__)


def _not_found():
    return jsonify({'success': False, 'error': 'Lead not found'}), 404


def _enrich(stage_cls, lead):
    """Run one stage for one lead; an open circuit is 503, provider failures 502."""
    try:
        get_breaker(stage_cls.breaker).check()
        updated = stage_cls().enrich_one(lead)
    except CircuitOpenError as e:
        return jsonify({'success': False, 'error': str(e), 'retry_after': e.retry_after}), 503
    except ProviderError as e:
        logger.warning("%s failed for lead %s: %s", stage_cls.stage, lead.id, e)
        return jsonify({'success': False, 'error': str(e)}), 502
    return jsonify({'success': True, 'lead': updated.to_dict()})


@bp.route('/api/leads/stats')
def lead_stats():
    stats = tenant_lead_stats(current_tenant())
    stats.update(run_overview(current_tenant()))
    return jsonify({'success': True, 'stats': stats})


@bp.route('/api/leads/<int:lead_id>/verify-ads', methods=['POST'])
def verify_ads(lead_id):
    lead = get_lead(lead_id, tenant_id=current_tenant())
    if not lead:
        return _not_found()
    if not lead.website:
        return jsonify({'success': False, 'error': 'Lead has no website'}), 400
    return _enrich(AdsVerificationStage, lead)


@bp.route('/api/leads/<int:lead_id>/analyze', methods=['POST'])
def analyze(lead_id):
    lead = get_lead(lead_id, tenant_id=current_tenant())
    if not lead:
        return _not_found()
    if not lead.place_id:
        return jsonify({'success': False, 'error': 'Lead has no place id'}), 400
    return _enrich(AIAnalysisStage, lead)


@bp.route('/api/leads/<int:lead_id>/diagnostic', methods=['POST'])
def create_diagnostic(lead_id):
    lead = get_lead(lead_id, tenant_id=current_tenant())
    if not lead:
        return _not_found()
    return _enrich(DeepDiagnosticStage, lead)


@bp.route('/api/leads/<int:lead_id>/diagnostic')
def get_diagnostic(lead_id):
    lead = get_lead(lead_id, tenant_id=current_tenant())
    if not lead:
        return _not_found()
    if lead.diagnostic is None:
        return jsonify({'success': False, 'error': 'No diagnostic for this lead'}), 404
    return jsonify({'success': True, 'diagnostic': lead.diagnostic})


@bp.route('/api/leads/<int:lead_id>/rescore', methods=['POST'])
def rescore(lead_id):
    """Recompute the local heuristic score, now including the marketing level."""
    lead = get_lead(lead_id, tenant_id=current_tenant())
    if not lead:
        return _not_found()
    result = rescore_lead(lead)
    updated = merge_lead_fields(lead.id, result)
    return jsonify({'success': True, 'lead': updated.to_dict()})
