"""
Pipeline Stage 4: DEEP DIAGNOSTIC — Qualitative analysis and outreach drafts for HOT leads.

Candidates: this run's new HOT leads without a diagnostic. One call per lead,
2s apart by default, with the longest provider timeout of the pipeline.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Any

from prospector.pipeline.base import EnrichmentStage

logger = logging.getLogger('pipeline.diagnostic')


def diagnostic_fields(record: Dict) -> Dict[str, Any]:
    """Canonical diagnostic → Lead columns."""
    classification = record.get('classification') or {}
    return {
        'diagnostic': record,
        'diagnostic_temperature': classification.get('temperature'),
        'diagnostic_score': classification.get('score'),
        'diagnosed_at': datetime.now(timezone.utc),
    }


class DeepDiagnosticStage(EnrichmentStage):
    stage = 'deep_diagnostic'
    description = 'Niche-aware diagnostic, strategy and WhatsApp messages (HOT only)'
    apis = ['n8n diagnostic workflow']
    breaker = 'n8n_diagnostic'

    def select_candidates(self, lead_ids: List[int]):
        from prospector.services.lead_store import diagnostic_candidates
        return diagnostic_candidates(lead_ids)

    def enrich(self, lead) -> Dict[str, Any]:
        from prospector.services.diagnostic import run_diagnostic
        record = run_diagnostic(lead)
        logger.info("Lead %s (%s): diagnostic %s/%s", lead.id, lead.name,
                    record['classification']['temperature'], record['classification']['score'])
        return diagnostic_fields(record)
