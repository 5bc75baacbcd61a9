"""
PipelineRun — live state of one pipeline invocation.

Mutated only by the pipeline manager. Every save() writes through to the
pipeline_runs table so a crashed run can be inspected or resumed from the
stage markers kept in `stage_outputs`.
"""
import random
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from prospector.config import PIPELINE_STAGES, STAGE_FLAGS


ERROR_LABELS = {
    'search': 'Search',
    'ads_verification': 'Ads',
    'ai_analysis': 'AI',
    'deep_diagnostic': 'Diagnostic',
}


def generate_request_id() -> str:
    """pipeline_<epoch ms>_<9 base36 chars>"""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f'pipeline_{int(time.time() * 1000)}_{suffix}'


def _now():
    return datetime.now(timezone.utc)


class PipelineRun:

    def __init__(
        self,
        tenant_id: str,
        category: str,
        areas: List[Dict],
        score_min: int,
        max_per_area: int,
        verify_ads: bool = True,
        run_ai: bool = True,
        run_diagnostic: bool = False,
        client_ref: Optional[str] = None,
        id: str = None,
        request_id: str = None,
        status: str = 'pending',
    ):
        self.id = id or str(uuid.uuid4())
        self.request_id = request_id or generate_request_id()
        self.tenant_id = tenant_id
        self.client_ref = client_ref
        self.category = category
        self.areas = areas
        self.score_min = score_min
        self.max_per_area = max_per_area
        self.verify_ads = verify_ads
        self.run_ai = run_ai
        self.run_diagnostic = run_diagnostic
        self.status = status
        self.current_stage = ''
        self.created_at = _now()
        self.updated_at = self.created_at
        self.finished_at = None
        self.search_stats = None
        self.area_stats = None
        self.leads_found = 0
        self.leads_new = 0
        self.leads_duplicate = 0
        self.ads_verified = 0
        self.ai_analyzed = 0
        self.diagnosed = 0
        self.errors: List[Dict] = []
        self.error_message = None
        self.summary = ''
        self.stage_outputs: Dict[str, Dict] = {}

    # ── Stage markers ──────────────────────────────────────────────────────

    @property
    def lead_ids(self) -> List[int]:
        """Ids of leads this run inserted; the only leads later stages touch."""
        return list((self.stage_outputs.get('search') or {}).get('lead_ids', []))

    @property
    def completed_stages(self) -> List[str]:
        return [s for s in PIPELINE_STAGES if (self.stage_outputs.get(s) or {}).get('completed')]

    def mark_stage_complete(self, stage: str, **output):
        self.stage_outputs = dict(self.stage_outputs or {})
        self.stage_outputs[stage] = {
            'completed': True,
            'completed_at': _now().isoformat(),
            **output,
        }

    def stage_enabled(self, stage: str) -> bool:
        if stage == 'search':
            return True
        flag = STAGE_FLAGS.get(stage)
        return bool(flag and getattr(self, flag))

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def save(self):
        """Write the run through to the database."""
        from prospector.services.db import persist_run
        self.updated_at = _now()
        persist_run(self)
        return self

    def start(self):
        self.status = 'processing'
        return self.save()

    def update_stage(self, stage: str):
        self.current_stage = stage
        return self.save()

    def add_error(self, stage: str, message: str, lead_name: str = '', lead_id=None):
        """Record a non-fatal error, formatted as '<Stage> <lead name>: <message>'."""
        label = ERROR_LABELS.get(stage, stage)
        text = f'{label} {lead_name}: {message}' if lead_name else f'{label}: {message}'
        self.errors.append({
            'stage': stage,
            'message': text,
            'lead_id': lead_id,
            'timestamp': _now().isoformat(),
        })

    @property
    def error_messages(self) -> List[str]:
        return [e['message'] for e in self.errors]

    def complete(self):
        self.status = 'completed'
        self.finished_at = _now()
        return self.save()

    def fail(self, reason: str = ''):
        self.status = 'failed'
        self.finished_at = _now()
        if reason:
            self.error_message = reason
        return self.save()

    # ── Shapes ────────────────────────────────────────────────────────────

    def to_dict(self) -> Dict:
        def _iso(value):
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'request_id': self.request_id,
            'tenant_id': self.tenant_id,
            'client_ref': self.client_ref,
            'category': self.category,
            'areas': self.areas,
            'score_min': self.score_min,
            'max_per_area': self.max_per_area,
            'flags': {
                'verify_ads': self.verify_ads,
                'run_ai': self.run_ai,
                'run_diagnostic': self.run_diagnostic,
            },
            'status': self.status,
            'current_stage': self.current_stage,
            'completed_stages': self.completed_stages,
            'search_stats': self.search_stats,
            'area_stats': self.area_stats,
            'leads_found': self.leads_found,
            'leads_new': self.leads_new,
            'leads_duplicate': self.leads_duplicate,
            'ads_verified': self.ads_verified,
            'ai_analyzed': self.ai_analyzed,
            'diagnosed': self.diagnosed,
            'error_count': len(self.errors),
            'errors': self.error_messages[-20:],
            'error_message': self.error_message,
            'summary': self.summary,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'finished_at': _iso(self.finished_at),
        }

    @classmethod
    def _from_db_run(cls, db_run) -> 'PipelineRun':
        run = cls.__new__(cls)
        run.id = db_run.id
        run.request_id = db_run.request_id
        run.tenant_id = db_run.tenant_id
        run.client_ref = db_run.client_ref
        run.category = db_run.category
        run.areas = db_run.areas or []
        run.score_min = db_run.score_min
        run.max_per_area = db_run.max_per_area
        run.verify_ads = bool(db_run.verify_ads)
        run.run_ai = bool(db_run.run_ai)
        run.run_diagnostic = bool(db_run.run_diagnostic)
        run.status = db_run.status
        run.current_stage = db_run.current_stage or ''
        run.created_at = db_run.created_at
        run.updated_at = db_run.updated_at or db_run.created_at
        run.finished_at = db_run.finished_at
        run.search_stats = db_run.search_stats
        run.area_stats = db_run.area_stats
        run.leads_found = db_run.leads_found or 0
        run.leads_new = db_run.leads_new or 0
        run.leads_duplicate = db_run.leads_duplicate or 0
        run.ads_verified = db_run.ads_verified or 0
        run.ai_analyzed = db_run.ai_analyzed or 0
        run.diagnosed = db_run.diagnosed or 0
        run.errors = list(db_run.errors or [])
        run.error_message = db_run.error_message
        run.summary = db_run.summary or ''
        run.stage_outputs = dict(db_run.stage_outputs or {})
        return run

    @classmethod
    def load(cls, run_id: str, tenant_id: str = None) -> Optional['PipelineRun']:
        """Load a run from the database; tenant_id scopes the lookup when given."""
        from prospector.services.db import get_run_row
        db_run = get_run_row(run_id)
        if db_run is None:
            return None
        if tenant_id is not None and db_run.tenant_id != tenant_id:
            return None
        return cls._from_db_run(db_run)

    @classmethod
    def list_recent(cls, tenant_id: str, limit: int = 10) -> List['PipelineRun']:
        from prospector.services.db import list_run_rows
        return [cls._from_db_run(row) for row in list_run_rows(tenant_id, limit=limit)]
