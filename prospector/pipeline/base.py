"""
Pipeline stage contracts.

Every stage implements StageAdapter.run() and returns a StageResult. The
three enrichment stages share EnrichmentStage, which owns the sequential,
rate-limited, failure-isolated loop over candidates; subclasses only pick
candidates and turn one provider response into Lead fields.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

from prospector.pipeline.limits_config import get_stage_delay, get_stage_timeout

logger = logging.getLogger('pipeline.base')


@dataclass
class StageResult:
    """Uniform output from every pipeline stage."""
    lead_ids: List[int]
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def add_error(self, message: str, lead_name: str = '', lead_id=None):
        self.errors.append({'message': message, 'lead_name': lead_name, 'lead_id': lead_id})


class StageAdapter(ABC):
    """
    Base class for all pipeline stages.

    `sleep` is injectable so tests can run stages against a fake clock;
    `delay` overrides the configured inter-call delay.
    """
    stage: str = ''

    # Metadata served by /api/pipeline-info
    description: str = ''
    apis: List[str] = []

    # Circuit breaker the single-lead routes check before calling the provider
    breaker: str = ''

    def __init__(self, sleep: Optional[Callable[[float], None]] = None, delay: Optional[float] = None):
        self.sleep = sleep or time.sleep
        self.delay = get_stage_delay(self.stage) if delay is None else delay

    @abstractmethod
    def run(self, lead_ids: List[int], run: Any) -> StageResult:
        """
        Execute this stage.

        Args:
            lead_ids: ids of the leads this run inserted (empty for search).
            run:      the PipelineRun; read-only for stages.

        Returns:
            StageResult; for search, `lead_ids` are the newly inserted leads.
        """
        ...


class EnrichmentStage(StageAdapter):
    """Sequential per-lead enrichment with a fixed delay before every call."""

    @abstractmethod
    def select_candidates(self, lead_ids: List[int]) -> List[Any]:
        """Re-query the store for this stage's candidates, in fetch order."""
        ...

    @abstractmethod
    def enrich(self, lead) -> Dict[str, Any]:
        """Call the provider for one lead and return the Lead fields to merge."""
        ...

    def run(self, lead_ids: List[int], run: Any) -> StageResult:
        from prospector.services.lead_store import merge_lead_fields

        result = StageResult(lead_ids=list(lead_ids))
        candidates = self.select_candidates(lead_ids)
        result.skipped = len(lead_ids) - len(candidates)
        logger.info("Stage '%s': %d candidates of %d leads", self.stage, len(candidates), len(lead_ids))

        for lead in candidates:
            self.sleep(self.delay)
            result.processed += 1
            try:
                fields = self.enrich(lead)
                merge_lead_fields(lead.id, fields)
            except Exception as e:
                result.failed += 1
                result.add_error(str(e), lead_name=lead.name or f'#{lead.id}', lead_id=lead.id)
                logger.warning("Stage '%s' failed for lead %s (%s): %s", self.stage, lead.id, lead.name, e)
                continue
            result.succeeded += 1

        return result

    def enrich_one(self, lead):
        """Single-lead entry point for the API: no delay, errors propagate."""
        from prospector.services.lead_store import merge_lead_fields
        return merge_lead_fields(lead.id, self.enrich(lead))


def get_pipeline_info(stage_registry: Dict[str, Type[StageAdapter]]) -> Dict[str, Any]:
    """
    Serialize the stage registry into a JSON-friendly dict.

    Returns: { "search": { "description": "...", "apis": [...], "delay": 0.0, "timeout": 120.0 }, ... }
    """
    return {
        stage_name: {
            'description': cls.description or '',
            'apis': cls.apis if isinstance(cls.apis, list) else [],
            'delay': get_stage_delay(stage_name),
            'timeout': get_stage_timeout(stage_name),
        }
        for stage_name, cls in stage_registry.items()
    }
