"""
Pipeline Stage 3: AI ANALYSIS — Opportunity scoring for HOT and WARM leads.

Candidates: this run's new HOT/WARM leads that have a place id and were never
analyzed. One scoring call per lead, 1s apart by default.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

from prospector.config import OPPORTUNITY_LEVELS
from prospector.errors import MalformedResponse
from prospector.pipeline.base import EnrichmentStage

logger = logging.getLogger('pipeline.ai')

# Provider (Portuguese) opportunity level → stored level
_PROVIDER_LEVELS = {
    'MAXIMO': 'MAXIMUM',
    'ALTO': 'HIGH',
    'MEDIO': 'MEDIUM',
    'BAIXO': 'LOW',
}

# Fallback when the provider omits nivelOportunidade
_LEVEL_FROM_MARKETING = {
    'NONE': 'MAXIMUM',
    'BASIC': 'HIGH',
    'ADVANCED': 'LOW',
}


def _score(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(min(max(float(value), 0), 100)))
    except (TypeError, ValueError):
        return None


def _str_list(value) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str)]


def opportunity_level(response: Dict, marketing_level: Optional[str] = None) -> Optional[str]:
    """Provider level mapped to English, else derived from the lead's marketing level."""
    marketing = response.get('marketingDigital')
    raw = marketing.get('nivelOportunidade') if isinstance(marketing, dict) else None
    if isinstance(raw, str):
        key = raw.strip().upper().replace('Á', 'A').replace('É', 'E')
        if key in _PROVIDER_LEVELS:
            return _PROVIDER_LEVELS[key]
        if key in OPPORTUNITY_LEVELS:
            return key
    return _LEVEL_FROM_MARKETING.get(marketing_level)


def ai_fields(response: Dict, marketing_level: Optional[str] = None) -> Dict[str, Any]:
    """Scoring response → Lead columns."""
    analysis = response.get('analiseIA')
    if not isinstance(analysis, dict):
        raise MalformedResponse("AI analysis response has no analiseIA object", service='AI analysis')

    classification = analysis.get('classificacao')
    return {
        'base_score': _score(analysis.get('scoreBase')),
        'marketing_bonus': _score(analysis.get('bonusMarketing')),
        'final_score': _score(analysis.get('scoreFinal')),
        'ai_classification': classification.upper() if isinstance(classification, str) else None,
        'opportunity_level': opportunity_level(response, marketing_level),
        'ai_summary': analysis.get('resumo') if isinstance(analysis.get('resumo'), str) else None,
        'strengths': _str_list(analysis.get('pontosFortes')),
        'weaknesses': _str_list(analysis.get('pontosFracos')),
        'marketing_opportunities': _str_list(analysis.get('oportunidadesMarketing')),
        'sales_arguments': _str_list(analysis.get('argumentosVenda')),
        'suggested_approach': analysis.get('abordagemSugerida') if isinstance(
            analysis.get('abordagemSugerida'), str) else None,
        'suggested_message': analysis.get('mensagemWhatsApp') if isinstance(
            analysis.get('mensagemWhatsApp'), str) else None,
        'ai_analysis': analysis,
        'ai_analyzed_at': datetime.now(timezone.utc),
    }


class AIAnalysisStage(EnrichmentStage):
    stage = 'ai_analysis'
    description = 'AI opportunity score, classification and sales arguments (HOT/WARM only)'
    apis = ['n8n AI workflow']
    breaker = 'n8n_ai'

    def select_candidates(self, lead_ids: List[int]):
        from prospector.services.lead_store import ai_candidates
        return ai_candidates(lead_ids)

    def enrich(self, lead) -> Dict[str, Any]:
        from prospector.services import n8n
        response = n8n.analyze_lead(lead.place_id, lead.id)
        fields = ai_fields(response, lead.marketing_level)
        logger.info("Lead %s (%s): final score %s", lead.id, lead.name, fields['final_score'])
        return fields
