"""
Deep diagnostic — request building, provider call, and the tolerant
normalization of the provider's loosely-typed response.

The diagnostic workflow is known to:
  - answer with an object or a one-element list
  - spell the strengths array `pontosFOrtes` (and sometimes `pontosFortes`)
  - omit whole sections
normalize_diagnostic() maps every such shape onto one canonical record and
never raises; on unexpected input it degrades to a mostly-empty diagnostic
that still carries the score.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from prospector.services import n8n
from prospector.services.niches import detect_niche, niche_info, niche_from_category

logger = logging.getLogger('services.diagnostic')

NICHE_CONFIDENCE = 0.7
SUGGESTED_INVESTMENT = {'min': 1500, 'max': 5000, 'currency': 'BRL'}
EXPECTED_RESULTS = [
    'More online visibility',
    'More positive reviews',
    'Growth in the number of customers',
]
RESULTS_TIMEFRAME = '30-60 days'
DEFAULT_OBJECTIVE = 'Improve digital presence and customer acquisition'
TRIGGERS = [
    'Social proof (positive reviews)',
    'Authority in the niche',
    'Seasonal urgency',
]
OBJECTION_ANSWERS = {
    'I already have social media': (
        'Social media is great, but an integrated strategy can multiply your results.'
    ),
    'I have no budget for marketing': (
        'We can start with a smaller investment and scale as results come in.'
    ),
    'My business works fine without it': (
        'Imagine it with an active acquisition strategy bringing even more qualified customers.'
    ),
}

_MESSAGE_TYPES = ('opening', 'follow_up', 'closing')
# provider spelling → canonical message type
_PROVIDER_MESSAGE_TYPES = {
    'abertura': 'opening', 'opening': 'opening',
    'followUp': 'follow_up', 'follow_up': 'follow_up',
    'fechamento': 'closing', 'closing': 'closing',
}


# ── Score / temperature ───────────────────────────────────────────────────────

def temperature_for_score(score: float) -> str:
    """>=80 HOT, >=60 WARM, else COOL. COLD is never produced here."""
    if score >= 80:
        return 'HOT'
    if score >= 60:
        return 'WARM'
    return 'COOL'


def _number(value) -> float:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0
    return 0


def _first_record(raw: Any) -> Dict:
    if isinstance(raw, list):
        raw = raw[0] if raw else None
    return raw if isinstance(raw, dict) else {}


def _dict(value) -> Dict:
    return value if isinstance(value, dict) else {}


def _list(value) -> List:
    return value if isinstance(value, list) else []


def _text(value) -> str:
    return value if isinstance(value, str) else ''


def extract_score(raw: Any) -> int:
    """diagnosticoIA.scoreGeral, else scoreOportunidade, else 0 — clamped to 0-100."""
    try:
        data = _first_record(raw)
        ai = _dict(data.get('diagnosticoIA'))
        score = _number(ai.get('scoreGeral')) or _number(data.get('scoreOportunidade'))
        return int(round(min(max(score, 0), 100)))
    except Exception:
        return 0


# ── Normalization ─────────────────────────────────────────────────────────────

def normalize_diagnostic(raw: Any, lead_id, now: Optional[datetime] = None) -> Dict:
    """Canonical diagnostic for any provider payload. Never raises."""
    now = now or datetime.now(timezone.utc)
    try:
        return _normalize(raw, lead_id, now)
    except Exception:
        logger.warning("Diagnostic payload for lead %s could not be normalized, keeping score only",
                       lead_id, exc_info=True)
        return _empty_diagnostic(lead_id, extract_score(raw), now)


def _normalize(raw: Any, lead_id, now: datetime) -> Dict:
    data = _first_record(raw)
    company = _dict(data.get('empresa'))
    ai = _dict(data.get('diagnosticoIA'))

    strengths = [s for s in (_list(ai.get('pontosFOrtes')) or _list(ai.get('pontosFortes')))
                 if isinstance(s, str)]
    weaknesses = [s for s in _list(ai.get('pontosAMelhorar')) if isinstance(s, str)]
    opportunities = [o for o in _list(ai.get('oportunidades')) if isinstance(o, dict)]

    score = extract_score(data)
    temperature = temperature_for_score(score)

    category = _text(company.get('categoria'))
    niche = niche_from_category(category)

    website = _text(company.get('website'))
    presence = 'low'
    if website and 'instagram.com' not in website:
        presence = 'medium'
        if _number(company.get('totalAvaliacoes')) > 50:
            presence = 'high'

    recommendation = _text(ai.get('recomendacaoPrioritaria'))
    company_name = _text(company.get('nome'))
    first_opportunity = _text(opportunities[0].get('titulo')) if opportunities else ''

    actions = weaknesses[:3] + ([first_opportunity] if first_opportunity else [])

    return {
        'id': f'diag_{int(time.time() * 1000)}',
        'lead_id': lead_id,
        'created_at': _text(data.get('geradoEm')) or now.isoformat(),
        'updated_at': now.isoformat(),
        'company': {
            'name': company_name,
            'niche': niche,
            'detected_niche': category or niche,
            'niche_confidence': NICHE_CONFIDENCE,
            'estimated_size': 'small',
            'digital_presence': presence,
        },
        'diagnosis': {
            'summary': _text(ai.get('resumoExecutivo')),
            'details': _text(ai.get('analiseReviews')),
            'maturity': {'high': 'advanced', 'medium': 'intermediate'}.get(presence, 'beginner'),
            'urgency': {'HOT': 'high', 'WARM': 'medium'}.get(temperature, 'low'),
        },
        'classification': {
            'temperature': temperature,
            'score': score,
            'reason': recommendation or f'Opportunity score: {score}',
        },
        'strengths': [_point(s) for s in strengths],
        'weaknesses': [_point(w) for w in weaknesses],
        'opportunities': [_opportunity(o) for o in opportunities],
        'strategy': {
            'objective': recommendation or DEFAULT_OBJECTIVE,
            'actions': [a for a in actions if a],
            'suggested_investment': dict(SUGGESTED_INVESTMENT),
            'expected_results': list(EXPECTED_RESULTS),
            'timeframe': RESULTS_TIMEFRAME,
        },
        'approach': _approach(strengths[0] if strengths else ''),
        'messages': _messages(
            _provider_messages(data),
            name=company_name,
            rating=company.get('rating'),
            category=category,
            first_opportunity=first_opportunity,
        ),
    }


def _point(text: str) -> Dict:
    return {'title': text, 'description': text, 'impact': 'medium'}


def _opportunity(item: Dict) -> Dict:
    impact = item.get('impacto')
    urgency = item.get('urgencia')
    return {
        'title': _text(item.get('titulo')),
        'description': _text(item.get('descricao')),
        'roi': {'alto': 'high', 'medio': 'medium'}.get(impact, 'low'),
        'timeframe': {'alta': 'short', 'media': 'medium'}.get(urgency, 'long'),
    }


def _approach(top_strength: str) -> Dict:
    strength = top_strength or 'good reputation'
    return {
        'tone': 'consultive',
        'angle': (f'Build on existing strengths ({strength}) while working '
                  f'on the improvement opportunities.'),
        'triggers': list(TRIGGERS),
        'expected_objections': list(OBJECTION_ANSWERS),
        'objection_answers': dict(OBJECTION_ANSWERS),
    }


def _provider_messages(data: Dict) -> Dict[str, str]:
    found = {}
    for item in _list(data.get('mensagens')):
        if not isinstance(item, dict):
            continue
        kind = _PROVIDER_MESSAGE_TYPES.get(item.get('tipo'))
        content = _text(item.get('conteudo')).strip()
        if kind and content:
            found.setdefault(kind, content)
    return found


def _messages(supplied: Dict[str, str], name: str, rating, category: str, first_opportunity: str) -> List[Dict]:
    rating_text = rating if isinstance(rating, (int, float)) and not isinstance(rating, bool) else 5
    defaults = {
        'opening': (
            f"Hi! I noticed {name or 'your business'} has excellent reviews ({rating_text} stars). "
            f"Congratulations on the work! I build digital strategies for {category or 'local businesses'} "
            f"and spotted a few opportunities that could bring you even more customers. Can I share them?"
        ),
        'follow_up': (
            f"Hi! Did you get a chance to look at what I sent? I'm available for a quick 15-minute call "
            f"to explain how we can {(first_opportunity or 'increase your online visibility').lower()}. "
            f"What time works best?"
        ),
        'closing': (
            f"{name + ', ' if name else ''}I have a few openings for new clients this month and would love "
            f"to include your business. How about a call this week to agree on next steps?"
        ),
    }
    best_times = {'opening': '10h-12h or 14h-17h', 'follow_up': '10h-12h', 'closing': '14h-17h'}
    return [
        {
            'type': kind,
            'content': supplied.get(kind) or defaults[kind],
            'channel': 'whatsapp',
            'best_time': best_times[kind],
        }
        for kind in _MESSAGE_TYPES
    ]


def _empty_diagnostic(lead_id, score: int, now: datetime) -> Dict:
    temperature = temperature_for_score(score)
    return {
        'id': f'diag_{int(time.time() * 1000)}',
        'lead_id': lead_id,
        'created_at': now.isoformat(),
        'updated_at': now.isoformat(),
        'company': {'name': '', 'niche': 'other', 'detected_niche': 'other',
                    'niche_confidence': NICHE_CONFIDENCE, 'estimated_size': 'small',
                    'digital_presence': 'low'},
        'diagnosis': {'summary': '', 'details': '', 'maturity': 'beginner',
                      'urgency': {'HOT': 'high', 'WARM': 'medium'}.get(temperature, 'low')},
        'classification': {'temperature': temperature, 'score': score,
                           'reason': f'Opportunity score: {score}'},
        'strengths': [],
        'weaknesses': [],
        'opportunities': [],
        'strategy': {
            'objective': DEFAULT_OBJECTIVE,
            'actions': [],
            'suggested_investment': dict(SUGGESTED_INVESTMENT),
            'expected_results': list(EXPECTED_RESULTS),
            'timeframe': RESULTS_TIMEFRAME,
        },
        'approach': _approach(''),
        'messages': _messages({}, name='', rating=None, category='', first_opportunity=''),
    }


# ── Request / call ────────────────────────────────────────────────────────────

def build_diagnostic_request(lead) -> Dict:
    """Contact bundle plus the locally detected niche hint."""
    text = ' '.join(filter(None, [lead.name, lead.website, lead.instagram, lead.notes]))
    niche = detect_niche(text)
    return {
        'leadId': str(lead.id),
        'nome': lead.name or 'Unnamed',
        'telefone': lead.phone,
        'email': lead.email,
        'empresa': lead.name,
        'site': lead.website,
        'instagram': lead.instagram,
        'observacoes': lead.notes,
        'fonte': 'pipeline',
        'nichoSugerido': niche,
        'infoNicho': niche_info(niche),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }


def run_diagnostic(lead) -> Dict:
    """Call the diagnostic workflow for `lead` and return the canonical record."""
    payload = build_diagnostic_request(lead)
    logger.info("Diagnostic for lead %s (%s), niche hint=%s", lead.id, lead.name, payload['nichoSugerido'])
    raw = n8n.request_diagnostic(payload)
    return normalize_diagnostic(raw, lead.id)
