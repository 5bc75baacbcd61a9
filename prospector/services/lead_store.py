"""
Lead store — upsert by natural key, candidate queries, field merges, stats.

The store is the only state shared between concurrent runs. Writes are
per-lead commits: a lead enriched before a crash stays enriched. Two runs of
the same tenant racing on one place id resolve as last-write-wins on the
discovery fields; the unique constraint guarantees there is never a second
row.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from prospector.config import CLASSIFICATIONS, LEAD_STATUSES, MARKETING_LEVELS
from prospector.database import get_session
from prospector.errors import UpsertInterrupted
from prospector.models.lead import Lead
from prospector.pipeline.scoring import local_score

logger = logging.getLogger('services.lead_store')

# Discovery fields refreshed when a known place id is found again
_DISCOVERY_FIELDS = (
    'run_id', 'client_ref', 'name', 'address', 'city', 'state', 'phone', 'whatsapp',
    'whatsapp_link', 'website', 'maps_url', 'rating', 'total_reviews', 'types',
    'opening_hours', 'score', 'classification', 'priority', 'opportunities',
    'has_website', 'secure_site', 'has_phone', 'has_whatsapp', 'business_category',
    'captured_at', 'source',
)


@dataclass
class UpsertResult:
    new_ids: List[int] = field(default_factory=list)
    duplicate_ids: List[int] = field(default_factory=list)
    skipped: int = 0
    new_by_city: Dict[str, int] = field(default_factory=dict)

    @property
    def new(self) -> int:
        return len(self.new_ids)

    @property
    def duplicates(self) -> int:
        return len(self.duplicate_ids)


# ── Mapping ───────────────────────────────────────────────────────────────────

def _clamp_score(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(min(max(float(value), 0), 100)))
    except (TypeError, ValueError):
        return None


def map_provider_lead(raw: Dict, tenant_id: str, run_id: str = None, client_ref: str = None) -> Dict:
    """Search-workflow lead → Lead column values."""
    website = raw.get('site') or None
    opening_hours = raw.get('horarioFuncionamento') or []
    has_website = bool(raw.get('temSite')) if 'temSite' in raw else bool(website)
    secure_site = bool(raw.get('siteSeguro')) if 'siteSeguro' in raw else bool(
        website and website.lower().startswith('https://'))

    values = {
        'tenant_id': tenant_id,
        'place_id': raw.get('googlePlaceId'),
        'run_id': run_id,
        'client_ref': raw.get('clienteId') or client_ref,
        'name': raw.get('nome') or '',
        'address': raw.get('endereco'),
        'city': raw.get('cidade'),
        'state': raw.get('estado'),
        'phone': raw.get('telefone') or None,
        'whatsapp': raw.get('whatsapp') or None,
        'whatsapp_link': raw.get('linkWhatsapp') or None,
        'website': website,
        'maps_url': raw.get('googleMapsUrl'),
        'rating': raw.get('rating') or None,
        'total_reviews': raw.get('totalReviews') or 0,
        'types': raw.get('tipos') or [],
        'opening_hours': opening_hours,
        'score': _clamp_score(raw.get('score')),
        'classification': (raw.get('classificacao') or '').upper() or None,
        'priority': raw.get('prioridade'),
        'opportunities': raw.get('oportunidades') or [],
        'has_website': has_website,
        'secure_site': secure_site,
        'has_phone': bool(raw.get('temTelefone')) if 'temTelefone' in raw else bool(raw.get('telefone')),
        'has_whatsapp': bool(raw.get('temWhatsapp')) if 'temWhatsapp' in raw else bool(raw.get('whatsapp')),
        'business_category': raw.get('tipoNegocio'),
        'captured_at': raw.get('capturedAt'),
        'source': raw.get('source') or 'google_places_api',
    }

    if values['score'] is None or values['classification'] not in CLASSIFICATIONS:
        fallback = local_score(
            has_website=values['has_website'],
            secure_site=values['secure_site'],
            rating=values['rating'],
            total_reviews=values['total_reviews'],
            has_phone=values['has_phone'],
            has_whatsapp=values['has_whatsapp'],
            has_hours=bool(opening_hours),
        )
        if values['score'] is None:
            values['score'] = fallback['score']
        if values['classification'] not in CLASSIFICATIONS:
            values['classification'] = fallback['classification']
            values['priority'] = fallback['priority']
        if not values['opportunities']:
            values['opportunities'] = fallback['opportunities']
        logger.debug("Lead %s scored locally: %s", values['place_id'], fallback)

    return values


# ── Upsert ────────────────────────────────────────────────────────────────────

def upsert_leads(tenant_id: str, provider_leads: Iterable[Dict], run_id: str = None,
                 client_ref: str = None) -> UpsertResult:
    """
    Upsert each lead by (tenant_id, place_id), committing per lead.

    Unseen keys are inserted and counted as new; known keys get their
    discovery fields refreshed and are counted as duplicates. Enrichment
    fields and workflow status are never touched here.

    Raises UpsertInterrupted if a lead cannot be stored; its `result` lists
    the leads committed before the failure.
    """
    result = UpsertResult()
    session = get_session()
    try:
        for raw in provider_leads:
            values = map_provider_lead(raw, tenant_id, run_id=run_id, client_ref=client_ref)
            if not values['place_id']:
                logger.warning("Skipping lead without place id: %s", values['name'])
                result.skipped += 1
                continue

            lead, created = _upsert_one(session, values)
            if created:
                result.new_ids.append(lead.id)
                city = lead.city or 'Unknown'
                result.new_by_city[city] = result.new_by_city.get(city, 0) + 1
            else:
                result.duplicate_ids.append(lead.id)
    except Exception as e:
        session.rollback()
        logger.error("Upsert for tenant %s broke off after %d new leads: %s", tenant_id, result.new, e)
        raise UpsertInterrupted(f"Lead upsert interrupted: {e}", result=result) from e
    finally:
        session.close()

    logger.info("Upserted leads for tenant %s: new=%d duplicates=%d skipped=%d",
                tenant_id, result.new, result.duplicates, result.skipped)
    return result


def _find(session, tenant_id, place_id):
    return session.query(Lead).filter_by(tenant_id=tenant_id, place_id=place_id).first()


def _refresh(lead, values):
    for name in _DISCOVERY_FIELDS:
        setattr(lead, name, values[name])


def _upsert_one(session, values):
    existing = _find(session, values['tenant_id'], values['place_id'])
    if existing is not None:
        _refresh(existing, values)
        session.commit()
        return existing, False

    lead = Lead(**values, marketing_level='NOT_VERIFIED', status='NEW')
    session.add(lead)
    try:
        session.commit()
        return lead, True
    except IntegrityError:
        # Another run inserted the same key between our select and insert
        session.rollback()
        existing = _find(session, values['tenant_id'], values['place_id'])
        if existing is None:
            raise
        _refresh(existing, values)
        session.commit()
        return existing, False


# ── Candidate queries (always re-read the latest state) ──────────────────────

def _scoped(session, lead_ids):
    return session.query(Lead).filter(Lead.id.in_(list(lead_ids)))


def ads_candidates(lead_ids: List[int]) -> List[Lead]:
    """Leads with a website whose marketing level is still NOT_VERIFIED."""
    if not lead_ids:
        return []
    session = get_session()
    try:
        return (
            _scoped(session, lead_ids)
            .filter(Lead.website.isnot(None), Lead.website != '')
            .filter(Lead.marketing_level == 'NOT_VERIFIED')
            .order_by(Lead.id)
            .all()
        )
    finally:
        session.close()


def ai_candidates(lead_ids: List[int]) -> List[Lead]:
    """HOT/WARM leads with a place id that were never AI-analyzed."""
    if not lead_ids:
        return []
    session = get_session()
    try:
        return (
            _scoped(session, lead_ids)
            .filter(Lead.classification.in_(['HOT', 'WARM']))
            .filter(Lead.ai_analyzed_at.is_(None))
            .filter(Lead.place_id.isnot(None), Lead.place_id != '')
            .order_by(Lead.id)
            .all()
        )
    finally:
        session.close()


def diagnostic_candidates(lead_ids: List[int]) -> List[Lead]:
    """HOT leads without a diagnostic."""
    if not lead_ids:
        return []
    session = get_session()
    try:
        return (
            _scoped(session, lead_ids)
            .filter(Lead.classification == 'HOT')
            .filter(Lead.diagnostic.is_(None))
            .order_by(Lead.id)
            .all()
        )
    finally:
        session.close()


# ── Reads / merges ────────────────────────────────────────────────────────────

def get_lead(lead_id: int, tenant_id: str = None) -> Optional[Lead]:
    session = get_session()
    try:
        lead = session.get(Lead, lead_id)
        if lead is not None and tenant_id is not None and lead.tenant_id != tenant_id:
            return None
        return lead
    finally:
        session.close()


def get_leads(lead_ids: List[int]) -> List[Lead]:
    if not lead_ids:
        return []
    session = get_session()
    try:
        return _scoped(session, lead_ids).order_by(Lead.id).all()
    finally:
        session.close()


def merge_lead_fields(lead_id: int, fields: Dict) -> Lead:
    """Set only the given columns on one lead and commit."""
    session = get_session()
    try:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise LookupError(f"Lead {lead_id} not found")
        for name, value in fields.items():
            setattr(lead, name, value)
        lead.updated_at = datetime.now(timezone.utc)
        session.commit()
        return lead
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ── Stats ─────────────────────────────────────────────────────────────────────

def calculate_lead_stats(leads: Iterable) -> Dict:
    """Aggregate counters over Lead rows (or anything with the same attributes)."""
    stats = {
        'total': 0,
        'by_classification': {c: 0 for c in CLASSIFICATIONS},
        'by_status': {s: 0 for s in LEAD_STATUSES},
        'by_city': {},
        'with_whatsapp': 0,
        'without_website': 0,
        'average_score': 0,
        'marketing': {
            'none': 0,
            'basic': 0,
            'advanced': 0,
            'not_verified': 0,
            'google_ads': 0,
            'facebook_ads': 0,
        },
    }
    score_total = 0

    for lead in leads:
        stats['total'] += 1
        if lead.classification in stats['by_classification']:
            stats['by_classification'][lead.classification] += 1
        if lead.status in stats['by_status']:
            stats['by_status'][lead.status] += 1
        if lead.city:
            stats['by_city'][lead.city] = stats['by_city'].get(lead.city, 0) + 1
        if lead.has_whatsapp:
            stats['with_whatsapp'] += 1
        if not lead.has_website:
            stats['without_website'] += 1
        score_total += lead.score or 0

        level = lead.marketing_level if lead.marketing_level in MARKETING_LEVELS else 'NOT_VERIFIED'
        stats['marketing'][level.lower()] += 1
        if lead.runs_google_ads:
            stats['marketing']['google_ads'] += 1
        if lead.runs_facebook_ads:
            stats['marketing']['facebook_ads'] += 1

    if stats['total']:
        stats['average_score'] = round(score_total / stats['total'])
    return stats


def tenant_lead_stats(tenant_id: str) -> Dict:
    session = get_session()
    try:
        leads = session.query(Lead).filter(Lead.tenant_id == tenant_id).all()
        return calculate_lead_stats(leads)
    finally:
        session.close()
