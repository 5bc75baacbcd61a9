"""
Pipeline Stage 2: ADS VERIFICATION — Detect ad and analytics tooling on lead websites.

Candidates: this run's new leads that have a website and are still
NOT_VERIFIED. One detector call per lead, 0.5s apart by default.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Any

from prospector.pipeline.base import EnrichmentStage

logger = logging.getLogger('pipeline.ads')

# detector key → Lead column
SIGNAL_FIELDS = {
    'fazGoogleAds': 'runs_google_ads',
    'fazFacebookAds': 'runs_facebook_ads',
    'usaGoogleAnalytics': 'uses_google_analytics',
    'usaGoogleTagManager': 'uses_tag_manager',
    'usaHotjar': 'uses_hotjar',
    'usaRdStation': 'uses_rd_station',
    'usaTiktokAds': 'runs_tiktok_ads',
    'usaLinkedinAds': 'runs_linkedin_ads',
}


def marketing_level(result: Dict) -> str:
    """
    ADVANCED when the site runs paid ads AND uses analytics or a tag manager,
    BASIC when it has exactly one of the two, NONE otherwise.
    """
    runs_ads = bool(result.get('fazGoogleAds') or result.get('fazFacebookAds'))
    has_analytics = bool(result.get('usaGoogleAnalytics') or result.get('usaGoogleTagManager'))
    if runs_ads and has_analytics:
        return 'ADVANCED'
    if runs_ads or has_analytics:
        return 'BASIC'
    return 'NONE'


def ads_fields(result: Dict) -> Dict[str, Any]:
    """Detector response → Lead columns. Missing booleans are stored as false."""
    fields = {column: bool(result.get(key)) for key, column in SIGNAL_FIELDS.items()}
    details = result.get('adsDetalhes')
    fields['ads_details'] = [d for d in details if isinstance(d, str)] if isinstance(details, list) else []
    fields['marketing_level'] = marketing_level(result)
    fields['ads_verified'] = True
    fields['ads_verified_at'] = datetime.now(timezone.utc)
    return fields


class AdsVerificationStage(EnrichmentStage):
    stage = 'ads_verification'
    description = 'Google/Facebook ads, analytics and tag manager detection per website'
    apis = ['n8n ads workflow']
    breaker = 'n8n_ads'

    def select_candidates(self, lead_ids: List[int]):
        from prospector.services.lead_store import ads_candidates
        return ads_candidates(lead_ids)

    def enrich(self, lead) -> Dict[str, Any]:
        from prospector.services import n8n
        result = n8n.verify_ads(lead.website, lead_id=lead.id)
        fields = ads_fields(result)
        logger.info("Lead %s (%s): marketing level %s", lead.id, lead.name, fields['marketing_level'])
        return fields
