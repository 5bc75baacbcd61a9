"""
n8n webhook clients — search, ads verification, AI scoring, deep diagnostic.

Every call is a single JSON POST with a per-stage timeout. Outcomes are
recorded on the provider's circuit breaker, but an open circuit never blocks
a call made here; the single-lead routes check the breaker themselves. There
are no retries: re-running the pipeline is the retry mechanism.

Wire field names (tipo, cidades, scoreMinimo, ...) belong to the n8n
workflows and are kept as-is.
"""
import json
import logging
from typing import Any, Dict, Optional

import requests

from prospector.config import (
    SEARCH_WEBHOOK_URL, ADS_WEBHOOK_URL, AI_WEBHOOK_URL, DIAGNOSTIC_WEBHOOK_URL,
)
from prospector.errors import ProviderError, ProviderTimeout, MalformedResponse
from prospector.pipeline.limits_config import get_stage_timeout
from prospector.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.n8n')


def post_webhook(url: str, payload: Dict, timeout: float, service: str) -> Any:
    """
    POST `payload` as JSON and return the decoded body (dict or list).

    Raises ProviderTimeout, ProviderError (transport, non-2xx, empty body) or
    MalformedResponse (body is not JSON).
    """
    logger.debug("POST %s (%s, timeout=%ss)", url, service, timeout)
    try:
        response = requests.post(
            url,
            json=payload,
            headers={'Content-Type': 'application/json'},
            timeout=timeout,
        )
    except requests.exceptions.Timeout as e:
        raise ProviderTimeout(f"{service} timed out after {timeout:g}s", service=service) from e
    except requests.exceptions.RequestException as e:
        raise ProviderError(f"{service} request failed: {e}", service=service) from e

    logger.debug("%s response status: %d", service, response.status_code)
    if not response.ok:
        logger.debug("%s response body: %s", service, response.text[:500])
        raise ProviderError(
            f"{service} webhook error: {response.status_code} {response.reason}",
            service=service, status_code=response.status_code,
        )

    body = response.text
    if not body or not body.strip():
        raise ProviderError(f"Empty response from {service}", service=service,
                            status_code=response.status_code)
    try:
        return json.loads(body)
    except ValueError as e:
        raise MalformedResponse(f"{service} returned invalid JSON", service=service,
                                status_code=response.status_code) from e


def _require_success(data: Any, service: str, default_error: str) -> Dict:
    if not isinstance(data, dict):
        raise MalformedResponse(f"{service} returned {type(data).__name__}, expected object",
                                service=service)
    if not data.get('success'):
        raise ProviderError(data.get('error') or default_error, service=service)
    return data


def _call(breaker_name: str, url: str, payload: Dict, stage: str, service: str) -> Any:
    breaker = get_breaker(breaker_name)
    return breaker.record(post_webhook, url, payload, get_stage_timeout(stage), service)


# ── Search ────────────────────────────────────────────────────────────────────

def area_request_id(request_id: str, area_name: str) -> str:
    """Per-area request id: whitespace runs in the area name become underscores."""
    return f"{request_id}_{'_'.join(area_name.split())}"


def search_area(
    category: str,
    area: Dict,
    score_min: int,
    max_per_area: int,
    request_id: str,
    client_ref: Optional[str] = None,
) -> Dict:
    """Search a single area. Returns the provider payload ({success, leads, ...})."""
    payload = {
        'tipo': category,
        'cidades': [{
            'nome': area['name'],
            'lat': area.get('lat'),
            'lng': area.get('lng'),
            'raio': area.get('radius'),
        }],
        'scoreMinimo': score_min,
        'maxPorCidade': max_per_area,
        'clienteId': client_ref,
        'requestId': area_request_id(request_id, area['name']),
    }
    data = _call('n8n_search', SEARCH_WEBHOOK_URL, payload, 'search', 'search')
    data = _require_success(data, 'search', f"Search failed for {area['name']}")
    logger.info("Search %s: %d leads", area['name'], len(data.get('leads') or []))
    return data


# ── Ads verification ─────────────────────────────────────────────────────────

def verify_ads(website: str, lead_id=None) -> Dict:
    payload = {'site': website, 'leadId': str(lead_id) if lead_id is not None else None}
    data = _call('n8n_ads', ADS_WEBHOOK_URL, payload, 'ads_verification', 'ads verification')
    return _require_success(data, 'ads verification', 'Ads verification failed')


# ── AI scoring ───────────────────────────────────────────────────────────────

def analyze_lead(place_id: str, lead_id) -> Dict:
    payload = {'placeId': place_id, 'leadId': str(lead_id)}
    data = _call('n8n_ai', AI_WEBHOOK_URL, payload, 'ai_analysis', 'AI analysis')
    data = _require_success(data, 'AI analysis', 'AI analysis failed')
    if not isinstance(data.get('analiseIA'), dict):
        raise MalformedResponse("AI analysis response has no analiseIA object", service='AI analysis')
    return data


# ── Deep diagnostic ──────────────────────────────────────────────────────────

def request_diagnostic(payload: Dict) -> Any:
    """
    Run the diagnostic workflow. The raw body is returned untouched (object
    or one-element list); normalization happens in services.diagnostic.
    """
    data = _call('n8n_diagnostic', DIAGNOSTIC_WEBHOOK_URL, payload, 'deep_diagnostic', 'diagnostic')
    if isinstance(data, dict) and data.get('success') is False:
        raise ProviderError(data.get('error') or 'Diagnostic failed', service='diagnostic')
    return data
