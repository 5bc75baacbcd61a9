"""
Health routes — liveness and circuit breaker status.
"""
import logging
from flask import Blueprint, jsonify

from prospector.services.circuit_breaker import OPEN, get_all_breakers

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def breakers_health():
    """Circuit breaker state for every provider webhook."""
    services = {name: breaker.get_health() for name, breaker in sorted(get_all_breakers().items())}
    degraded = [name for name, health in services.items() if health['state'] == OPEN]
    return jsonify({
        'status': 'degraded' if degraded else 'healthy',
        'open_circuits': degraded,
        'services': services,
    })


@bp.route('/api/health/<service>/reset', methods=['POST'])
def reset_breaker(service):
    breaker = get_all_breakers().get(service)
    if breaker is None:
        return jsonify({'success': False, 'error': f'Unknown service: {service}'}), 404
    breaker.reset()
    logger.info("Breaker '%s' reset via API", service)
    return jsonify({'success': True, 'service': breaker.get_health()})
