"""
Pipeline limits loader — quota caps, inter-call delays, per-stage timeouts.

YAML file next to this module with an in-memory cache and a hardcoded
fallback if the file is missing. Delays are the minimum spacing between
provider calls within a stage.
"""
import logging
import os

import yaml

logger = logging.getLogger('pipeline.limits')


_limits_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'quota': {
            'max_areas': 3,
            'max_per_area': 15,
            'max_total': 50,
        },
        'request_defaults': {
            'max_per_area': 10,
            'score_min': 40,
        },
        'delays': {
            'ads_verification': 0.5,
            'ai_analysis': 1.0,
            'deep_diagnostic': 2.0,
        },
        'timeouts': {
            'search': 120,
            'ads_verification': 120,
            'ai_analysis': 120,
            'deep_diagnostic': 600,
        },
    }


def load_limits_config() -> dict:
    """Load limits from YAML, with in-memory cache and hardcoded fallback."""
    global _limits_config
    if _limits_config is not None:
        return _limits_config

    config_path = os.path.join(os.path.dirname(__file__), 'limits.yaml')
    try:
        with open(config_path, 'r') as f:
            _limits_config = yaml.safe_load(f)
        logger.info("Limits loaded from YAML (version=%s)", _limits_config.get('version', '?'))
    except Exception as e:
        logger.warning("Limits YAML not found (%s), using defaults", e)
        _limits_config = _default_config()

    return _limits_config


def _section(name: str) -> dict:
    cfg = load_limits_config()
    merged = dict(_default_config()[name])
    merged.update(cfg.get(name) or {})
    return merged


def get_quota_limits() -> dict:
    """max_areas, max_per_area, max_total."""
    return _section('quota')


def get_request_defaults() -> dict:
    """Defaults applied to optional request fields (max_per_area, score_min)."""
    return _section('request_defaults')


def get_stage_delay(stage: str) -> float:
    """Seconds to sleep before each provider call in a stage (0 if unset)."""
    return float(_section('delays').get(stage, 0.0))


def get_stage_timeout(stage: str) -> float:
    """Provider call timeout in seconds; unknown stages get the search bound."""
    timeouts = _section('timeouts')
    return float(timeouts.get(stage, timeouts['search']))


def reset_cache():
    """Reset the in-memory cache (useful for testing)."""
    global _limits_config
    _limits_config = None
