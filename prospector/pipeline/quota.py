"""
Quota guard — rejects requests that would overwhelm the search workflow.

Runs before the PipelineRun record is created and before any provider call.
"""
from typing import Optional

from prospector.errors import QuotaExceeded
from prospector.pipeline.limits_config import get_quota_limits, get_request_defaults


def validate_quota(area_count: int, max_per_area: Optional[int] = None) -> int:
    """
    Raise QuotaExceeded if the request is too large; return the effective
    max-per-area (the configured default when the caller omitted it).
    """
    limits = get_quota_limits()
    if max_per_area is None:
        max_per_area = get_request_defaults()['max_per_area']

    if area_count > limits['max_areas']:
        raise QuotaExceeded(
            f"At most {limits['max_areas']} areas per search, got {area_count}. "
            f"Split the areas across separate runs.",
            limit=limits['max_areas'], requested=area_count,
        )

    if max_per_area > limits['max_per_area']:
        raise QuotaExceeded(
            f"At most {limits['max_per_area']} leads per area, got {max_per_area}.",
            limit=limits['max_per_area'], requested=max_per_area,
        )

    potential = area_count * max_per_area
    if potential > limits['max_total']:
        raise QuotaExceeded(
            f"{area_count} areas x {max_per_area} leads = {potential} potential leads, "
            f"above the limit of {limits['max_total']}. Reduce areas or leads per area.",
            limit=limits['max_total'], requested=potential,
        )

    return max_per_area
