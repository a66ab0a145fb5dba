"""Turn a campaign's safe rate into business capacity figures."""

from typing import List, Optional

from rampbench.errors import InsufficientData
from rampbench.models import BusinessEstimate, Campaign, EstimatorSettings, ScaleTier

SECONDS_PER_DAY = 86_400

# Share of the safe rate recommended for sustained production traffic.
RECOMMENDED_FRACTION = 0.8


def estimate(campaign: Campaign, settings: EstimatorSettings) -> BusinessEstimate:
    """Estimate daily capacity and scale tier from a finished campaign.

    The safe rate is the campaign's last healthy rate: the refined boundary
    when a breaking point was found, or the highest rate run otherwise.

    Args:
        campaign: A campaign that has reached Done or Incomplete.
        settings: Requests-per-user divisor and the tier table.

    Returns:
        A BusinessEstimate.

    Raises:
        InsufficientData: If the campaign has no healthy run.
    """
    safe_rate = campaign.last_healthy
    if safe_rate is None or not campaign.healthy_steps:
        raise InsufficientData(
            f"no healthy run recorded for {campaign.url}; capacity cannot be estimated"
        )

    requests_per_day = float(safe_rate * SECONDS_PER_DAY)
    daily_active_users = requests_per_day / settings.requests_per_user_per_day
    return BusinessEstimate(
        safe_rate=safe_rate,
        requests_per_day=requests_per_day,
        daily_active_users=daily_active_users,
        tier=tier_for(daily_active_users, settings.tiers),
        recommended_rate=int(safe_rate * RECOMMENDED_FRACTION),
    )


def tier_for(daily_active_users: float, tiers: List[ScaleTier]) -> Optional[str]:
    """Label of the tier with the highest lower bound not above the estimate."""
    label = None
    best = None
    for tier in tiers:
        if tier.lower_bound <= daily_active_users and (best is None or tier.lower_bound > best):
            best = tier.lower_bound
            label = tier.label
    return label
