import logging
from types import MappingProxyType
from typing import List

import numpy as np

from second_order.core.types import (
    BRANCH_BULL, BRANCH_BEAR,
    Branch, BranchImpact, DecisionSummary, ExpressionRecommendation, IndicatorDefinition,
)

logger = logging.getLogger(__name__)

# Bias scaling per branch relative to the base bias
BRANCH_IMPACT_MULTIPLIER = MappingProxyType({BRANCH_BULL: 0.8, BRANCH_BEAR: 1.2})
SAMPLE_SCALES = (0.8, 1.0, 1.2)

ACTION_FILLER = "No additional actionable change required."
MONITOR_FILLER = "Monitor thesis coherence versus branch probabilities."
CHANGE_MY_MIND = (
    "Branch probabilities diverge materially from observed indicators.",
    "Core second-order assumptions fail for two review cycles.",
    "Portfolio impact distribution re-centers near neutral.",
)
BRIEF_SIZE = 3


def compute_branch_impacts(branches: List[Branch], portfolio_bias: float) -> List[BranchImpact]:
    return [
        BranchImpact(branch_name=b.name, score=portfolio_bias * BRANCH_IMPACT_MULTIPLIER.get(b.name, 1.0))
        for b in branches
    ]


def nearest_rank_percentile(values: List[float], p: float) -> float:
    """Sorted value at index floor((n - 1) * p); no interpolation. 0.0 when empty."""
    if not values:
        return 0.0
    ordered = np.sort(np.asarray(values, dtype=float))
    return float(ordered[int(np.floor((len(ordered) - 1) * p))])


def _padded(items: List[str], filler: str) -> List[str]:
    items = list(items[:BRIEF_SIZE])
    while len(items) < BRIEF_SIZE:
        items.append(filler)
    return items


def build_decision_summary(
    branch_impacts: List[BranchImpact],
    recommendations: List[ExpressionRecommendation],
    indicators: List[IndicatorDefinition],
) -> DecisionSummary:
    """Compress branch impacts, recommendations and monitors into a short brief.

    The impact distribution is a synthetic three-sample spread per branch
    (x0.8, x1.0, x1.2), read at p10/p50/p90 by nearest rank.
    """
    samples = [impact.score * scale for impact in branch_impacts for scale in SAMPLE_SCALES]

    actions = [
        f"{r.action} {r.symbol} ({r.max_position_pct * 100:.1f}% max)"
        for r in recommendations if r.actionable
    ]
    monitors = [i.indicator_name for i in indicators]

    return DecisionSummary(
        portfolio_impact_p10=nearest_rank_percentile(samples, 0.1),
        portfolio_impact_p50=nearest_rank_percentile(samples, 0.5),
        portfolio_impact_p90=nearest_rank_percentile(samples, 0.9),
        top_actions=_padded(actions, ACTION_FILLER),
        top_monitors=_padded(monitors, MONITOR_FILLER),
        change_my_mind=list(CHANGE_MY_MIND),
    )
