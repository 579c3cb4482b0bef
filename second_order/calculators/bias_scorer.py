import logging
from typing import List

import numpy as np

from second_order.core.errors import DerivationError
from second_order.core.text import normalize_text_key
from second_order.core.types import (
    BIAS_STRONG_NEG, BIAS_NEG, BIAS_NEUTRAL, BIAS_POS, BIAS_STRONG_POS,
    IMPACT_SCORE, CONFIDENCE_WEIGHT, SENSITIVITY_WEIGHT,
    AnalyzeRequest, HoldingInput, CausalAnalysis, HoldingContribution, BiasResult,
)

logger = logging.getLogger(__name__)


def normalize_weights(holdings: List[HoldingInput]) -> List[float]:
    """
    Scoring weights for each holding, summing to 1.

    Equal weights when no holding carries a weight; otherwise raw weights
    (missing treated as 0) rescaled by their total.

    Raises:
        DerivationError: If explicit weights sum to zero
    """
    if not holdings:
        raise DerivationError("At least one holding is required to score bias.")
    if not any(h.has_weight for h in holdings):
        return [1.0 / len(holdings)] * len(holdings)

    raw = [h.weight or 0.0 for h in holdings]
    total = sum(raw)
    if total <= 0:
        raise DerivationError("Provided holding weights sum to zero.")
    return [w / total for w in raw]


def bias_label_from_score(score: float) -> str:
    if score <= -0.6:
        return BIAS_STRONG_NEG
    if score <= -0.2:
        return BIAS_NEG
    if score < 0.2:
        return BIAS_NEUTRAL
    if score < 0.6:
        return BIAS_POS
    return BIAS_STRONG_POS


def compute_portfolio_bias(request: AnalyzeRequest, output: CausalAnalysis) -> BiasResult:
    """
    Reduce per-holding mappings into one portfolio bias in [-1, 1].

    contribution = impact x confidence x sensitivity x probability x weight

    Raises:
        DerivationError: If a holding has no mapping or weights sum to zero
    """
    weights = normalize_weights(request.holdings)
    mapping_by_holding = {normalize_text_key(m.holding_name): m for m in output.holding_mappings}

    contributions = []
    for holding, weight in zip(request.holdings, weights):
        mapping = mapping_by_holding.get(holding.key)
        if mapping is None:
            raise DerivationError(f"Missing mapping for holding {holding.name}")
        score = (
            IMPACT_SCORE[mapping.net_impact]
            * CONFIDENCE_WEIGHT[mapping.confidence]
            * SENSITIVITY_WEIGHT[holding.sensitivity]
            * request.probability
            * weight
        )
        contributions.append(HoldingContribution(holding_name=holding.name, score=score, weight=weight))

    raw_bias = sum(c.score for c in contributions)
    portfolio_bias = float(np.clip(raw_bias, -1.0, 1.0))
    label = bias_label_from_score(portfolio_bias)
    logger.debug("Portfolio bias computed", extra={"bias": portfolio_bias, "label": label})
    return BiasResult(contributions=contributions, portfolio_bias=portfolio_bias, bias_label=label)
