import logging
from dataclasses import replace
from typing import List

from second_order.core.types import CONSTRAINT_FREE, HoldingInput, PortfolioValidation

logger = logging.getLogger(__name__)


class PortfolioRealityValidator:
    """
    Sanity checks on a holdings set before any reasoning call is made.

    Errors block the pipeline; warnings travel with the result:
    - Weight sum outside [MIN_WEIGHT_SUM, MAX_WEIGHT_SUM] is an error, or a
      warning when the caller sets the override flag
    - No explicit weights: warning, equal weighting will be used
    - Any holding above CONCENTRATION_THRESHOLD: concentration warning
    - Weight strictly between 1 and 99 next to other holdings: looks like a
      percentage typed where a decimal was expected
    - No FREE capital: recommendations may be non-actionable
    """

    MIN_WEIGHT_SUM: float = 0.98
    MAX_WEIGHT_SUM: float = 1.02
    CONCENTRATION_THRESHOLD: float = 0.25
    SUSPICIOUS_WEIGHT_LOW: float = 1.0
    SUSPICIOUS_WEIGHT_HIGH: float = 99.0

    def __init__(self, allow_weight_override: bool = False):
        self.allow_weight_override = allow_weight_override

    def run(self, holdings: List[HoldingInput]) -> PortfolioValidation:
        weight_sum = sum(h.weight or 0.0 for h in holdings)
        warnings: List[str] = []
        errors: List[str] = []
        suspicious: List[str] = []

        if any(h.has_weight for h in holdings):
            if not self.MIN_WEIGHT_SUM <= weight_sum <= self.MAX_WEIGHT_SUM:
                if self.allow_weight_override:
                    warnings.append(f"Weight sum is {weight_sum * 100:.2f}% (override enabled).")
                else:
                    errors.append(
                        f"Weight sum is {weight_sum * 100:.2f}%. "
                        f"It must be between {self.MIN_WEIGHT_SUM * 100:.0f}% and {self.MAX_WEIGHT_SUM * 100:.0f}%."
                    )
        else:
            warnings.append("No explicit weights provided. Equal-weighting will be used for scoring.")

        for holding in holdings:
            weight = holding.weight or 0.0
            if weight > self.CONCENTRATION_THRESHOLD:
                warnings.append(
                    f"Holding {holding.name} is above {self.CONCENTRATION_THRESHOLD:.0%}. "
                    "Confirm this concentration is intentional."
                )
            if len(holdings) > 1 and self.SUSPICIOUS_WEIGHT_LOW < weight < self.SUSPICIOUS_WEIGHT_HIGH:
                suspicious.append(holding.name)
        if suspicious:
            warnings.append("Suspicious weights detected. These look like percent values but should be decimals.")

        actionable_weight = sum(h.weight or 0.0 for h in holdings if h.constraint == CONSTRAINT_FREE)
        if actionable_weight <= 0:
            warnings.append("No FREE capital detected; recommendations may be non-actionable.")

        result = PortfolioValidation(
            weight_sum=weight_sum,
            actionable_weight=actionable_weight,
            warnings=warnings,
            errors=errors,
            suspicious_weight_rows=suspicious,
        )
        logger.info(
            "Portfolio validated",
            extra={"weight_sum": weight_sum, "errors": len(errors), "warnings": len(warnings)},
        )
        return result


def normalize_holding_weights(holdings: List[HoldingInput]) -> List[HoldingInput]:
    """Read weights in (1, 100] as percentages; other values are left for validation to judge."""
    normalized = []
    for holding in holdings:
        if holding.weight is not None and 1 < holding.weight <= 100:
            holding = replace(holding, weight=holding.weight / 100)
        normalized.append(holding)
    return normalized
