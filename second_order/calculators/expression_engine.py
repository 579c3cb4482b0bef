import logging
from typing import Dict, Iterable, List, Optional, Set

from second_order.core.config import AppConfig
from second_order.core.text import normalize_text_key
from second_order.core.types import (
    CONSTRAINT_FREE, CONFIDENCE_WEIGHT, LAG_WEIGHT, LAG_M18_PLUS,
    IMPACT_POS, IMPACT_NEG, ACTION_OVERWEIGHT, ACTION_UNDERWEIGHT,
    SIZING_SMALL, SIZING_MEDIUM, SIZING_LARGE,
    Branch, NodeShock, UniverseRow, HoldingInput, ExpressionRecommendation,
)

logger = logging.getLogger(__name__)


class ExpressionRecommendationEngine:
    """
    Scores a universe of instruments against branch-weighted node shocks and
    returns a fixed-size long/short shortlist.

    score = sum over branches and their shocks of
        branch.probability x shock.magnitude_pct x exposure x confidence weight x lag weight

    Exposure lookup is best-effort: a node key is an LLM-authored slug while a
    universe defines a small fixed set of factor names. See `match_exposure_factor`.
    """

    # Long-lag effects count for less on short-horizon requests
    SHORT_HORIZON_MONTHS: int = 12
    SHORT_HORIZON_LONG_LAG_WEIGHT: float = 0.4

    LARGE_SCORE_THRESHOLD: float = 0.06
    MEDIUM_SCORE_THRESHOLD: float = 0.03
    BASE_CAP_BY_BAND: Dict[str, float] = {SIZING_LARGE: 0.05, SIZING_MEDIUM: 0.025, SIZING_SMALL: 0.01}
    FREE_WEIGHT_CAP_FRACTION: float = 0.05

    MECHANISM_NOTE: str = "Exposure vector aligns with branch-weighted node shocks."
    PRICED_IN_NOTE: str = "Assess valuation and crowding before execution."
    RISK_NOTE: str = "Model relies on simplified exposure vectors and manual tagging."
    INVALIDATION_TRIGGER: str = "Primary node shocks fail to materialize for two consecutive review cycles."

    def __init__(self, horizon_months: int, long_picks: Optional[int] = None, short_picks: Optional[int] = None):
        if horizon_months < 1:
            raise ValueError("horizon_months must be >= 1")
        self.horizon_months = horizon_months
        self.long_picks = AppConfig.analysis.long_picks if long_picks is None else long_picks
        self.short_picks = AppConfig.analysis.short_picks if short_picks is None else short_picks

    @staticmethod
    def _tokens(key: str) -> List[str]:
        return [t for t in key.replace("_", "-").split("-") if t]

    @classmethod
    def match_exposure_factor(cls, node_key: str, factors: Iterable[str]) -> Optional[str]:
        """
        Find the exposure factor a node key refers to, or None.

        Exact match (hyphens and underscores equivalent) wins. Otherwise the
        factor whose tokens all appear in the node key, preferring the factor
        with the most tokens, then column order. Unmatched shocks contribute 0.
        """
        node_tokens = cls._tokens(node_key)
        node_token_set = set(node_tokens)
        best: Optional[str] = None
        best_size = 0
        for factor in factors:
            factor_tokens = cls._tokens(factor)
            if not factor_tokens:
                continue
            if factor_tokens == node_tokens:
                return factor
            if len(factor_tokens) > best_size and set(factor_tokens) <= node_token_set:
                best, best_size = factor, len(factor_tokens)
        return best

    def lag_weight(self, lag: str) -> float:
        if self.horizon_months <= self.SHORT_HORIZON_MONTHS and lag == LAG_M18_PLUS:
            return self.SHORT_HORIZON_LONG_LAG_WEIGHT
        return LAG_WEIGHT[lag]

    def score_row(self, row: UniverseRow, branches: List[Branch], node_shocks: List[NodeShock]):
        """Return (score, matched factor names) for one universe row."""
        score = 0.0
        matched: List[str] = []
        for branch in branches:
            for shock in (s for s in node_shocks if s.branch_name == branch.name):
                factor = self.match_exposure_factor(shock.node_key, row.exposure_vector.keys())
                if factor is None:
                    continue
                if factor not in matched:
                    matched.append(factor)
                score += (
                    branch.probability
                    * shock.magnitude_pct
                    * row.exposure_vector[factor]
                    * CONFIDENCE_WEIGHT[shock.confidence]
                    * self.lag_weight(shock.lag)
                )
        return score, matched

    def sizing_band(self, score: float) -> str:
        magnitude = abs(score)
        if magnitude >= self.LARGE_SCORE_THRESHOLD:
            return SIZING_LARGE
        if magnitude >= self.MEDIUM_SCORE_THRESHOLD:
            return SIZING_MEDIUM
        return SIZING_SMALL

    @staticmethod
    def holding_keys(holdings: List[HoldingInput]) -> Set[str]:
        """One normalized "ticker name" key per holding (just the name when no ticker)."""
        keys = {normalize_text_key(f"{h.ticker or ''} {h.name}".strip()) for h in holdings}
        keys.discard("")
        return keys

    @staticmethod
    def actionable_free_weight(holdings: List[HoldingInput]) -> float:
        return sum(h.weight or 0.0 for h in holdings if h.constraint == CONSTRAINT_FREE)

    def run(
        self,
        branches: List[Branch],
        node_shocks: List[NodeShock],
        universe_rows: List[UniverseRow],
        holdings: List[HoldingInput],
    ) -> List[ExpressionRecommendation]:
        """Top long picks by descending score, then top short picks most negative first."""
        holding_keys = self.holding_keys(holdings)
        free_weight = self.actionable_free_weight(holdings)

        scored: List[ExpressionRecommendation] = []
        for row in universe_rows:
            score, matched = self.score_row(row, branches, node_shocks)
            direction = IMPACT_POS if score >= 0 else IMPACT_NEG
            band = self.sizing_band(score)
            base_cap = self.BASE_CAP_BY_BAND[band]
            free_cap = free_weight * self.FREE_WEIGHT_CAP_FRACTION if free_weight > 0 else base_cap
            already_expressed = (
                normalize_text_key(row.symbol) in holding_keys
                or normalize_text_key(row.company_name) in holding_keys
            )
            scored.append(ExpressionRecommendation(
                symbol=row.symbol,
                name=row.company_name,
                asset_type=row.asset_type,
                direction=direction,
                action=ACTION_OVERWEIGHT if direction == IMPACT_POS else ACTION_UNDERWEIGHT,
                sizing_band=band,
                max_position_pct=min(base_cap, free_cap, row.max_position_default_pct),
                score=score,
                mechanism=self.MECHANISM_NOTE,
                catalyst_window="0-12 months" if self.horizon_months <= self.SHORT_HORIZON_MONTHS else "12-36 months",
                priced_in_note=self.PRICED_IN_NOTE,
                risk_note=self.RISK_NOTE,
                invalidation_trigger=self.INVALIDATION_TRIGGER,
                portfolio_role="core" if direction == IMPACT_POS else "hedge",
                actionable=free_weight > 0 and not already_expressed,
                already_expressed=already_expressed,
                matched_factors=matched,
            ))

        longs = sorted((r for r in scored if r.direction == IMPACT_POS), key=lambda r: r.score, reverse=True)
        shorts = sorted((r for r in scored if r.direction == IMPACT_NEG), key=lambda r: r.score)
        unmatched = sum(1 for r in scored if not r.matched_factors)
        if unmatched:
            logger.info("Universe rows with no matched exposure factor", extra={"unmatched": unmatched, "rows": len(scored)})
        return longs[:self.long_picks] + shorts[:self.short_picks]
