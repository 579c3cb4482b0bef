"""
Scenario branches and the node shocks derived from them.

Turns the qualitative causal chain into a reproducible quantitative shape:
every (branch, layer, effect) triple becomes one NodeShock whose magnitude,
strength and lag depend only on the effect, its layer and the branch.
"""
import logging
from types import MappingProxyType
from typing import Iterable, List, Optional

from second_order.core.config import AppConfig
from second_order.core.text import slugify
from second_order.core.types import (
    BRANCH_BASE, BRANCH_BULL, BRANCH_BEAR, BRANCH_SHOCK_MULTIPLIER,
    IMPACT_POS, IMPACT_NEG, IMPACT_UNCERTAIN,
    SHOCK_UP, SHOCK_DOWN, SHOCK_FLAT,
    STRENGTH_STRONG, STRENGTH_MED, STRENGTH_WEAK,
    LAG_IMMEDIATE, LAG_M3_6, LAG_M6_18, LAG_M18_PLUS,
    LAYER_FIRST, LAYER_SECOND, LAYER_THIRD, LAYER_FOURTH,
    Branch, BranchOverride, CausalAnalysis, NodeShock,
)

logger = logging.getLogger(__name__)

DEFAULT_BRANCHES = (
    Branch(name=BRANCH_BASE, probability=0.5, rationale="Most likely trajectory."),
    Branch(name=BRANCH_BULL, probability=0.25, rationale="Constructive upside scenario."),
    Branch(name=BRANCH_BEAR, probability=0.25, rationale="Downside stress scenario."),
)

STRENGTH_BY_LAYER = MappingProxyType({
    LAYER_FIRST: STRENGTH_STRONG,
    LAYER_SECOND: STRENGTH_MED,
    LAYER_THIRD: STRENGTH_WEAK,
    LAYER_FOURTH: STRENGTH_WEAK,
})
LAG_BY_LAYER = MappingProxyType({
    LAYER_FIRST: LAG_IMMEDIATE,
    LAYER_SECOND: LAG_M3_6,
    LAYER_THIRD: LAG_M6_18,
    LAYER_FOURTH: LAG_M18_PLUS,
})
SHOCK_DIRECTION = MappingProxyType({IMPACT_POS: SHOCK_UP, IMPACT_NEG: SHOCK_DOWN})
SHOCK_SIGN = MappingProxyType({SHOCK_UP: 1.0, SHOCK_DOWN: -1.0, SHOCK_FLAT: 0.0})

BASE_MAGNITUDE = 0.08
UNCERTAIN_MAGNITUDE = 0.02
NODE_KEY_MAX_LEN = 80
NODE_LABEL_MAX_LEN = 180
FALLBACK_NODE_KEY = "macro-node"


def normalize_branch_probabilities(overrides: Optional[Iterable[BranchOverride]] = None) -> List[Branch]:
    """
    Merge per-branch probability overrides into the defaults and renormalize.

    Overrides replace probabilities by branch name. When the merged total is
    not positive the defaults are returned unchanged.
    """
    overrides = list(overrides or [])
    if not overrides:
        return list(DEFAULT_BRANCHES)

    by_name = {o.name: o.probability for o in overrides}
    merged = [
        Branch(name=b.name, probability=by_name.get(b.name, b.probability), rationale=b.rationale)
        for b in DEFAULT_BRANCHES
    ]
    total = sum(b.probability for b in merged)
    if total <= 0:
        logger.warning("Branch overrides sum to zero; using default branch probabilities")
        return list(DEFAULT_BRANCHES)
    return [Branch(name=b.name, probability=b.probability / total, rationale=b.rationale) for b in merged]


def build_node_shocks(output: CausalAnalysis, branches: List[Branch], per_layer: Optional[int] = None) -> List[NodeShock]:
    """One NodeShock per branch x layer x leading effect of that layer."""
    if per_layer is None:
        per_layer = AppConfig.analysis.shocks_per_layer

    shocks: List[NodeShock] = []
    for branch in branches:
        multiplier = BRANCH_SHOCK_MULTIPLIER.get(branch.name, 1.0)
        for layer, effects in output.layer_entries():
            for effect in effects[:per_layer]:
                direction = SHOCK_DIRECTION.get(effect.impact_direction, SHOCK_FLAT)
                base = UNCERTAIN_MAGNITUDE if effect.impact_direction == IMPACT_UNCERTAIN else BASE_MAGNITUDE
                shocks.append(NodeShock(
                    branch_name=branch.name,
                    node_key=slugify(effect.description, NODE_KEY_MAX_LEN, fallback=FALLBACK_NODE_KEY),
                    node_label=effect.description[:NODE_LABEL_MAX_LEN],
                    direction=direction,
                    magnitude_pct=SHOCK_SIGN[direction] * base * multiplier,
                    strength=STRENGTH_BY_LAYER[layer],
                    lag=LAG_BY_LAYER[layer],
                    confidence=effect.confidence,
                    evidence_note=f"Derived from {layer}-order effect chain.",
                ))
    logger.debug("Node shocks built", extra={"count": len(shocks), "branches": len(branches)})
    return shocks
