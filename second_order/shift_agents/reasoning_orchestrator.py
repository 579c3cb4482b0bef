import logging
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

from second_order.core.config import AppConfig
from second_order.core.errors import ReasoningContractError
from second_order.core.text import compact_text, normalize_text_key
from second_order.core.types import (
    CAUSAL_LAYERS, LAYER_FIRST, LAYER_SECOND, IMPACT_DIRECTIONS, CONFIDENCE_LEVELS,
    RECOMMENDATION_SOURCE_LAYERS, ASSET_ACTIONS,
    AnalyzeRequest, HoldingInput, CausalAnalysis, CausalEffect, Assumption, LeadingIndicator,
    HoldingMapping, AssetRecommendation, ReasoningResult,
)
from second_order.prompts.analysis_prompts import (
    SECOND_ORDER_ANALYSIS_PROMPT, HOLDING_LINE_TEMPLATE, RETRY_HINT_TEMPLATE,
)
from second_order.prompts.analysis_schemas import (
    SECOND_ORDER_ANALYSIS_SCHEMA,
    EFFECT_TEXT_LIMITS,
    ASSUMPTION_TEXT_LIMITS,
    INDICATOR_TEXT_LIMITS,
    HOLDING_MAPPING_TEXT_LIMITS,
    ASSET_RECOMMENDATION_TEXT_LIMITS,
)

logger = logging.getLogger(__name__)

# Attempt states: two tries, then a terminal failure
ATTEMPT_FIRST = "FIRST_ATTEMPT"
ATTEMPT_RETRY_WITH_HINT = "RETRY_WITH_HINT"
ATTEMPT_FAILED = "FAILED"
NEXT_STATE_ON_FAILURE = MappingProxyType({
    ATTEMPT_FIRST: ATTEMPT_RETRY_WITH_HINT,
    ATTEMPT_RETRY_WITH_HINT: ATTEMPT_FAILED,
})

MIN_FIRST_ORDER_EFFECTS = 2
MIN_SECOND_ORDER_EFFECTS = 2


# --- Sanitize ---
def _sanitize_items(items: Any, limits: Dict[str, int]) -> Any:
    if not isinstance(items, list):
        return items
    cleaned = []
    for item in items:
        if isinstance(item, dict):
            item = {k: (compact_text(v, limits[k]) if k in limits else v) for k, v in item.items()}
        cleaned.append(item)
    return cleaned


def sanitize_model_output(raw: Any) -> Any:
    """Trim, collapse whitespace and truncate every free-text field to its declared limit.

    Returns a new structure; anything that is not shaped like the schema is
    passed through untouched for the parser to reject.
    """
    if not isinstance(raw, dict):
        return raw
    sanitized = dict(raw)
    layers = raw.get("effects_by_layer")
    if isinstance(layers, dict):
        sanitized["effects_by_layer"] = {
            name: _sanitize_items(items, EFFECT_TEXT_LIMITS) for name, items in layers.items()
        }
    sections = (
        ("assumptions", ASSUMPTION_TEXT_LIMITS),
        ("leading_indicators", INDICATOR_TEXT_LIMITS),
        ("holding_mappings", HOLDING_MAPPING_TEXT_LIMITS),
        ("asset_recommendations", ASSET_RECOMMENDATION_TEXT_LIMITS),
    )
    for key, limits in sections:
        if key in raw:
            sanitized[key] = _sanitize_items(raw[key], limits)
    return sanitized


# --- Parse ---
def _schema_error(message: str) -> ReasoningContractError:
    return ReasoningContractError(f"Model output does not match schema: {message}", rule="Output must match the declared schema.")


def _text(item: Dict[str, Any], key: str, where: str, required: bool = True) -> Optional[str]:
    value = item.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, str) or (required and not value):
        raise _schema_error(f"{where}.{key} must be a non-empty string")
    return value or None


def _choice(item: Dict[str, Any], key: str, allowed: Tuple[str, ...], where: str) -> str:
    value = item.get(key)
    if isinstance(value, str) and value.strip().upper() in allowed:
        return value.strip().upper()
    raise _schema_error(f"{where}.{key} must be one of {list(allowed)}, got {value!r}")


def _items(raw: Dict[str, Any], key: str, required: bool) -> List[Dict[str, Any]]:
    value = raw.get(key)
    if value is None and not required:
        return []
    if not isinstance(value, list):
        raise _schema_error(f"{key} must be an array")
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            raise _schema_error(f"{key}[{index}] must be an object")
    return value


def parse_causal_analysis(raw: Any) -> CausalAnalysis:
    """Convert sanitized tool output into typed records, enforcing the schema."""
    if not isinstance(raw, dict):
        raise _schema_error("top-level output must be an object")
    layers = raw.get("effects_by_layer")
    if not isinstance(layers, dict):
        raise _schema_error("effects_by_layer must be an object")

    effects_by_layer: Dict[str, List[CausalEffect]] = {}
    for layer in CAUSAL_LAYERS:
        entries = _items(layers, layer, required=True)
        effects_by_layer[layer] = [
            CausalEffect(
                description=_text(e, "description", f"effects_by_layer.{layer}[{i}]"),
                impact_direction=_choice(e, "impact_direction", IMPACT_DIRECTIONS, f"effects_by_layer.{layer}[{i}]"),
                confidence=_choice(e, "confidence", CONFIDENCE_LEVELS, f"effects_by_layer.{layer}[{i}]"),
            )
            for i, e in enumerate(entries)
        ]

    assumptions = [
        Assumption(
            assumption=_text(a, "assumption", f"assumptions[{i}]"),
            breakpoint_signal=_text(a, "breakpoint_signal", f"assumptions[{i}]"),
        )
        for i, a in enumerate(_items(raw, "assumptions", required=False))
    ]
    indicators = [
        LeadingIndicator(
            name=_text(li, "name", f"leading_indicators[{i}]"),
            rationale=_text(li, "rationale", f"leading_indicators[{i}]"),
        )
        for i, li in enumerate(_items(raw, "leading_indicators", required=False))
    ]
    mappings = [
        HoldingMapping(
            holding_name=_text(m, "holding_name", f"holding_mappings[{i}]"),
            exposure_type=_text(m, "exposure_type", f"holding_mappings[{i}]"),
            net_impact=_choice(m, "net_impact", IMPACT_DIRECTIONS, f"holding_mappings[{i}]"),
            mechanism=_text(m, "mechanism", f"holding_mappings[{i}]"),
            confidence=_choice(m, "confidence", CONFIDENCE_LEVELS, f"holding_mappings[{i}]"),
        )
        for i, m in enumerate(_items(raw, "holding_mappings", required=True))
    ]
    recommendations = [
        AssetRecommendation(
            asset_name=_text(r, "asset_name", f"asset_recommendations[{i}]"),
            category=_text(r, "category", f"asset_recommendations[{i}]"),
            source_layer=_choice(r, "source_layer", RECOMMENDATION_SOURCE_LAYERS, f"asset_recommendations[{i}]"),
            direction=_choice(r, "direction", IMPACT_DIRECTIONS, f"asset_recommendations[{i}]"),
            action=_choice(r, "action", ASSET_ACTIONS, f"asset_recommendations[{i}]"),
            rationale=_text(r, "rationale", f"asset_recommendations[{i}]"),
            confidence=_choice(r, "confidence", CONFIDENCE_LEVELS, f"asset_recommendations[{i}]"),
            mechanism=_text(r, "mechanism", f"asset_recommendations[{i}]"),
            ticker=_text(r, "ticker", f"asset_recommendations[{i}]", required=False),
            time_horizon=_text(r, "time_horizon", f"asset_recommendations[{i}]", required=False),
        )
        for i, r in enumerate(_items(raw, "asset_recommendations", required=False))
    ]
    return CausalAnalysis(
        effects_by_layer=effects_by_layer,
        assumptions=assumptions,
        leading_indicators=indicators,
        holding_mappings=mappings,
        asset_recommendations=recommendations,
    )


# --- Dedupe (first occurrence wins) ---
def _first_by_key(items, key_fn):
    seen = set()
    kept = []
    for item in items:
        key = key_fn(item)
        if key in seen:
            continue
        seen.add(key)
        kept.append(item)
    return kept


def dedupe_effects(output: CausalAnalysis) -> CausalAnalysis:
    """Drop effects whose normalized description repeats within the same layer."""
    output.effects_by_layer = {
        layer: _first_by_key(output.layer(layer), lambda e: normalize_text_key(e.description))
        for layer in CAUSAL_LAYERS
    }
    return output


def dedupe_holding_mappings(output: CausalAnalysis) -> CausalAnalysis:
    output.holding_mappings = _first_by_key(
        output.holding_mappings, lambda m: normalize_text_key(m.holding_name)
    )
    return output


def dedupe_asset_recommendations(output: CausalAnalysis) -> CausalAnalysis:
    output.asset_recommendations = _first_by_key(
        output.asset_recommendations,
        lambda r: (normalize_text_key(r.asset_name), r.source_layer, r.action),
    )
    return output


# --- Invariants ---
def enforce_output_checks(output: CausalAnalysis, holdings: List[HoldingInput]) -> None:
    """Raise ReasoningContractError when the causal map breaks a structural invariant."""
    counts = output.counts()
    if counts[LAYER_FIRST] < MIN_FIRST_ORDER_EFFECTS:
        raise ReasoningContractError(
            f"Model output must include at least {MIN_FIRST_ORDER_EFFECTS} first-order effects.",
            rule=f"At least {MIN_FIRST_ORDER_EFFECTS} distinct first-order effects are required.",
            observed=counts,
        )
    if counts[LAYER_SECOND] < MIN_SECOND_ORDER_EFFECTS:
        raise ReasoningContractError(
            f"Model output must include at least {MIN_SECOND_ORDER_EFFECTS} second-order effects.",
            rule=f"At least {MIN_SECOND_ORDER_EFFECTS} distinct second-order effects are required.",
            observed=counts,
        )
    downstream = sum(counts[layer] for layer in CAUSAL_LAYERS[1:])
    if downstream > 0 and counts["asset_recommendations"] == 0:
        raise ReasoningContractError(
            "Model output must include at least one asset recommendation when second/third/fourth-order effects exist.",
            rule="Second/third/fourth-order effects require at least one asset recommendation tied to those layers.",
            observed=counts,
        )

    mapping_counts: Dict[str, int] = {}
    for mapping in output.holding_mappings:
        key = normalize_text_key(mapping.holding_name)
        mapping_counts[key] = mapping_counts.get(key, 0) + 1

    unique_holdings: Dict[str, str] = {}
    for holding in holdings:
        unique_holdings.setdefault(holding.key, holding.name)
    for key, name in unique_holdings.items():
        found = mapping_counts.get(key, 0)
        if found != 1:
            raise ReasoningContractError(
                f"Expected exactly one mapping for holding: {name}",
                rule="Provide exactly one holding mapping per unique holding name.",
                observed={
                    "unique_holdings": len(unique_holdings),
                    "holding_mappings": counts["holding_mappings"],
                    "mappings_for_holding": found,
                },
            )


def validate_model_output(raw: Any, holdings: List[HoldingInput]) -> CausalAnalysis:
    """Sanitize, parse, dedupe and check one raw reasoning output."""
    output = parse_causal_analysis(sanitize_model_output(raw))
    output = dedupe_asset_recommendations(dedupe_holding_mappings(dedupe_effects(output)))
    enforce_output_checks(output, holdings)
    return output


def build_retry_hint(error: Exception) -> str:
    """Corrective hint restating the violated rule and the counts observed."""
    rule = getattr(error, "rule", None) or "Output must match the declared schema and invariants."
    observed = getattr(error, "observed", None) or {}
    observed_text = ", ".join(f"{k}={v}" for k, v in observed.items()) if observed else "unavailable"
    return RETRY_HINT_TEMPLATE.format(error=str(error) or type(error).__name__, rule=rule, observed=observed_text)


class ReasoningOrchestrator:
    """
    Drives the external structured-reasoning call for one analysis request.

    Each attempt sanitizes, parses, dedupes and checks the returned causal map.
    A failed first attempt moves to RETRY_WITH_HINT, re-invoking the capability
    with a corrective hint built from the failure; a failed retry moves to
    FAILED and the last error propagates. There is no backoff.

    The capability is any object exposing
    `invoke(prompt: str, schema: dict, hint: Optional[str] = None) -> dict`.
    """

    def __init__(self, capability, prompt_version: Optional[str] = None):
        if capability is None:
            raise ValueError("capability is required")
        self.capability = capability
        self.prompt_version = prompt_version or AppConfig.analysis.prompt_version
        self.schema = SECOND_ORDER_ANALYSIS_SCHEMA

    @property
    def model_name(self) -> str:
        for attr in ("resolved_model_name", "model_name"):
            value = getattr(self.capability, attr, None)
            if isinstance(value, str) and value:
                return value
        return "unknown"

    def build_prompt(self, request: AnalyzeRequest) -> str:
        holdings_text = "\n".join(
            HOLDING_LINE_TEMPLATE.format(
                name=h.name,
                ticker=h.ticker or "N/A",
                sensitivity=h.sensitivity,
                constraint=h.constraint,
                tags=", ".join(h.exposure_tags) or "none",
            )
            for h in request.holdings
        )
        return SECOND_ORDER_ANALYSIS_PROMPT.format(
            max_exposure_type=HOLDING_MAPPING_TEXT_LIMITS["exposure_type"],
            max_mechanism=HOLDING_MAPPING_TEXT_LIMITS["mechanism"],
            statement=request.statement,
            probability=request.probability,
            horizon_months=request.horizon_months,
            holdings_text=holdings_text,
        )

    def run(self, request: AnalyzeRequest) -> ReasoningResult:
        """
        Produce a validated causal map or raise the last failure.

        Raises:
            ReasoningContractError: If both attempts break the output contract
            Exception: Whatever the capability raised on the final attempt
        """
        prompt = self.build_prompt(request)
        state = ATTEMPT_FIRST
        hint: Optional[str] = None
        attempts = 0
        last_error: Optional[Exception] = None

        while state != ATTEMPT_FAILED:
            attempts += 1
            try:
                raw = self.capability.invoke(prompt, self.schema, hint)
                output = validate_model_output(raw, request.holdings)
            except Exception as e:
                last_error = e
                state = NEXT_STATE_ON_FAILURE[state]
                logger.warning("Reasoning attempt %s failed: %s", attempts, e, extra={"state": state})
                if state == ATTEMPT_RETRY_WITH_HINT:
                    hint = build_retry_hint(e)
                continue

            logger.info("Reasoning output validated", extra={"attempts": attempts, **output.counts()})
            return ReasoningResult(
                model_name=self.model_name,
                prompt_version=self.prompt_version,
                output=output,
                raw=raw,
                attempts=attempts,
            )

        raise last_error
