from types import MappingProxyType
from dataclasses import dataclass, field, asdict, replace
from typing import Optional, List, Dict, Any, Iterable, Tuple

from second_order.core.errors import InputValidationError
from second_order.core.text import normalize_text_key

# --- Enumerations (string constants, shared across engines) ---
IMPACT_POS = "POS"
IMPACT_NEG = "NEG"
IMPACT_MIXED = "MIXED"
IMPACT_UNCERTAIN = "UNCERTAIN"
IMPACT_DIRECTIONS: Tuple[str, ...] = (IMPACT_POS, IMPACT_NEG, IMPACT_MIXED, IMPACT_UNCERTAIN)

LEVEL_LOW = "LOW"
LEVEL_MED = "MED"
LEVEL_HIGH = "HIGH"
CONFIDENCE_LEVELS: Tuple[str, ...] = (LEVEL_LOW, LEVEL_MED, LEVEL_HIGH)
SENSITIVITY_LEVELS: Tuple[str, ...] = (LEVEL_LOW, LEVEL_MED, LEVEL_HIGH)

CONSTRAINT_LOCKED = "LOCKED"
CONSTRAINT_SEMI_LOCKED = "SEMI_LOCKED"
CONSTRAINT_FREE = "FREE"
HOLDING_CONSTRAINTS: Tuple[str, ...] = (CONSTRAINT_LOCKED, CONSTRAINT_SEMI_LOCKED, CONSTRAINT_FREE)

PURPOSE_LONG_TERM_GROWTH = "LONG_TERM_GROWTH"
HOLDING_PURPOSES: Tuple[str, ...] = (
    "TAX", "SPEND_0_12M", "SPEND_12_36M", "LIFESTYLE_DRAWDOWN", PURPOSE_LONG_TERM_GROWTH,
)

BIAS_STRONG_NEG = "STRONG_NEG"
BIAS_NEG = "NEG"
BIAS_NEUTRAL = "NEUTRAL"
BIAS_POS = "POS"
BIAS_STRONG_POS = "STRONG_POS"

# Causal layers, ordered from most direct to most lagged
LAYER_FIRST = "first"
LAYER_SECOND = "second"
LAYER_THIRD = "third"
LAYER_FOURTH = "fourth"
CAUSAL_LAYERS: Tuple[str, ...] = (LAYER_FIRST, LAYER_SECOND, LAYER_THIRD, LAYER_FOURTH)
RECOMMENDATION_SOURCE_LAYERS: Tuple[str, ...] = ("SECOND", "THIRD", "FOURTH")

ACTION_OVERWEIGHT = "OVERWEIGHT"
ACTION_UNDERWEIGHT = "UNDERWEIGHT"
ASSET_ACTIONS: Tuple[str, ...] = (ACTION_OVERWEIGHT, ACTION_UNDERWEIGHT, "BUY", "SELL", "HEDGE", "WATCH")

BRANCH_BASE = "BASE"
BRANCH_BULL = "BULL"
BRANCH_BEAR = "BEAR"
BRANCH_NAMES: Tuple[str, ...] = (BRANCH_BASE, BRANCH_BULL, BRANCH_BEAR)

SHOCK_UP = "UP"
SHOCK_DOWN = "DOWN"
SHOCK_FLAT = "FLAT"

STRENGTH_WEAK = "WEAK"
STRENGTH_MED = "MED"
STRENGTH_STRONG = "STRONG"

LAG_IMMEDIATE = "IMMEDIATE"
LAG_M3_6 = "M3_6"
LAG_M6_18 = "M6_18"
LAG_M18_PLUS = "M18_PLUS"

ASSET_TYPES: Tuple[str, ...] = ("EQUITY", "ETF")

SIZING_SMALL = "SMALL"
SIZING_MEDIUM = "MEDIUM"
SIZING_LARGE = "LARGE"

HIGHER_SUPPORTS = "HIGHER_SUPPORTS"
LOWER_SUPPORTS = "LOWER_SUPPORTS"

STATUS_GREEN = "GREEN"
STATUS_YELLOW = "YELLOW"
STATUS_RED = "RED"
STATUS_UNKNOWN = "UNKNOWN"
INDICATOR_STATUSES: Tuple[str, ...] = (STATUS_GREEN, STATUS_YELLOW, STATUS_RED, STATUS_UNKNOWN)

# --- Process-wide weight tables (read-only views) ---
IMPACT_SCORE = MappingProxyType({IMPACT_POS: 1.0, IMPACT_NEG: -1.0, IMPACT_MIXED: 0.0, IMPACT_UNCERTAIN: 0.0})
CONFIDENCE_WEIGHT = MappingProxyType({LEVEL_LOW: 0.4, LEVEL_MED: 0.7, LEVEL_HIGH: 1.0})
SENSITIVITY_WEIGHT = MappingProxyType({LEVEL_LOW: 0.5, LEVEL_MED: 0.8, LEVEL_HIGH: 1.0})
LAG_WEIGHT = MappingProxyType({LAG_IMMEDIATE: 1.0, LAG_M3_6: 0.9, LAG_M6_18: 0.75, LAG_M18_PLUS: 0.6})
BRANCH_SHOCK_MULTIPLIER = MappingProxyType({BRANCH_BASE: 1.0, BRANCH_BULL: 1.2, BRANCH_BEAR: 1.4})

# Free-text limits shared by the output schema, sanitizer and request parser
MAX_HOLDING_NAME_LEN = 120
MAX_TICKER_LEN = 20
MAX_TAG_LEN = 50
MAX_TAGS = 12
MIN_STATEMENT_LEN = 10
MAX_STATEMENT_LEN = 500
MAX_HORIZON_MONTHS = 120


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key; accepts camelCase and snake_case payloads."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _enum_value(value: Any, allowed: Iterable[str], field_name: str, default: Optional[str] = None) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is not None:
            return default
        raise InputValidationError(f"{field_name} is required")
    normalized = str(value).strip().upper()
    if normalized not in allowed:
        raise InputValidationError(f"{field_name} must be one of {list(allowed)}, got {value!r}")
    return normalized


def _serialize(obj: Any) -> Any:
    if hasattr(obj, "__dataclass_fields__"):
        return {k: _serialize(v) for k, v in asdict(obj).items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    return obj


# --- Request ---
@dataclass
class HoldingInput:
    """One portfolio holding as submitted by the user."""
    name: str
    sensitivity: str  # "LOW" | "MED" | "HIGH"
    ticker: Optional[str] = None
    weight: Optional[float] = None  # decimal 0-1 once normalized; None = not provided
    constraint: str = CONSTRAINT_FREE  # "LOCKED" | "SEMI_LOCKED" | "FREE"
    purpose: str = PURPOSE_LONG_TERM_GROWTH
    exposure_tags: List[str] = field(default_factory=list)

    @property
    def has_weight(self) -> bool:
        return self.weight is not None

    @property
    def key(self) -> str:
        return normalize_text_key(self.name)

    @staticmethod
    def coerce_weight(value: Any) -> Optional[float]:
        """Values in (1, 100] are read as percentages; result must land in [0, 1]."""
        if value is None:
            return None
        if not _is_number(value):
            raise InputValidationError(f"weight must be a number, got {value!r}")
        weight = float(value)
        if 1 < weight <= 100:
            weight = weight / 100
        if weight < 0 or weight > 1:
            raise InputValidationError(f"weight must be between 0 and 1 (or a percentage up to 100), got {value!r}")
        return weight

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HoldingInput":
        if not isinstance(data, dict):
            raise InputValidationError("each holding must be an object")
        name = _pick(data, "name")
        if not isinstance(name, str) or not name.strip():
            raise InputValidationError("holding name is required")
        name = name.strip()
        if len(name) > MAX_HOLDING_NAME_LEN:
            raise InputValidationError(f"holding name exceeds {MAX_HOLDING_NAME_LEN} characters: {name[:40]}...")

        ticker = _pick(data, "ticker")
        if ticker is not None:
            if not isinstance(ticker, str):
                raise InputValidationError(f"ticker for {name} must be a string")
            ticker = ticker.strip() or None
            if ticker and len(ticker) > MAX_TICKER_LEN:
                raise InputValidationError(f"ticker for {name} exceeds {MAX_TICKER_LEN} characters")

        raw_tags = _pick(data, "exposure_tags", "exposureTags", default=[])
        if not isinstance(raw_tags, (list, tuple)):
            raise InputValidationError(f"exposure tags for {name} must be a list")
        tags: List[str] = []
        for tag in raw_tags:
            if not isinstance(tag, str) or not tag.strip():
                raise InputValidationError(f"exposure tags for {name} must be non-empty strings")
            tag = tag.strip()
            if len(tag) > MAX_TAG_LEN:
                raise InputValidationError(f"exposure tag exceeds {MAX_TAG_LEN} characters: {tag[:20]}...")
            if tag not in tags:
                tags.append(tag)
        if len(tags) > MAX_TAGS:
            raise InputValidationError(f"at most {MAX_TAGS} exposure tags allowed for {name}")

        return cls(
            name=name,
            ticker=ticker,
            weight=cls.coerce_weight(_pick(data, "weight")),
            sensitivity=_enum_value(_pick(data, "sensitivity"), SENSITIVITY_LEVELS, "sensitivity"),
            constraint=_enum_value(_pick(data, "constraint"), HOLDING_CONSTRAINTS, "constraint", default=CONSTRAINT_FREE),
            purpose=_enum_value(_pick(data, "purpose"), HOLDING_PURPOSES, "purpose", default=PURPOSE_LONG_TERM_GROWTH),
            exposure_tags=tags,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass(frozen=True)
class BranchOverride:
    name: str
    probability: float


@dataclass
class AnalyzeRequest:
    """Validated analysis request: a structural shift plus the holdings to stress."""
    statement: str
    probability: float
    horizon_months: int
    holdings: List[HoldingInput]
    branch_overrides: List[BranchOverride] = field(default_factory=list)
    universe_ref: Optional[str] = None
    scenario_ref: Optional[str] = None
    allow_weight_override: bool = False
    model_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, max_holdings: int = 100) -> "AnalyzeRequest":
        """Parse the analyze payload, raising InputValidationError on any bad field."""
        if not isinstance(data, dict):
            raise InputValidationError("request body must be an object")

        statement = _pick(data, "statement")
        if not isinstance(statement, str):
            raise InputValidationError("statement is required")
        statement = statement.strip()
        if not MIN_STATEMENT_LEN <= len(statement) <= MAX_STATEMENT_LEN:
            raise InputValidationError(
                f"statement must be {MIN_STATEMENT_LEN}-{MAX_STATEMENT_LEN} characters, got {len(statement)}"
            )

        probability = _pick(data, "probability")
        if not _is_number(probability) or not 0 <= probability <= 1:
            raise InputValidationError(f"probability must be between 0 and 1, got {probability!r}")

        horizon = _pick(data, "horizon_months", "horizonMonths")
        if isinstance(horizon, float) and horizon.is_integer():
            horizon = int(horizon)
        if not isinstance(horizon, int) or isinstance(horizon, bool) or not 1 <= horizon <= MAX_HORIZON_MONTHS:
            raise InputValidationError(f"horizon_months must be an integer 1-{MAX_HORIZON_MONTHS}, got {horizon!r}")

        raw_holdings = _pick(data, "holdings", default=[])
        if not isinstance(raw_holdings, list) or not raw_holdings:
            raise InputValidationError("at least one holding is required")
        if len(raw_holdings) > max_holdings:
            raise InputValidationError(f"at most {max_holdings} holdings allowed, got {len(raw_holdings)}")
        holdings = [HoldingInput.from_dict(item) for item in raw_holdings]
        seen = set()
        for holding in holdings:
            if holding.key in seen:
                raise InputValidationError(f"Duplicate holding name: {holding.name}")
            seen.add(holding.key)

        return cls(
            statement=statement,
            probability=float(probability),
            horizon_months=horizon,
            holdings=holdings,
            branch_overrides=cls._parse_overrides(_pick(data, "branch_overrides", "branchOverrides", default=[])),
            universe_ref=_pick(data, "universe_ref", "universeVersionId"),
            scenario_ref=_pick(data, "scenario_ref", "portfolioScenarioId"),
            allow_weight_override=bool(_pick(data, "allow_weight_override", "allowWeightOverride", default=False)),
            model_name=_pick(data, "model_name", "modelName"),
        )

    @staticmethod
    def _parse_overrides(raw: Any) -> List[BranchOverride]:
        if isinstance(raw, dict):
            raw = [{"name": k, "probability": v} for k, v in raw.items()]
        if not isinstance(raw, list):
            raise InputValidationError("branch overrides must be a list or mapping")
        overrides = []
        for item in raw:
            if not isinstance(item, dict):
                raise InputValidationError("each branch override must be an object")
            name = _enum_value(item.get("name"), BRANCH_NAMES, "branch name")
            probability = item.get("probability")
            if not _is_number(probability) or probability < 0:
                raise InputValidationError(f"branch probability for {name} must be a non-negative number")
            overrides.append(BranchOverride(name=name, probability=float(probability)))
        return overrides

    def with_holdings(self, holdings: List[HoldingInput]) -> "AnalyzeRequest":
        return replace(self, holdings=list(holdings))


# --- Structured reasoning output ---
@dataclass(frozen=True)
class CausalEffect:
    description: str
    impact_direction: str  # "POS" | "NEG" | "MIXED" | "UNCERTAIN"
    confidence: str  # "LOW" | "MED" | "HIGH"


@dataclass(frozen=True)
class Assumption:
    assumption: str
    breakpoint_signal: str


@dataclass(frozen=True)
class LeadingIndicator:
    name: str
    rationale: str


@dataclass(frozen=True)
class HoldingMapping:
    holding_name: str
    exposure_type: str
    net_impact: str
    mechanism: str
    confidence: str


@dataclass(frozen=True)
class AssetRecommendation:
    asset_name: str
    category: str
    source_layer: str  # "SECOND" | "THIRD" | "FOURTH"
    direction: str
    action: str
    rationale: str
    confidence: str
    mechanism: str
    ticker: Optional[str] = None
    time_horizon: Optional[str] = None


@dataclass
class CausalAnalysis:
    """Validated causal map returned by the reasoning call."""
    effects_by_layer: Dict[str, List[CausalEffect]]
    assumptions: List[Assumption] = field(default_factory=list)
    leading_indicators: List[LeadingIndicator] = field(default_factory=list)
    holding_mappings: List[HoldingMapping] = field(default_factory=list)
    asset_recommendations: List[AssetRecommendation] = field(default_factory=list)

    def layer(self, name: str) -> List[CausalEffect]:
        return self.effects_by_layer.get(name, [])

    def layer_entries(self) -> List[Tuple[str, List[CausalEffect]]]:
        return [(name, self.layer(name)) for name in CAUSAL_LAYERS]

    def counts(self) -> Dict[str, int]:
        """Sizes of every section; used in logs and corrective retry hints."""
        counts = {name: len(self.layer(name)) for name in CAUSAL_LAYERS}
        counts["holding_mappings"] = len(self.holding_mappings)
        counts["asset_recommendations"] = len(self.asset_recommendations)
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class ReasoningResult:
    model_name: str
    prompt_version: str
    output: CausalAnalysis
    raw: Any = None
    attempts: int = 1


# --- Scenario branches & shocks ---
@dataclass(frozen=True)
class Branch:
    name: str  # "BASE" | "BULL" | "BEAR"
    probability: float
    rationale: str


@dataclass(frozen=True)
class NodeShock:
    """Quantified shock for one causal effect under one branch."""
    branch_name: str
    node_key: str  # hyphenated slug of the effect description
    node_label: str
    direction: str  # "UP" | "DOWN" | "FLAT"
    magnitude_pct: float  # signed, in [-1, 1]
    strength: str  # "WEAK" | "MED" | "STRONG"
    lag: str  # "IMMEDIATE" | "M3_6" | "M6_18" | "M18_PLUS"
    confidence: str
    evidence_note: str


# --- Universe & recommendations ---
@dataclass
class UniverseRow:
    symbol: str
    company_name: str
    asset_type: str  # "EQUITY" | "ETF"
    liquidity_class: str
    exposure_vector: Dict[str, float]  # factor key (no exp_ marker) -> [-1, 1]
    max_position_default_pct: float = 0.05
    region: Optional[str] = None
    currency: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class ExpressionRecommendation:
    symbol: str
    name: str
    asset_type: str
    direction: str  # "POS" | "NEG"
    action: str
    sizing_band: str  # "SMALL" | "MEDIUM" | "LARGE"
    max_position_pct: float
    score: float
    mechanism: str
    catalyst_window: str
    priced_in_note: str
    risk_note: str
    invalidation_trigger: str
    portfolio_role: str  # "core" | "hedge"
    actionable: bool
    already_expressed: bool
    matched_factors: List[str] = field(default_factory=list)


# --- Monitoring ---
@dataclass(frozen=True)
class IndicatorDefinition:
    indicator_name: str
    supports_direction: str  # "HIGHER_SUPPORTS" | "LOWER_SUPPORTS"
    green_threshold: float
    yellow_threshold: float
    red_threshold: float
    expected_window: str


@dataclass
class InvalidationItem:
    """Assumption paired with the indicator that would reveal its failure."""
    assumption: str
    breakpoint_signal: str
    indicator_name: str
    latest_status: str = STATUS_UNKNOWN
    latest_note: Optional[str] = None


@dataclass
class DecisionSummary:
    portfolio_impact_p10: float
    portfolio_impact_p50: float
    portfolio_impact_p90: float
    top_actions: List[str]
    top_monitors: List[str]
    change_my_mind: List[str]


# --- Portfolio diagnostics ---
@dataclass
class PortfolioValidation:
    weight_sum: float
    actionable_weight: float
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    suspicious_weight_rows: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class HoldingContribution:
    holding_name: str
    score: float
    weight: float


@dataclass
class BiasResult:
    contributions: List[HoldingContribution]
    portfolio_bias: float
    bias_label: str


@dataclass(frozen=True)
class ExposureContribution:
    holding_name: str
    score: float
    weight: float
    direction: str  # "UPSIDE" | "DOWNSIDE"


@dataclass(frozen=True)
class BranchImpact:
    branch_name: str
    score: float


# --- Pipeline results ---
@dataclass
class AnalysisResult:
    run_id: str
    bias: BiasResult
    analysis: CausalAnalysis
    portfolio_validation: PortfolioValidation
    branches: List[Branch]
    node_shocks: List[NodeShock]
    recommendations: List[ExpressionRecommendation]
    indicator_definitions: List[IndicatorDefinition]
    exposure_contributions: List[ExposureContribution]
    invalidation_items: List[InvalidationItem]
    decision_summary: DecisionSummary
    model_name: str = ""
    prompt_version: str = ""
    ok: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class AnalysisFailure:
    run_id: str
    error: str
    message: str = "Analysis failed; snapshot persisted for audit."
    ok: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)
