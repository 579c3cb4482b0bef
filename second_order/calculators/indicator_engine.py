import logging
from typing import List, Optional

from second_order.core.config import AppConfig
from second_order.core.errors import InputValidationError
from second_order.core.types import (
    HIGHER_SUPPORTS, LOWER_SUPPORTS,
    STATUS_GREEN, STATUS_YELLOW, STATUS_RED, INDICATOR_STATUSES,
    CausalAnalysis, IndicatorDefinition, InvalidationItem,
)

logger = logging.getLogger(__name__)

# Coarse defaults pending manual tuning per indicator
DEFAULT_GREEN_THRESHOLD = 1.0
DEFAULT_YELLOW_THRESHOLD = 0.0
DEFAULT_RED_THRESHOLD = -1.0
DEFAULT_EXPECTED_WINDOW = "3-6 months"
MAX_NOTE_LEN = 500


def derive_indicator_definitions(output: CausalAnalysis, limit: Optional[int] = None) -> List[IndicatorDefinition]:
    if limit is None:
        limit = AppConfig.analysis.max_indicators
    return [
        IndicatorDefinition(
            indicator_name=indicator.name,
            supports_direction=HIGHER_SUPPORTS,
            green_threshold=DEFAULT_GREEN_THRESHOLD,
            yellow_threshold=DEFAULT_YELLOW_THRESHOLD,
            red_threshold=DEFAULT_RED_THRESHOLD,
            expected_window=DEFAULT_EXPECTED_WINDOW,
        )
        for indicator in output.leading_indicators[:limit]
    ]


def classify_observed_value(observed_value: float, definition: IndicatorDefinition) -> str:
    """GREEN / YELLOW / RED band of an observation; comparisons flip for LOWER_SUPPORTS."""
    if definition.supports_direction == LOWER_SUPPORTS:
        if observed_value <= definition.green_threshold:
            return STATUS_GREEN
        if observed_value <= definition.yellow_threshold:
            return STATUS_YELLOW
        return STATUS_RED
    if observed_value >= definition.green_threshold:
        return STATUS_GREEN
    if observed_value >= definition.yellow_threshold:
        return STATUS_YELLOW
    return STATUS_RED


def build_invalidation_items(output: CausalAnalysis) -> List[InvalidationItem]:
    """Pair assumption i with indicator i, reusing the last entry of the shorter list."""
    assumptions = output.assumptions
    indicators = output.leading_indicators
    if not assumptions or not indicators:
        return []
    items = []
    for idx in range(max(len(assumptions), len(indicators))):
        assumption = assumptions[min(idx, len(assumptions) - 1)]
        indicator = indicators[min(idx, len(indicators) - 1)]
        items.append(InvalidationItem(
            assumption=assumption.assumption,
            breakpoint_signal=assumption.breakpoint_signal,
            indicator_name=indicator.name,
            latest_note=indicator.rationale,
        ))
    return items


def apply_observation(
    item: InvalidationItem,
    definition: Optional[IndicatorDefinition] = None,
    observed_value: Optional[float] = None,
    status: Optional[str] = None,
    note: Optional[str] = None,
) -> InvalidationItem:
    """
    Update an invalidation item's status and note in place.

    An observed value is classified against the definition; otherwise an
    explicit status is applied as given.

    Raises:
        InputValidationError: If neither a classifiable value nor a valid status is supplied
    """
    if note is not None and len(note) > MAX_NOTE_LEN:
        raise InputValidationError(f"note exceeds {MAX_NOTE_LEN} characters")

    if observed_value is not None:
        if definition is None:
            raise InputValidationError("an indicator definition is required to classify an observed value")
        new_status = classify_observed_value(observed_value, definition)
    elif status is not None:
        new_status = status.strip().upper()
        if new_status not in INDICATOR_STATUSES:
            raise InputValidationError(f"status must be one of {list(INDICATOR_STATUSES)}, got {status!r}")
    else:
        raise InputValidationError("either observed_value or status is required")

    item.latest_status = new_status
    if note is not None:
        item.latest_note = note
    logger.debug("Indicator observation applied", extra={"indicator": item.indicator_name, "status": new_status})
    return item
