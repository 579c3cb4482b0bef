"""Tests for indicator definitions, classification and invalidation tracking."""
import pytest

from second_order.calculators.indicator_engine import (
    derive_indicator_definitions,
    classify_observed_value,
    build_invalidation_items,
    apply_observation,
)
from second_order.core.errors import InputValidationError
from second_order.core.types import Assumption, IndicatorDefinition, LeadingIndicator


@pytest.fixture
def higher_supports():
    return IndicatorDefinition("Hyperscaler capex", "HIGHER_SUPPORTS", 1.0, 0.0, -1.0, "3-6 months")


@pytest.fixture
def lower_supports():
    return IndicatorDefinition("Transformer lead times", "LOWER_SUPPORTS", 1.0, 0.0, -1.0, "3-6 months")


class TestDeriveIndicatorDefinitions:

    def test_defaults(self, valid_output):
        definitions = derive_indicator_definitions(valid_output)
        assert [d.indicator_name for d in definitions] == [
            "Hyperscaler capex", "Utility rate filings", "Transformer lead times",
        ]
        assert all(d.supports_direction == "HIGHER_SUPPORTS" for d in definitions)
        assert (definitions[0].green_threshold, definitions[0].yellow_threshold, definitions[0].red_threshold) == (1.0, 0.0, -1.0)
        assert definitions[0].expected_window == "3-6 months"

    def test_limit(self, valid_output):
        valid_output.leading_indicators = [LeadingIndicator(f"I{i}", "r") for i in range(8)]
        assert len(derive_indicator_definitions(valid_output)) == 5
        assert len(derive_indicator_definitions(valid_output, limit=2)) == 2


class TestClassifyObservedValue:
    """GREEN / YELLOW / RED bands."""

    @pytest.mark.parametrize("value,status", [(1.0, "GREEN"), (0.5, "YELLOW"), (0.0, "YELLOW"), (-0.5, "RED")])
    def test_higher_supports(self, higher_supports, value, status):
        assert classify_observed_value(value, higher_supports) == status

    @pytest.mark.parametrize("value,status", [(-2.0, "GREEN"), (1.0, "GREEN"), (1.5, "RED")])
    def test_lower_supports(self, lower_supports, value, status):
        assert classify_observed_value(value, lower_supports) == status


class TestInvalidationItems:
    """Assumption/indicator pairing and observation updates."""

    def test_pairs_and_reuses_last_element(self, valid_output):
        """Two assumptions, three indicators: the last assumption is reused."""
        items = build_invalidation_items(valid_output)
        assert len(items) == 3
        assert items[2].assumption == "Grid connections are approved"
        assert items[2].indicator_name == "Transformer lead times"
        assert items[0].latest_status == "UNKNOWN"
        assert items[0].latest_note == "Drives incremental load"

    def test_empty_when_a_side_is_missing(self, valid_output):
        valid_output.leading_indicators = []
        assert build_invalidation_items(valid_output) == []

    def test_more_assumptions_than_indicators(self, valid_output):
        valid_output.assumptions.append(Assumption("Power stays scarce", "Spot prices fall"))
        valid_output.leading_indicators = valid_output.leading_indicators[:1]
        items = build_invalidation_items(valid_output)
        assert [i.indicator_name for i in items] == ["Hyperscaler capex"] * 3

    def test_apply_observed_value(self, valid_output, higher_supports):
        item = build_invalidation_items(valid_output)[0]
        apply_observation(item, definition=higher_supports, observed_value=-3.0, note="Capex guidance cut")
        assert item.latest_status == "RED"
        assert item.latest_note == "Capex guidance cut"

    def test_apply_explicit_status(self, valid_output):
        item = build_invalidation_items(valid_output)[0]
        apply_observation(item, status="yellow")
        assert item.latest_status == "YELLOW"
        assert item.latest_note == "Drives incremental load"

    def test_apply_requires_value_or_status(self, valid_output):
        item = build_invalidation_items(valid_output)[0]
        with pytest.raises(InputValidationError, match="observed_value or status"):
            apply_observation(item)

    def test_observed_value_needs_definition(self, valid_output):
        item = build_invalidation_items(valid_output)[0]
        with pytest.raises(InputValidationError, match="definition"):
            apply_observation(item, observed_value=1.0)

    def test_invalid_status(self, valid_output):
        item = build_invalidation_items(valid_output)[0]
        with pytest.raises(InputValidationError, match="status must be one of"):
            apply_observation(item, status="PURPLE")
