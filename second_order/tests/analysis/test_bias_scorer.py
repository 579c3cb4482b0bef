"""Tests for portfolio bias scoring."""
import pytest

from second_order.calculators.bias_scorer import (
    normalize_weights,
    bias_label_from_score,
    compute_portfolio_bias,
)
from second_order.core.errors import DerivationError
from second_order.core.types import AnalyzeRequest
from second_order.shift_agents.reasoning_orchestrator import validate_model_output


class TestNormalizeWeights:
    """Scoring weights always sum to 1."""

    def test_equal_weights_without_explicit_weights(self, make_holding):
        holdings = [make_holding("A"), make_holding("B"), make_holding("C"), make_holding("D")]
        assert normalize_weights(holdings) == [0.25, 0.25, 0.25, 0.25]

    def test_partial_weights_renormalized(self, make_holding):
        """Missing weights count as zero once any weight is present."""
        holdings = [make_holding("A", weight=0.3), make_holding("B", weight=0.1), make_holding("C")]
        assert normalize_weights(holdings) == pytest.approx([0.75, 0.25, 0.0])

    def test_zero_sum_raises(self, make_holding):
        holdings = [make_holding("A", weight=0.0), make_holding("B", weight=0.0)]
        with pytest.raises(DerivationError, match="sum to zero"):
            normalize_weights(holdings)


class TestBiasLabel:
    """Label bands are inclusive on the negative side."""

    @pytest.mark.parametrize("score,label", [
        (-0.6, "STRONG_NEG"),
        (-0.21, "NEG"),
        (-0.2, "NEG"),
        (0.0, "NEUTRAL"),
        (0.2, "POS"),
        (0.5, "POS"),
        (0.61, "STRONG_POS"),
    ])
    def test_bands(self, score, label):
        assert bias_label_from_score(score) == label


class TestComputePortfolioBias:
    """Weighted contributions reduced to one clamped score."""

    def test_sample_portfolio(self, sample_request, valid_output):
        """Alpha: -1 x 1.0 x 0.8 x 0.6 x 0.6; Beta: 1 x 0.7 x 1.0 x 0.6 x 0.4."""
        result = compute_portfolio_bias(sample_request, valid_output)

        alpha, beta = result.contributions
        assert alpha.score == pytest.approx(-0.288)
        assert beta.score == pytest.approx(0.168)
        assert result.portfolio_bias == pytest.approx(-0.12)
        assert result.bias_label == "NEUTRAL"

    def test_full_conviction_single_holding_is_pos(self, valid_output_dict):
        """POS x HIGH x HIGH x 0.5 x 1.0 = exactly 0.5 -> POS."""
        valid_output_dict["holding_mappings"] = [dict(
            valid_output_dict["holding_mappings"][1], holding_name="Solo", confidence="HIGH",
        )]
        request = AnalyzeRequest.from_dict({
            "statement": "A structural shift in power demand",
            "probability": 0.5,
            "horizon_months": 12,
            "holdings": [{"name": "Solo", "weight": 1.0, "sensitivity": "HIGH"}],
        })
        output = validate_model_output(valid_output_dict, request.holdings)

        result = compute_portfolio_bias(request, output)

        assert result.portfolio_bias == pytest.approx(0.5)
        assert result.bias_label == "POS"

    def test_missing_mapping_raises(self, sample_request, valid_output):
        valid_output.holding_mappings = valid_output.holding_mappings[:1]
        with pytest.raises(DerivationError, match="Beta Trust"):
            compute_portfolio_bias(sample_request, valid_output)
