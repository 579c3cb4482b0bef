"""Tests for ExpressionRecommendationEngine."""
import pytest

from second_order.calculators.branch_shocks import normalize_branch_probabilities, build_node_shocks
from second_order.calculators.expression_engine import ExpressionRecommendationEngine
from second_order.core.types import HoldingInput


@pytest.fixture
def branches():
    return normalize_branch_probabilities()


@pytest.fixture
def node_shocks(valid_output, branches):
    return build_node_shocks(valid_output, branches)


class TestMatchExposureFactor:
    """Best-effort lookup from node slug to universe factor."""

    def test_exact_match_ignores_separator(self):
        factors = ["power", "power_prices"]
        assert ExpressionRecommendationEngine.match_exposure_factor("power-prices", factors) == "power_prices"

    def test_subset_prefers_most_tokens(self):
        factors = ["power", "power_prices", "rates"]
        assert ExpressionRecommendationEngine.match_exposure_factor("power-prices-spike", factors) == "power_prices"

    def test_no_match(self):
        assert ExpressionRecommendationEngine.match_exposure_factor("utility-capex-expands", ["rates"]) is None


class TestExpressionRecommendationEngine:
    """Test suite for scoring, sizing and selection."""

    def test_initialization(self):
        engine = ExpressionRecommendationEngine(horizon_months=24)
        assert engine.long_picks == 4
        assert engine.short_picks == 3

    def test_invalid_horizon(self):
        with pytest.raises(ValueError, match="horizon_months"):
            ExpressionRecommendationEngine(horizon_months=0)

    def test_long_lag_discounted_on_short_horizon(self):
        assert ExpressionRecommendationEngine(horizon_months=12).lag_weight("M18_PLUS") == 0.4
        assert ExpressionRecommendationEngine(horizon_months=13).lag_weight("M18_PLUS") == 0.6
        assert ExpressionRecommendationEngine(horizon_months=6).lag_weight("M3_6") == 0.9

    def test_sizing_bands(self):
        engine = ExpressionRecommendationEngine(horizon_months=24)
        assert engine.sizing_band(0.06) == "LARGE"
        assert engine.sizing_band(-0.03) == "MEDIUM"
        assert engine.sizing_band(0.0299) == "SMALL"

    def test_score_row(self, branches, node_shocks, sample_universe_rows):
        """GRID: 1.15 x (0.08 x 1.0 x 1.0 x 1.0 + 0.08 x 0.8 x 0.7 x 0.9)."""
        engine = ExpressionRecommendationEngine(horizon_months=24)
        score, matched = engine.score_row(sample_universe_rows[0], branches, node_shocks)
        assert score == pytest.approx(1.15 * (0.08 + 0.08 * 0.8 * 0.7 * 0.9))
        assert matched == ["electricity_demand", "utility_capex"]

    def test_zero_exposure_row(self, branches, node_shocks, sample_universe_rows, sample_holdings):
        """Unmatched factors score exactly 0: SMALL band, POS direction."""
        engine = ExpressionRecommendationEngine(horizon_months=24)
        recs = engine.run(branches, node_shocks, [sample_universe_rows[2]], sample_holdings)

        assert len(recs) == 1
        rec = recs[0]
        assert rec.score == 0.0
        assert rec.sizing_band == "SMALL"
        assert rec.direction == "POS"
        assert rec.matched_factors == []

    def test_run_selects_longs_then_shorts(self, branches, node_shocks, sample_universe_rows, sample_holdings):
        engine = ExpressionRecommendationEngine(horizon_months=24)
        recs = engine.run(branches, node_shocks, sample_universe_rows, sample_holdings)

        assert [r.symbol for r in recs] == ["GRID", "FOOD", "SMLT"]
        grid, _, smelter = recs
        assert grid.action == "OVERWEIGHT"
        assert grid.portfolio_role == "core"
        assert grid.sizing_band == "LARGE"
        assert grid.max_position_pct == pytest.approx(0.05)
        assert grid.catalyst_window == "12-36 months"
        assert grid.actionable is True
        assert smelter.direction == "NEG"
        assert smelter.action == "UNDERWEIGHT"
        assert smelter.portfolio_role == "hedge"
        assert smelter.score == pytest.approx(1.15 * (-0.08 * 0.7 - 0.08 * 0.5))

    def test_pick_limits(self, branches, node_shocks, sample_universe_rows, sample_holdings):
        engine = ExpressionRecommendationEngine(horizon_months=24, long_picks=1, short_picks=0)
        recs = engine.run(branches, node_shocks, sample_universe_rows, sample_holdings)
        assert [r.symbol for r in recs] == ["GRID"]

    def test_ticker_alone_does_not_mark_expressed(self, branches, node_shocks, sample_universe_rows, make_holding):
        """Holding key is "grid grid position", so a bare GRID row stays actionable."""
        holdings = [make_holding("Grid position", weight=1.0, ticker="GRID")]
        engine = ExpressionRecommendationEngine(horizon_months=24)
        grid = engine.run(branches, node_shocks, sample_universe_rows, holdings)[0]
        assert grid.symbol == "GRID"
        assert grid.already_expressed is False
        assert grid.actionable is True

    def test_ticker_less_holding_matches_symbol(self, branches, node_shocks, sample_universe_rows, make_holding):
        holdings = [make_holding("grid", weight=1.0)]
        engine = ExpressionRecommendationEngine(horizon_months=24)
        grid = engine.run(branches, node_shocks, sample_universe_rows, holdings)[0]
        assert grid.already_expressed is True
        assert grid.actionable is False

    def test_holding_keys_join_ticker_and_name(self):
        holdings = [
            HoldingInput(name="Grid position", sensitivity="MED", ticker="GRID"),
            HoldingInput(name="Cash!", sensitivity="LOW"),
        ]
        assert ExpressionRecommendationEngine.holding_keys(holdings) == {"grid grid position", "cash"}

    def test_already_expressed_by_name(self, branches, node_shocks, sample_universe_rows, make_holding):
        holdings = [make_holding("Grid Equipment Co.", weight=1.0)]
        engine = ExpressionRecommendationEngine(horizon_months=24)
        grid = engine.run(branches, node_shocks, sample_universe_rows, holdings)[0]
        assert grid.already_expressed is True

    def test_no_free_capital_not_actionable(self, branches, node_shocks, sample_universe_rows, make_holding):
        """Locked-only portfolio: nothing actionable, caps fall back to the band cap."""
        holdings = [make_holding("Pension", weight=1.0, constraint="LOCKED")]
        engine = ExpressionRecommendationEngine(horizon_months=24)
        recs = engine.run(branches, node_shocks, sample_universe_rows, holdings)
        assert all(not r.actionable for r in recs)
        assert recs[0].max_position_pct == pytest.approx(0.05)

    def test_free_weight_caps_position(self, branches, node_shocks, sample_universe_rows, make_holding):
        """20% free capital caps positions at 1% of the portfolio."""
        holdings = [
            make_holding("Cash", weight=0.2, constraint="FREE"),
            make_holding("Pension", weight=0.8, constraint="LOCKED"),
        ]
        engine = ExpressionRecommendationEngine(horizon_months=24)
        grid = engine.run(branches, node_shocks, sample_universe_rows, holdings)[0]
        assert grid.max_position_pct == pytest.approx(0.01)
