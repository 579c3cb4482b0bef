"""Shared test fixtures for structural-shift analysis tests."""
import copy

import pytest

from second_order.core.types import (
    AnalyzeRequest, HoldingInput, UniverseRow,
)
from second_order.shift_agents.reasoning_orchestrator import validate_model_output


class StubCapability:
    """Reasoning capability returning queued responses; exceptions in the queue are raised."""

    def __init__(self, *responses, model_name="stub-model"):
        self.responses = list(responses)
        self.model_name = model_name
        self.calls = []

    def invoke(self, prompt, schema, hint=None):
        self.calls.append({"prompt": prompt, "schema": schema, "hint": hint})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)


@pytest.fixture
def sample_holdings_payload():
    """Two weighted holdings, 60/40."""
    return [
        {"name": "Alpha Fund", "ticker": "ALPH", "weight": 0.6, "sensitivity": "MED"},
        {"name": "Beta Trust", "ticker": "BETA", "weight": 0.4, "sensitivity": "HIGH"},
    ]


@pytest.fixture
def sample_request_payload(sample_holdings_payload):
    """Valid analyze payload."""
    return {
        "statement": "Grid electricity demand doubles as AI data centres scale",
        "probability": 0.6,
        "horizon_months": 24,
        "holdings": sample_holdings_payload,
    }


@pytest.fixture
def sample_request(sample_request_payload):
    return AnalyzeRequest.from_dict(sample_request_payload)


@pytest.fixture
def sample_holdings(sample_request):
    return sample_request.holdings


@pytest.fixture
def valid_output_dict():
    """Tool output satisfying every output invariant: 2 first, 2 second, one mapping per holding."""
    return {
        "effects_by_layer": {
            "first": [
                {"description": "Electricity demand rises", "impact_direction": "POS", "confidence": "HIGH"},
                {"description": "Power prices spike", "impact_direction": "NEG", "confidence": "MED"},
            ],
            "second": [
                {"description": "Utility capex expands", "impact_direction": "POS", "confidence": "MED"},
                {"description": "Industrial margins compress", "impact_direction": "NEG", "confidence": "LOW"},
            ],
            "third": [],
            "fourth": [],
        },
        "assumptions": [
            {"assumption": "Data centre build-out continues", "breakpoint_signal": "Hyperscaler capex guidance cut"},
            {"assumption": "Grid connections are approved", "breakpoint_signal": "Interconnection queue stalls"},
        ],
        "leading_indicators": [
            {"name": "Hyperscaler capex", "rationale": "Drives incremental load"},
            {"name": "Utility rate filings", "rationale": "Shows pass-through of costs"},
            {"name": "Transformer lead times", "rationale": "Reveals supply bottlenecks"},
        ],
        "holding_mappings": [
            {
                "holding_name": "Alpha Fund",
                "exposure_type": "Energy-intensive industrials",
                "net_impact": "NEG",
                "mechanism": "Higher power input costs squeeze margins.",
                "confidence": "HIGH",
            },
            {
                "holding_name": "Beta Trust",
                "exposure_type": "Regulated utilities",
                "net_impact": "POS",
                "mechanism": "Rate base growth from grid capex.",
                "confidence": "MED",
            },
        ],
        "asset_recommendations": [
            {
                "asset_name": "Grid equipment makers",
                "category": "Industrials",
                "source_layer": "SECOND",
                "direction": "POS",
                "action": "OVERWEIGHT",
                "rationale": "Transformer and switchgear demand outstrips supply.",
                "confidence": "MED",
                "mechanism": "Utility capex flows to equipment vendors.",
            },
        ],
    }


@pytest.fixture
def valid_output(valid_output_dict, sample_holdings):
    """Validated CausalAnalysis built from valid_output_dict."""
    return validate_model_output(valid_output_dict, sample_holdings)


@pytest.fixture
def stub_capability(valid_output_dict):
    return StubCapability(valid_output_dict)


@pytest.fixture
def sample_universe_rows():
    """Three instruments: one grid-exposed long, one power-cost victim, one unrelated."""
    return [
        UniverseRow(
            symbol="GRID",
            company_name="Grid Equipment Co",
            asset_type="EQUITY",
            liquidity_class="daily",
            exposure_vector={"electricity_demand": 1.0, "utility_capex": 0.8},
        ),
        UniverseRow(
            symbol="SMLT",
            company_name="Smelter Holdings",
            asset_type="EQUITY",
            liquidity_class="daily",
            exposure_vector={"power_prices": 1.0, "electricity_demand": -0.5},
        ),
        UniverseRow(
            symbol="FOOD",
            company_name="Staples ETF",
            asset_type="ETF",
            liquidity_class="daily",
            exposure_vector={"consumer_staples": 0.4},
        ),
    ]


@pytest.fixture
def make_holding():
    """Factory for HoldingInput with sensible defaults."""
    def _make(name="Holding", weight=None, sensitivity="MED", constraint="FREE", ticker=None):
        return HoldingInput(name=name, sensitivity=sensitivity, ticker=ticker, weight=weight, constraint=constraint)
    return _make


@pytest.fixture
def make_capability():
    """StubCapability class, for tests that queue their own responses."""
    return StubCapability
