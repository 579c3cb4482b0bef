"""
Run a single end-to-end structural-shift analysis for a sample portfolio and
save the result payload to a JSON file.

This script calls the live reasoning capability (Anthropic). If the
environment is not configured (ANTHROPIC_API_KEY missing), the run is
recorded as a failed analysis and the failure payload is written instead.

Usage:
    python scripts/run_analysis_example.py [holdings.csv] [universe.csv]
"""
import os
import sys
import json
import logging
import textwrap

from second_order.core.config import AppConfig
from second_order.orchestration.analysis_coordinator import AnalysisCoordinator
from second_order.services.holdings_ingestion import parse_holdings_csv
from second_order.services.run_store import InMemoryRunRepository
from second_order.services.universe_ingestion import parse_universe_csv
from second_order.shift_agents.llm_helper import ClaudeReasoningCapability

OUT_DIR = ""
OUT_PATH = os.path.join(OUT_DIR, "second_order_run.json")

STATEMENT = textwrap.dedent('''
    Sustained AI data-centre build-out doubles US commercial electricity demand
    growth over the next three years.
''').strip()

DEFAULT_HOLDINGS = [
    {"name": "Global Equity Tracker", "ticker": "VWRL", "weight": 0.5, "sensitivity": "MED"},
    {"name": "UK Gilts 5-10y", "ticker": "IGLT", "weight": 0.3, "sensitivity": "LOW"},
    {"name": "Utilities ETF", "ticker": "XLU", "weight": 0.2, "sensitivity": "HIGH", "constraint": "FREE"},
]


def read_text(path):
    with open(path, "r", encoding="utf-8-sig") as f:
        return f.read()


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    for section, status in AppConfig.check_availability().items():
        if not status["available"]:
            print(f"Config section {section!r} unavailable: {status['reason']}")

    repository = InMemoryRunRepository()
    request = {
        "statement": STATEMENT,
        "probability": 0.6,
        "horizon_months": 24,
        "holdings": DEFAULT_HOLDINGS,
    }

    if len(sys.argv) > 1:
        holdings = parse_holdings_csv(read_text(sys.argv[1]))
        request["holdings"] = [h.to_dict() for h in holdings]
    if len(sys.argv) > 2:
        rows, warnings = parse_universe_csv(read_text(sys.argv[2]))
        for warning in warnings:
            print("Universe warning:", warning)
        repository.add_universe("example-universe", rows)
        request["universe_ref"] = "example-universe"

    print("Starting structural-shift analysis; this calls the reasoning model and may take a minute.")
    coordinator = AnalysisCoordinator(ClaudeReasoningCapability(), repository=repository)
    result = coordinator.analyze(request)

    with open(OUT_PATH, "w") as f:
        json.dump(result.to_dict(), f, indent=2)

    if not result.ok:
        print("Run failed:", result.error)
        print(f"Wrote failure payload to {OUT_PATH}")
        sys.exit(1)
    print(f"Bias: {result.bias.portfolio_bias:.3f} ({result.bias.bias_label})")
    print(f"Saved run output to {OUT_PATH}")


if __name__ == "__main__":
    main()
