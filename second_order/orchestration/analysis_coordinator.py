import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional, Tuple, Union

from second_order.core.config import AppConfig
from second_order.core.errors import DerivationError, PortfolioRealityError
from second_order.core.types import (
    BIAS_NEUTRAL,
    AnalyzeRequest, AnalysisResult, AnalysisFailure, BiasResult, ExposureContribution,
    HoldingInput, UniverseRow,
)
from second_order.calculators.bias_scorer import compute_portfolio_bias
from second_order.calculators.branch_shocks import normalize_branch_probabilities, build_node_shocks
from second_order.calculators.decision_summary import compute_branch_impacts, build_decision_summary
from second_order.calculators.expression_engine import ExpressionRecommendationEngine
from second_order.calculators.indicator_engine import derive_indicator_definitions, build_invalidation_items
from second_order.calculators.portfolio_validator import PortfolioRealityValidator, normalize_holding_weights
from second_order.services.run_store import InMemoryRunRepository, InMemoryRunStore, RunSnapshot, new_run_id
from second_order.shift_agents.reasoning_orchestrator import ReasoningOrchestrator

logger = logging.getLogger(__name__)


class AnalysisCoordinator:
    """
    Orchestrates one structural-shift analysis end to end.

    Pipeline stages:
    1. Refs: load saved scenario holdings and universe rows (concurrently)
    2. Reality: portfolio weight and capital checks; errors block the call
    3. Reasoning: validated causal map from the reasoning capability
    4. Derivations: bias, branches, node shocks, indicators, recommendations,
       decision summary, exposure contributions, invalidation items
    5. Persist: one all-or-nothing run snapshot

    Request validation errors surface to the caller untouched. Any failure in
    stages 1-5 is recorded as a neutral-bias audit snapshot and returned as
    an AnalysisFailure.
    """

    TOTAL_STAGES: int = 5
    MAX_WORKERS: int = 2

    def __init__(self, capability, repository=None, store=None, prompt_version: Optional[str] = None):
        """
        Args:
            capability: Object exposing invoke(prompt, schema, hint=None) -> dict
            repository: Read side with load_scenario(ref, user_id) / load_universe(ref, user_id)
            store: Write side with save_run(snapshot) / save_failure(snapshot)
            prompt_version: Overrides AppConfig.analysis.prompt_version
        """
        self.capability = capability
        self.repository = repository if repository is not None else InMemoryRunRepository()
        self.store = store if store is not None else InMemoryRunStore()
        self.prompt_version = prompt_version or AppConfig.analysis.prompt_version

    def _stage(self, index: int, message: str) -> None:
        logger.info("[%s/%s] %s", index, self.TOTAL_STAGES, message)

    def _capability_for(self, request: AnalyzeRequest):
        if request.model_name and hasattr(self.capability, "for_model"):
            return self.capability.for_model(request.model_name)
        return self.capability

    def analyze(self, raw_request: Any, user_id: Optional[str] = None) -> Union[AnalysisResult, AnalysisFailure]:
        """
        Run the full pipeline for a raw analyze payload.

        Raises:
            InputValidationError: If the payload is malformed (nothing is persisted)
        """
        request = AnalyzeRequest.from_dict(raw_request, max_holdings=AppConfig.analysis.max_holdings)
        request = request.with_holdings(normalize_holding_weights(request.holdings))
        run_id = new_run_id()
        orchestrator = ReasoningOrchestrator(self._capability_for(request), prompt_version=self.prompt_version)
        logger.info("Running analysis", extra={"run_id": run_id, "holdings": len(request.holdings), "user_id": user_id})

        try:
            return self._run(run_id, request, orchestrator, user_id)
        except Exception as e:
            logger.exception("Analysis failed", extra={"run_id": run_id})
            return self._record_failure(run_id, request, orchestrator, user_id, e)

    def _run(
        self,
        run_id: str,
        request: AnalyzeRequest,
        orchestrator: ReasoningOrchestrator,
        user_id: Optional[str],
    ) -> AnalysisResult:
        self._stage(1, "Loading saved scenario and universe...")
        scenario_holdings, universe_rows = self.load_refs(request, user_id)
        if scenario_holdings is not None:
            request = request.with_holdings(normalize_holding_weights(scenario_holdings))
            logger.info("Scenario holdings loaded", extra={"holdings": len(request.holdings)})

        self._stage(2, "Validating portfolio reality...")
        validation = PortfolioRealityValidator(request.allow_weight_override).run(request.holdings)
        if not validation.ok:
            raise PortfolioRealityError(" | ".join(validation.errors))

        self._stage(3, "Running reasoning orchestrator...")
        reasoning = orchestrator.run(request)
        output = reasoning.output

        self._stage(4, "Deriving bias, shocks and recommendations...")
        bias = compute_portfolio_bias(request, output)
        branches = normalize_branch_probabilities(request.branch_overrides)
        node_shocks = build_node_shocks(output, branches)
        indicators = derive_indicator_definitions(output)
        recommendations = []
        if universe_rows:
            engine = ExpressionRecommendationEngine(request.horizon_months)
            recommendations = engine.run(branches, node_shocks, universe_rows, request.holdings)
        branch_impacts = compute_branch_impacts(branches, bias.portfolio_bias)
        summary = build_decision_summary(branch_impacts, recommendations, indicators)

        result = AnalysisResult(
            run_id=run_id,
            bias=bias,
            analysis=output,
            portfolio_validation=validation,
            branches=branches,
            node_shocks=node_shocks,
            recommendations=recommendations,
            indicator_definitions=indicators,
            exposure_contributions=self.exposure_contributions(bias),
            invalidation_items=build_invalidation_items(output),
            decision_summary=summary,
            model_name=reasoning.model_name,
            prompt_version=reasoning.prompt_version,
        )
        logger.info(
            "Derivations complete",
            extra={"bias": bias.portfolio_bias, "label": bias.bias_label, "shocks": len(node_shocks),
                   "recommendations": len(recommendations)},
        )

        self._stage(5, "Persisting run...")
        self.store.save_run(RunSnapshot(
            run_id=run_id,
            statement=request.statement,
            probability=request.probability,
            horizon_months=request.horizon_months,
            model_name=reasoning.model_name,
            prompt_version=reasoning.prompt_version,
            computed_bias_score=bias.portfolio_bias,
            bias_label=bias.bias_label,
            payload={
                "holdings": [h.to_dict() for h in request.holdings],
                "result": result.to_dict(),
                "raw": reasoning.raw,
                "attempts": reasoning.attempts,
            },
            user_id=user_id,
        ))
        return result

    def load_refs(
        self,
        request: AnalyzeRequest,
        user_id: Optional[str],
    ) -> Tuple[Optional[List[HoldingInput]], List[UniverseRow]]:
        """
        Fetch referenced scenario holdings and universe rows.

        Both reads are independent and run concurrently when both refs are set.

        Raises:
            DerivationError: If a referenced record does not exist for this user
        """
        lookups: Dict[str, Tuple[Any, str, str]] = {}
        if request.scenario_ref:
            lookups["scenario"] = (self.repository.load_scenario, request.scenario_ref, "Portfolio scenario not found.")
        if request.universe_ref:
            lookups["universe"] = (self.repository.load_universe, request.universe_ref, "Selected universe version not found.")
        if not lookups:
            return None, []

        loaded: Dict[str, Any] = {}
        with ThreadPoolExecutor(max_workers=self.MAX_WORKERS) as executor:
            future_to_key = {
                executor.submit(loader, ref, user_id): key
                for key, (loader, ref, _) in lookups.items()
            }
            for future in as_completed(future_to_key):
                loaded[future_to_key[future]] = future.result()

        for key, (_, ref, missing_message) in lookups.items():
            if loaded.get(key) is None:
                raise DerivationError(missing_message)

        return loaded.get("scenario"), list(loaded.get("universe") or [])

    @staticmethod
    def exposure_contributions(bias: BiasResult) -> List[ExposureContribution]:
        """Per-holding contributions, most negative first."""
        return [
            ExposureContribution(
                holding_name=c.holding_name,
                score=c.score,
                weight=c.weight,
                direction="UPSIDE" if c.score >= 0 else "DOWNSIDE",
            )
            for c in sorted(bias.contributions, key=lambda c: c.score)
        ]

    def _record_failure(
        self,
        run_id: str,
        request: AnalyzeRequest,
        orchestrator: ReasoningOrchestrator,
        user_id: Optional[str],
        error: Exception,
    ) -> AnalysisFailure:
        message = str(error) or type(error).__name__
        self.store.save_failure(RunSnapshot(
            run_id=run_id,
            statement=request.statement,
            probability=request.probability,
            horizon_months=request.horizon_months,
            model_name=orchestrator.model_name,
            prompt_version=orchestrator.prompt_version,
            computed_bias_score=0.0,
            bias_label=BIAS_NEUTRAL,
            payload={"error": message},
            user_id=user_id,
        ))
        return AnalysisFailure(run_id=run_id, error=message)
