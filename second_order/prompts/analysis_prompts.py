"""
Second-order analysis prompts used by the reasoning orchestrator.
"""

# --- SYSTEM CONTEXT - Macro Systems Framing ---
MACRO_SYSTEMS_SYSTEM_PROMPT = (
    "You are a macro systems thinker focused on portfolio stress testing."
    " Trace concrete causal mechanisms, reason probabilistically, and avoid generic commentary."
    " Be professional and concise."
)


# --- CAUSAL MAP PROMPT ---
SECOND_ORDER_ANALYSIS_PROMPT = """Given a structural change, generate a concrete causal map and the
impact on each portfolio holding.

Rules:
- Be specific and mechanism-driven.
- Keep exposure_type concise (<= {max_exposure_type} chars) and mechanism concise (<= {max_mechanism} chars).
- Avoid repeating the same idea across layers.
- Keep a coherent first -> second -> third -> fourth order chain.
- Provide at least 2 first-order and 2 second-order effects.
- Provide exactly one holding mapping per unique holding name (even if the same name appears multiple times).
- Use confidence levels LOW/MED/HIGH.
- If any second, third or fourth-order effects are present, include at least one asset
  recommendation tied to one of those layers (source_layer SECOND, THIRD or FOURTH).

Structural shift: {statement}
Probability: {probability}
Horizon months: {horizon_months}
Holdings:
{holdings_text}

Return output that exactly matches the required schema."""


HOLDING_LINE_TEMPLATE = "- {name} ({ticker}), sensitivity={sensitivity}, constraint={constraint}, tags={tags}"


# --- CORRECTIVE RETRY ---
RETRY_HINT_TEMPLATE = """Your previous response failed validation: {error}
Violated rule: {rule}
Observed counts: {observed}
Return corrected output with at least 2 first-order and 2 second-order effects, each with a valid
confidence level and distinct entries, exactly one mapping per holding, and, if SECOND/THIRD/FOURTH
effects are present, at least one asset recommendation tied to those layers."""
