"""Second-Order Analysis Structured Output Schemas."""

from second_order.core.types import (
    IMPACT_DIRECTIONS, CONFIDENCE_LEVELS, RECOMMENDATION_SOURCE_LAYERS, ASSET_ACTIONS,
)

# Declared max lengths for every free-text field; the sanitizer truncates to these
EFFECT_TEXT_LIMITS = {"description": 500}
ASSUMPTION_TEXT_LIMITS = {"assumption": 300, "breakpoint_signal": 300}
INDICATOR_TEXT_LIMITS = {"name": 120, "rationale": 300}
HOLDING_MAPPING_TEXT_LIMITS = {"holding_name": 120, "exposure_type": 220, "mechanism": 900}
ASSET_RECOMMENDATION_TEXT_LIMITS = {
    "asset_name": 120,
    "ticker": 20,
    "category": 80,
    "rationale": 500,
    "mechanism": 900,
    "time_horizon": 60,
}

_EFFECTS_ARRAY = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "description": {
                "type": "string",
                "description": "Specific, mechanism-driven effect statement"
            },
            "impact_direction": {
                "type": "string",
                "enum": list(IMPACT_DIRECTIONS)
            },
            "confidence": {
                "type": "string",
                "enum": list(CONFIDENCE_LEVELS)
            }
        },
        "required": ["description", "impact_direction", "confidence"]
    }
}

SECOND_ORDER_ANALYSIS_SCHEMA = {
    "name": "second_order_analysis",
    "description": "Causal map of a structural shift with per-holding impacts and asset recommendations",
    "input_schema": {
        "type": "object",
        "properties": {
            "effects_by_layer": {
                "type": "object",
                "description": "Effects grouped by causal order; first is most direct, fourth most lagged",
                "properties": {
                    "first": _EFFECTS_ARRAY,
                    "second": _EFFECTS_ARRAY,
                    "third": _EFFECTS_ARRAY,
                    "fourth": _EFFECTS_ARRAY
                },
                "required": ["first", "second", "third", "fourth"]
            },
            "assumptions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "assumption": {"type": "string"},
                        "breakpoint_signal": {
                            "type": "string",
                            "description": "Observable signal showing the assumption has failed"
                        }
                    },
                    "required": ["assumption", "breakpoint_signal"]
                }
            },
            "leading_indicators": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "rationale": {"type": "string"}
                    },
                    "required": ["name", "rationale"]
                }
            },
            "holding_mappings": {
                "type": "array",
                "description": "Exactly one entry per unique holding name",
                "items": {
                    "type": "object",
                    "properties": {
                        "holding_name": {"type": "string"},
                        "exposure_type": {"type": "string"},
                        "net_impact": {"type": "string", "enum": list(IMPACT_DIRECTIONS)},
                        "mechanism": {"type": "string"},
                        "confidence": {"type": "string", "enum": list(CONFIDENCE_LEVELS)}
                    },
                    "required": ["holding_name", "exposure_type", "net_impact", "mechanism", "confidence"]
                }
            },
            "asset_recommendations": {
                "type": "array",
                "description": "Assets expressing second/third/fourth-order effects",
                "items": {
                    "type": "object",
                    "properties": {
                        "asset_name": {"type": "string"},
                        "ticker": {"type": "string"},
                        "category": {"type": "string"},
                        "source_layer": {"type": "string", "enum": list(RECOMMENDATION_SOURCE_LAYERS)},
                        "direction": {"type": "string", "enum": list(IMPACT_DIRECTIONS)},
                        "action": {"type": "string", "enum": list(ASSET_ACTIONS)},
                        "rationale": {"type": "string"},
                        "confidence": {"type": "string", "enum": list(CONFIDENCE_LEVELS)},
                        "mechanism": {"type": "string"},
                        "time_horizon": {"type": "string"}
                    },
                    "required": [
                        "asset_name", "category", "source_layer", "direction",
                        "action", "rationale", "confidence", "mechanism"
                    ]
                }
            }
        },
        "required": [
            "effects_by_layer", "assumptions", "leading_indicators",
            "holding_mappings", "asset_recommendations"
        ]
    }
}
