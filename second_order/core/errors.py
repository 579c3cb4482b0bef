"""Error taxonomy for the analysis pipeline.

- InputValidationError: malformed request, surfaced immediately, never persisted.
- ReasoningContractError: reasoning output broke its contract; retried once.
- PortfolioRealityError: holdings fail reality checks; blocks the reasoning call.
- DerivationError: deterministic stage could not derive a result; terminal.
"""
from typing import Dict, Optional


class SecondOrderError(Exception):
    """Base class for all pipeline errors."""


class InputValidationError(SecondOrderError, ValueError):
    """Request shape or value range is invalid."""


class ReasoningContractError(SecondOrderError, ValueError):
    """Structured reasoning output violated its schema or an output invariant.

    `rule` restates the violated rule and `observed` carries the counts seen
    in the offending output, both used to build the corrective retry hint.
    """

    def __init__(self, message: str, rule: Optional[str] = None, observed: Optional[Dict[str, int]] = None):
        super().__init__(message)
        self.rule = rule or message
        self.observed = dict(observed or {})


class PortfolioRealityError(SecondOrderError, ValueError):
    """Holdings failed portfolio reality validation."""


class DerivationError(SecondOrderError, ValueError):
    """A deterministic derivation stage could not produce a result."""


class UniverseParseError(SecondOrderError, ValueError):
    """Universe CSV could not be parsed into any usable rows."""


class HoldingsParseError(SecondOrderError, ValueError):
    """Holdings CSV could not be parsed into any holdings."""


class RunStoreError(SecondOrderError):
    """A run or audit record could not be committed."""
