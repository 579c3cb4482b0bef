"""
Runtime configuration read from the environment (and a local .env file).

Sub-configs are plain dataclasses that pull overrides in __post_init__ and
check themselves in validate(). AppConfig holds the process-wide instances.
"""
import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Iterable, Optional

from dotenv import load_dotenv

load_dotenv()


class EnvConfig:
    """Environment lookup with alias names and type casting.

    Usage: EnvConfig.get('CLAUDE_TIMEOUT_SECONDS', cast=float)
    """

    @staticmethod
    def get(name: str, default: Any = None, cast: Optional[Callable] = None, aliases: Optional[Iterable[str]] = None):
        for key in [name, *(aliases or ())]:
            raw = os.getenv(key)
            if raw is None:
                continue
            if cast is None:
                return raw
            try:
                return cast(raw)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Environment variable {key}={raw!r} could not be read: {exc}") from exc
        return default


@dataclass
class BaseConfig:
    """Shared env access for config dataclasses; subclasses override validate()."""

    # (field name, env var, cast) applied by _apply_overrides
    ENV_OVERRIDES = ()

    @classmethod
    def _env(cls, name: str, default: Any = None, cast: Optional[Callable] = None, aliases: Optional[Iterable[str]] = None):
        return EnvConfig.get(name, default=default, cast=cast, aliases=aliases)

    def _apply_overrides(self) -> None:
        for attr, env_name, cast in self.ENV_OVERRIDES:
            value = self._env(env_name, cast=cast)
            if value is not None:
                setattr(self, attr, value)

    def validate(self, required: bool = True) -> None:
        return None

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ClaudeConfig(BaseConfig):
    """Anthropic client settings for the structured reasoning call."""
    api_key: Optional[str] = None
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 6000
    temperature: float = 0.2
    timeout_seconds: float = 120.0

    ENV_OVERRIDES = (
        ("model", "CLAUDE_MODEL", str),
        ("max_tokens", "CLAUDE_MAX_TOKENS", int),
        ("temperature", "CLAUDE_TEMPERATURE", float),
        ("timeout_seconds", "CLAUDE_TIMEOUT_SECONDS", float),
    )

    def __post_init__(self):
        if not self.api_key:
            self.api_key = self._env("ANTHROPIC_API_KEY", aliases=["CLAUDE_API_KEY"])
        self._apply_overrides()

    def validate(self, required: bool = True) -> None:
        if required and not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY is missing (set it in the environment or .env)")
        if self.max_tokens < 100:
            raise ValueError(f"CLAUDE_MAX_TOKENS must be at least 100, got {self.max_tokens}")
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"CLAUDE_TEMPERATURE must be within [0, 1], got {self.temperature}")
        if self.timeout_seconds <= 0:
            raise ValueError(f"CLAUDE_TIMEOUT_SECONDS must be positive, got {self.timeout_seconds}")

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data["api_key"] = "***" if self.api_key else None
        return data


@dataclass
class AnalysisConfig(BaseConfig):
    """Limits and sizes for the deterministic analysis stages."""
    prompt_version: str = "v1"
    max_holdings: int = 100
    max_indicators: int = 5
    shocks_per_layer: int = 3
    long_picks: int = 4
    short_picks: int = 3

    ENV_OVERRIDES = (
        ("prompt_version", "ANALYSIS_PROMPT_VERSION", str),
        ("max_holdings", "ANALYSIS_MAX_HOLDINGS", int),
        ("max_indicators", "ANALYSIS_MAX_INDICATORS", int),
    )

    def __post_init__(self):
        self._apply_overrides()

    def validate(self, required: bool = True) -> None:
        if self.max_holdings < 1:
            raise ValueError(f"ANALYSIS_MAX_HOLDINGS must be at least 1, got {self.max_holdings}")
        negative = [f.name for f in fields(self) if isinstance(getattr(self, f.name), int) and getattr(self, f.name) < 0]
        if negative:
            raise ValueError(f"Analysis limits cannot be negative: {', '.join(negative)}")


class AppConfig:
    """Process-wide configuration.

    `AppConfig.claude` and `AppConfig.analysis` are read at import time;
    `AppConfig.from_env()` re-reads the environment and validates.
    """

    claude: ClaudeConfig = ClaudeConfig()
    analysis: AnalysisConfig = AnalysisConfig()

    SECTIONS = {"claude": ClaudeConfig, "analysis": AnalysisConfig}

    def __init__(self):
        self.claude = ClaudeConfig()
        self.analysis = AnalysisConfig()

    def validate_all(self, strict: bool = False) -> None:
        self.claude.validate(required=strict)
        self.analysis.validate()

    @classmethod
    def check_availability(cls) -> Dict[str, Dict[str, Any]]:
        """Per-section {'available': bool, 'reason': str or None} from a fresh env read."""
        report: Dict[str, Dict[str, Any]] = {}
        for section, config_cls in cls.SECTIONS.items():
            try:
                config_cls().validate(required=True)
            except ValueError as e:
                report[section] = {"available": False, "reason": str(e)}
            else:
                report[section] = {"available": True, "reason": None}
        return report

    @classmethod
    def from_env(cls, strict: bool = False) -> "AppConfig":
        config = cls()
        config.validate_all(strict=strict)
        return config
