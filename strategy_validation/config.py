"""
Validation configuration.

Configuration is loaded from YAML (config/settings.yaml) with ${ENV}
expansion. Missing files fall back to defaults rather than failing, so a
bare checkout can still run a validation.
"""

from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Optional
import os
import re
import structlog

import yaml

from strategy_validation.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


VALID_METHODS = ("walk_forward", "k_fold", "combinatorial_purged", "rolling", "anchored")
VALID_MONTE_CARLO_METHODS = ("shuffle", "sample_with_replacement", "block_bootstrap")

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


@dataclass(frozen=True)
class OutOfSampleConfig:
    """
    Out-of-sample analysis settings.

    Period fields (step_size, min_train_days, embargo_period, purge_period)
    are in days and converted to bars from the candle frequency.
    """
    method: str = "walk_forward"
    train_ratio: float = 0.7
    test_ratio: float = 0.3
    num_folds: int = 5
    embargo_period: float = 0.0
    purge_period: float = 0.0
    step_size: float = 30.0
    min_train_days: float = 180.0

    # Execution
    max_workers: int = 1
    detect_regimes: bool = True

    def __post_init__(self):
        if self.method not in VALID_METHODS:
            raise ConfigurationError(
                f"Unknown method '{self.method}', expected one of {VALID_METHODS}"
            )
        for name in ("train_ratio", "test_ratio"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ConfigurationError(f"{name} must be in (0, 1], got {value}")
        if self.method == "walk_forward" and self.train_ratio + self.test_ratio > 1 + 1e-9:
            raise ConfigurationError(
                f"train_ratio + test_ratio must be <= 1 for walk_forward, "
                f"got {self.train_ratio} + {self.test_ratio}"
            )
        if self.num_folds < 2:
            raise ConfigurationError(f"num_folds must be >= 2, got {self.num_folds}")
        for name in ("embargo_period", "purge_period", "min_train_days"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")
        if self.step_size <= 0:
            raise ConfigurationError(f"step_size must be > 0, got {self.step_size}")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "OutOfSampleConfig":
        return _build(cls, data)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MonteCarloConfig:
    """Monte Carlo simulation settings."""
    num_runs: int = 1000
    method: str = "shuffle"
    confidence_level: float = 0.95
    block_size: int = 20  # block_bootstrap only
    seed: Optional[int] = None
    max_workers: int = 1

    def __post_init__(self):
        if self.method not in VALID_MONTE_CARLO_METHODS:
            raise ConfigurationError(
                f"Unknown Monte Carlo method '{self.method}', "
                f"expected one of {VALID_MONTE_CARLO_METHODS}"
            )
        if self.num_runs < 0:
            raise ConfigurationError(f"num_runs must be >= 0, got {self.num_runs}")
        if not 0 < self.confidence_level < 1:
            raise ConfigurationError(
                f"confidence_level must be in (0, 1), got {self.confidence_level}"
            )
        if self.block_size < 1:
            raise ConfigurationError(f"block_size must be >= 1, got {self.block_size}")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "MonteCarloConfig":
        return _build(cls, data)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RobustnessConfig:
    """Pass/fail thresholds for the robustness battery."""
    min_consistency: float = 0.6
    min_correlation: float = 0.3
    max_sensitivity_cv: float = 0.5
    min_profitable_regime_ratio: float = 0.5
    min_folds: int = 5
    min_trades_per_fold: int = 30
    max_overfit_probability: float = 0.3
    max_degradation: float = 50.0
    position_size_variations: tuple[float, ...] = (-0.2, -0.1, 0.0, 0.1, 0.2)

    def __post_init__(self):
        if not self.position_size_variations:
            raise ConfigurationError("position_size_variations cannot be empty")
        if any(v <= -1 for v in self.position_size_variations):
            raise ConfigurationError("position size variations must be > -100%")
        if self.min_folds < 1 or self.min_trades_per_fold < 1:
            raise ConfigurationError("min_folds and min_trades_per_fold must be >= 1")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RobustnessConfig":
        data = dict(data or {})
        if "position_size_variations" in data:
            data["position_size_variations"] = tuple(
                float(v) for v in data["position_size_variations"]
            )
        return _build(cls, data)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ValidationSettings:
    """All configuration sections."""
    out_of_sample: OutOfSampleConfig
    monte_carlo: MonteCarloConfig
    robustness: RobustnessConfig


def load_config(path: str = "config/settings.yaml") -> ValidationSettings:
    """
    Load validation settings from YAML.

    Expected sections: out_of_sample, monte_carlo, robustness. Unknown
    keys are rejected so typos do not silently fall back to defaults.
    """
    config_path = Path(path)

    if not config_path.exists():
        logger.warning("config_not_found_using_defaults", path=path)
        raw: dict = {}
    else:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        logger.info("config_loaded", path=path)

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    raw = _expand_env_vars(raw)

    return ValidationSettings(
        out_of_sample=OutOfSampleConfig.from_dict(raw.get("out_of_sample")),
        monte_carlo=MonteCarloConfig.from_dict(raw.get("monte_carlo")),
        robustness=RobustnessConfig.from_dict(raw.get("robustness")),
    )


def _expand_env_vars(value: Any) -> Any:
    """Expand ${VAR} references in config values."""
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, str) and "${" in value:
        return _ENV_PATTERN.sub(_replace_env, value)
    return value


def _replace_env(match: re.Match) -> str:
    """${VAR} or ${VAR:-default}; unset without default stays literal."""
    env_var, default = match.group(1), match.group(2)
    if env_var in os.environ:
        return os.environ[env_var]
    return default if default is not None else match.group(0)


def _build(cls, data: Optional[dict]):
    """Instantiate a config dataclass, coercing scalar strings from env expansion."""
    data = data or {}
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}"
        )

    kwargs = {}
    for name, value in data.items():
        default = known[name].default
        if isinstance(value, str) and default is not None and not isinstance(default, str):
            value = _coerce(name, value, default)
        kwargs[name] = value

    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigurationError(str(e)) from e


def _coerce(name: str, value: str, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            return value.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return value
