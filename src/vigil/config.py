"""Configuration loader for the vigil scheduler.

Reads ops/vigil.yaml and provides typed access to the tuning knobs of the
scorer, the category rotation guard, the decay pass, and the task generator.
Pure Python -- no I/O beyond initial file read.

The three document-level settings (max boot files, global decay per day,
minimum core weight) are not here: they live in the persisted state document.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

CONFIG_REL = "ops/vigil.yaml"


class ConfigError(Exception):
    """Raised when ops/vigil.yaml holds values the scheduler cannot use."""


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the five priority signals. Must sum to 1.0."""

    urgency: float = 0.25
    impact: float = 0.35
    dependency: float = 0.15
    skip_decay: float = 0.15
    blocker: float = 0.10

    @property
    def total(self) -> float:
        return (
            self.urgency
            + self.impact
            + self.dependency
            + self.skip_decay
            + self.blocker
        )


@dataclass(frozen=True)
class UrgencyConfig:
    """Sigmoid shape for age-based urgency."""

    midpoint_hours: float = 96.0
    steepness: float = 0.05


@dataclass(frozen=True)
class RotationConfig:
    """Category rotation (anti-starvation) settings.

    When the trailing run of session-history entries sharing one category
    reaches ``streak_length``, candidates of that category have their score
    multiplied by ``1 - streak_penalty``.
    """

    enabled: bool = True
    streak_length: int = 3
    streak_penalty: float = 0.5


@dataclass(frozen=True)
class RepetitionConfig:
    """Anti-repetition lookback over session history."""

    lookback_days: int = 7


@dataclass(frozen=True)
class StalenessConfig:
    """Rules for the all-stale abandon directive."""

    max_age_hours: float = 168.0
    min_skip_count: int = 5
    categories: tuple[str, ...] = ("maintenance", "nice-to-have", "research")


@dataclass(frozen=True)
class GeneratorConfig:
    """Thresholds for the intelligent task generator."""

    required_paths: tuple[str, ...] = (
        "MEMORY.md",
        "memory/index.md",
        "memory/daily",
    )
    memory_root: str = "memory"
    stale_after_days: int = 3
    stale_count_threshold: int = 2
    burst_window_hours: int = 24
    burst_file_threshold: int = 5
    consolidation_cooldown_hours: int = 4
    auto_generated_patterns: tuple[str, ...] = (
        r"(^|/)sessions/",
        r"manifest\.json$",
        r"benchmark-history\.json$",
    )


@dataclass(frozen=True)
class DecayConfig:
    """Decay-pass settings that are not stored in the state document."""

    grace_period_days: int = 0
    frequency_shield_threshold: int = 10
    frequency_shield_factor: float = 0.5
    archival_threshold: float = 0.08
    type_floors: dict[str, float] = field(
        default_factory=lambda: {
            "people": 0.15,
            "digest": 0.10,
            "topic": 0.08,
            "recent": 0.05,
            "default": 0.05,
        }
    )
    structural_floors: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class PathsConfig:
    """Workspace-relative locations of the files vigil owns."""

    state_file: str = "ops/vigil/state.json"
    graveyard: str = "ops/vigil/graveyard.jsonl"
    audit_log: str = "ops/vigil/audit.jsonl"


@dataclass(frozen=True)
class VigilConfig:
    """Top-level scheduler configuration."""

    weights: ScoringWeights = field(default_factory=ScoringWeights)
    urgency: UrgencyConfig = field(default_factory=UrgencyConfig)
    rotation: RotationConfig = field(default_factory=RotationConfig)
    repetition: RepetitionConfig = field(default_factory=RepetitionConfig)
    staleness: StalenessConfig = field(default_factory=StalenessConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    decay: DecayConfig = field(default_factory=DecayConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)


def _build_sub(cls: type, data: dict[str, Any] | None) -> Any:
    """Build a frozen dataclass from a dict, ignoring unknown keys.

    Lists are converted to tuples so frozen instances stay hashable.
    """
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping for {cls.__name__}, got {data!r}")
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {}
    for k, v in data.items():
        if k not in valid:
            continue
        filtered[k] = tuple(v) if isinstance(v, list) else v
    return cls(**filtered)


def validate_config(config: VigilConfig) -> VigilConfig:
    """Check cross-field constraints. Returns the config unchanged.

    Raises:
        ConfigError: If scoring weights do not sum to 1.0, or the rotation
            penalty is outside [0, 1].
    """
    if not math.isclose(config.weights.total, 1.0, abs_tol=1e-6):
        raise ConfigError(
            f"Scoring weights must sum to 1.0, got {config.weights.total:.4f}"
        )
    if not 0.0 <= config.rotation.streak_penalty <= 1.0:
        raise ConfigError(
            f"rotation.streak_penalty must be in [0, 1], "
            f"got {config.rotation.streak_penalty}"
        )
    if config.rotation.streak_length < 1:
        raise ConfigError("rotation.streak_length must be at least 1")
    return config


def load_config(config_path: Path) -> VigilConfig:
    """Load scheduler configuration from a YAML file.

    A missing file yields the defaults; every section is optional.

    Args:
        config_path: Path to ops/vigil.yaml.

    Returns:
        Populated, validated VigilConfig.

    Raises:
        ConfigError: If a section has the wrong shape or fails validation.
        yaml.YAMLError: If YAML is malformed.
    """
    if not config_path.is_file():
        return VigilConfig()

    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return VigilConfig()

    decay_raw = raw.get("decay")
    if isinstance(decay_raw, dict):
        defaults = DecayConfig()
        floors = dict(defaults.type_floors)
        floors.update(decay_raw.get("type_floors") or {})
        scalar = {
            k: v
            for k, v in decay_raw.items()
            if k not in ("type_floors", "structural_floors")
        }
        decay = replace(
            _build_sub(DecayConfig, scalar),
            type_floors={k: float(v) for k, v in floors.items()},
            structural_floors={
                str(k): float(v)
                for k, v in (decay_raw.get("structural_floors") or {}).items()
            },
        )
    else:
        decay = DecayConfig()

    config = VigilConfig(
        weights=_build_sub(ScoringWeights, raw.get("weights")),
        urgency=_build_sub(UrgencyConfig, raw.get("urgency")),
        rotation=_build_sub(RotationConfig, raw.get("rotation")),
        repetition=_build_sub(RepetitionConfig, raw.get("repetition")),
        staleness=_build_sub(StalenessConfig, raw.get("staleness")),
        generator=_build_sub(GeneratorConfig, raw.get("generator")),
        decay=decay,
        paths=_build_sub(PathsConfig, raw.get("paths")),
    )
    return validate_config(config)
