"""Weight model: effective artifact importance and the periodic decay pass.

effective = base_weight x recency_boost x frequency_boost x importance_flag

    recency_boost   = max(0.1, 1 - days_since_access x decay_rate)
    frequency_boost = log10(access_count + 1) + 1
    importance_flag = 1.5 for core artifacts, else 1.0

Core artifacts never rank below ``min_core_weight``: the effective weight is
clamped, and the decay pass never lowers a core base weight below it.
"""

from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass, field

from vigil.config import DecayConfig
from vigil.manifest_types import ManifestConfig, ManifestState, TrackedArtifact

logger = logging.getLogger(__name__)

RECENCY_FLOOR = 0.1
CORE_MULTIPLIER = 1.5


def _as_date(now: datetime.datetime | datetime.date) -> datetime.date:
    if isinstance(now, datetime.datetime):
        return now.date()
    return now


def days_since_access(
    artifact: TrackedArtifact, now: datetime.datetime | datetime.date
) -> int:
    """Whole days between the artifact's last access and ``now`` (>= 0)."""
    return max(0, (_as_date(now) - artifact.last_access).days)


def recency_boost(
    artifact: TrackedArtifact, now: datetime.datetime | datetime.date
) -> float:
    days = days_since_access(artifact, now)
    return max(RECENCY_FLOOR, 1.0 - days * artifact.decay_rate)


def frequency_boost(artifact: TrackedArtifact) -> float:
    return math.log10(artifact.access_count + 1) + 1.0


def importance_flag(artifact: TrackedArtifact) -> float:
    return CORE_MULTIPLIER if artifact.type == "core" else 1.0


def effective_weight(
    artifact: TrackedArtifact,
    now: datetime.datetime | datetime.date,
    min_core_weight: float = 0.0,
) -> float:
    """Time- and usage-adjusted importance of an artifact.

    Args:
        artifact: The tracked artifact.
        now: Reference time.
        min_core_weight: Floor applied to core artifacts.

    Returns:
        Effective weight; for core artifacts at least ``min_core_weight``.
    """
    weight = (
        artifact.base_weight
        * recency_boost(artifact, now)
        * frequency_boost(artifact)
        * importance_flag(artifact)
    )
    if artifact.type == "core":
        return max(min_core_weight, weight)
    return weight


# ---------------------------------------------------------------------------
# Decay pass
# ---------------------------------------------------------------------------


@dataclass
class DecayChange:
    """One artifact's weight before and after a decay pass."""

    path: str
    old_weight: float
    new_weight: float
    days_since_access: int
    reason: str

    @property
    def delta(self) -> float:
        return self.new_weight - self.old_weight


@dataclass
class DecayReport:
    """Summary of a decay pass."""

    run_date: datetime.date
    skipped: bool = False
    dry_run: bool = False
    changes: list[DecayChange] = field(default_factory=list)
    unchanged: int = 0
    archival_candidates: list[str] = field(default_factory=list)

    @property
    def decayed(self) -> int:
        return sum(1 for c in self.changes if c.delta < 0)

    @property
    def raised(self) -> int:
        return sum(1 for c in self.changes if c.delta > 0)


def check_floors(manifest_config: ManifestConfig, decay_config: DecayConfig) -> None:
    """Verify the core floor sits strictly above every per-type floor.

    Raises:
        ValueError: If ``min_core_weight`` does not exceed all type floors.
    """
    highest = max(
        (v for k, v in decay_config.type_floors.items() if k != "core"),
        default=0.0,
    )
    if manifest_config.min_core_weight <= highest:
        raise ValueError(
            f"minCoreWeight {manifest_config.min_core_weight} must be above "
            f"every per-type floor (highest is {highest})"
        )


def weight_floor(
    artifact: TrackedArtifact,
    manifest_config: ManifestConfig,
    decay_config: DecayConfig,
) -> float:
    """Lowest base weight the decay pass may leave on this artifact."""
    if artifact.type == "core":
        floor = manifest_config.min_core_weight
    else:
        floors = decay_config.type_floors
        floor = floors.get(artifact.type, floors.get("default", 0.0))
    structural = decay_config.structural_floors.get(artifact.path)
    if structural is not None:
        floor = max(floor, structural)
    return floor


def decay_artifact(
    artifact: TrackedArtifact,
    today: datetime.date,
    manifest_config: ManifestConfig,
    decay_config: DecayConfig,
) -> tuple[float, str]:
    """Compute the decayed base weight of one artifact.

    ``weight -= days x weight_decay_per_day x decay_rate``, halved for
    frequently accessed artifacts, then clamped to the artifact's floor.

    Returns:
        (new_weight, reason) tuple.
    """
    days = days_since_access(artifact, today)
    floor = weight_floor(artifact, manifest_config, decay_config)
    weight = artifact.base_weight

    if days <= decay_config.grace_period_days:
        reason = "touched"
    elif artifact.decay_rate == 0:
        reason = "no-decay (rate=0)"
    else:
        per_day = manifest_config.weight_decay_per_day * artifact.decay_rate
        reason = ""
        if artifact.access_count >= decay_config.frequency_shield_threshold:
            per_day *= decay_config.frequency_shield_factor
            reason = "freq-shielded "
        weight = round(weight - days * per_day, 4)
        reason += f"linear-decay ({days}d x {per_day:.4f})"

    if weight < floor:
        weight = floor
        reason += f" [floor: {floor}]"
    return weight, reason


def run_decay(
    state: ManifestState,
    today: datetime.date,
    decay_config: DecayConfig,
    *,
    force: bool = False,
    dry_run: bool = False,
) -> DecayReport:
    """Apply one decay pass to every tracked artifact, in place.

    Runs at most once per day (``last_decay_run``) unless ``force`` is set.
    With ``dry_run`` the report is built but no weight is changed.

    Raises:
        ValueError: If the configured floors break the core-floor invariant.
    """
    check_floors(state.config, decay_config)
    if state.last_decay_run == today and not force:
        logger.info("Decay already ran on %s, skipping", today)
        return DecayReport(run_date=today, skipped=True, dry_run=dry_run)

    report = DecayReport(run_date=today, dry_run=dry_run)
    for path, artifact in sorted(state.artifacts.items()):
        new_weight, reason = decay_artifact(
            artifact, today, state.config, decay_config
        )
        if abs(new_weight - artifact.base_weight) > 1e-4:
            report.changes.append(
                DecayChange(
                    path=path,
                    old_weight=artifact.base_weight,
                    new_weight=new_weight,
                    days_since_access=days_since_access(artifact, today),
                    reason=reason,
                )
            )
            if not dry_run:
                artifact.base_weight = new_weight
        else:
            report.unchanged += 1

        if artifact.type != "core" and new_weight <= decay_config.archival_threshold:
            report.archival_candidates.append(path)

    if not dry_run:
        state.last_decay_run = today
    logger.info(
        "Decay pass %s: %d decayed, %d raised, %d unchanged",
        today,
        report.decayed,
        report.raised,
        report.unchanged,
    )
    return report
