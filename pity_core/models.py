"""Dataclasses shared across the engine, simulator, host and UI."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .rules import CHARACTER_RULES, DEFAULT_BANNER_RULES, BannerRules


@dataclass(frozen=True)
class PityState:
    """Pity counters for one banner, threaded through successive pulls."""

    pity: int = 0
    guaranteed: bool = False
    radiant_streak: int = 0
    fate_points: int = 0


@dataclass(frozen=True)
class PullOutcome:
    """Result of a single pull together with the state that follows it."""

    got_5star: bool
    was_featured: bool
    new_pity: int
    new_guaranteed: bool
    new_radiant_streak: int
    new_fate_points: int = 0
    triggered_radiance: bool = False

    @property
    def next_state(self) -> PityState:
        """Return the pity state to feed into the next pull."""

        return PityState(
            pity=self.new_pity,
            guaranteed=self.new_guaranteed,
            radiant_streak=self.new_radiant_streak,
            fate_points=self.new_fate_points,
        )


@dataclass(frozen=True)
class SimulationTarget:
    """A banner the player plans to pull on.

    ``priority`` 1 marks a must-have target; ``max_pull_budget`` caps the pulls
    spent on this target (``None`` means "everything available").
    """

    character_key: str
    expected_start_date: str
    priority: int = 3
    max_pull_budget: Optional[int] = None
    banner_type: str = "character"
    copies_needed: int = 1
    expected_end_date: Optional[str] = None
    target_id: Optional[str] = None


@dataclass(frozen=True)
class TargetPityOverride:
    """Per-target pity overrides; ``None`` inherits the running banner state."""

    pity: Optional[int] = None
    guaranteed: Optional[bool] = None
    radiant_streak: Optional[int] = None
    fate_points: Optional[int] = None

    def apply(self, state: PityState) -> PityState:
        """Return ``state`` with every non-``None`` override applied."""

        return PityState(
            pity=state.pity if self.pity is None else self.pity,
            guaranteed=state.guaranteed if self.guaranteed is None else self.guaranteed,
            radiant_streak=(
                state.radiant_streak if self.radiant_streak is None else self.radiant_streak
            ),
            fate_points=state.fate_points if self.fate_points is None else self.fate_points,
        )


@dataclass(frozen=True)
class SimulationConfig:
    """Monte Carlo settings."""

    iterations: int
    seed: Optional[int] = None
    progress_step: float = 0.02
    workers: int = 1
    timeout: Optional[float] = None


@dataclass(frozen=True)
class SimulationInput:
    """Everything a simulation run needs.

    The starting snapshot (pity, guarantee, radiance, fate points) belongs to the
    banner described by ``rules``; other banners start from zero and use
    ``rules_table``.
    """

    targets: tuple[SimulationTarget, ...]
    config: SimulationConfig
    starting_pity: int = 0
    starting_guaranteed: bool = False
    starting_radiant_streak: int = 0
    starting_pulls: int = 0
    income_per_day: float = 0.0
    rules: BannerRules = CHARACTER_RULES
    starting_fate_points: int = 0
    per_target_states: Optional[tuple[Optional[TargetPityOverride], ...]] = None
    rules_table: dict[str, BannerRules] = field(
        default_factory=lambda: dict(DEFAULT_BANNER_RULES)
    )
    as_of: Optional[datetime] = None

    @property
    def starting_state(self) -> PityState:
        """Return the caller-supplied pity snapshot."""

        return PityState(
            pity=self.starting_pity,
            guaranteed=self.starting_guaranteed,
            radiant_streak=self.starting_radiant_streak,
            fate_points=self.starting_fate_points,
        )

    def rules_for(self, banner_type: str) -> BannerRules:
        """Return the rules used for targets on ``banner_type``."""

        if banner_type == self.rules.banner_type:
            return self.rules
        return self.rules_table[banner_type]


@dataclass(frozen=True)
class ConstellationResult:
    """Success statistics for reaching a given copy level of one target."""

    label: str
    probability: float
    average_pulls_used: float
    median_pulls_used: int


@dataclass(frozen=True)
class TargetResult:
    """Aggregated Monte Carlo metrics for one target."""

    character_key: str
    banner_type: str
    probability: float
    average_pulls_used: float
    median_pulls_used: int
    constellations: tuple[ConstellationResult, ...] = ()


@dataclass(frozen=True)
class TimelinePoint:
    """Projected pulls available when a target banner opens."""

    date: str
    event: str
    projected_pulls: int


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of one simulation run; never mutated after creation."""

    per_character: tuple[TargetResult, ...]
    all_must_haves_probability: float
    pull_timeline: tuple[TimelinePoint, ...]
    nothing_probability: float = 0.0
    iterations_completed: int = 0
    timed_out: bool = False
