"""Monte Carlo simulation of sequential banner targets under a pull budget."""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from .config import clamp_progress_step
from .engine import simulate_pull
from .errors import ConfigurationError, InputValidationError
from .models import (
    ConstellationResult,
    PityState,
    SimulationInput,
    SimulationResult,
    TargetPityOverride,
    TargetResult,
    TimelinePoint,
)
from .rules import BANNER_TYPES, BannerRules

_LOGGER = logging.getLogger(__name__)

ProgressFn = Callable[[float], None]

SECONDS_PER_DAY = 86_400.0


def parse_start_date(value: str) -> datetime:
    """Parse an ISO date or datetime string into an aware UTC datetime.

    Raises
    ------
    ValueError
        If ``value`` is not an ISO 8601 date/datetime.
    """

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def days_until(start: datetime, as_of: datetime) -> float:
    """Return the non-negative fractional number of days from ``as_of`` to ``start``."""

    return max(0.0, (start - as_of).total_seconds() / SECONDS_PER_DAY)


def lower_median(sample: Sequence[int]) -> int:
    """Return the lower-middle element of ``sample`` once sorted (0 when empty).

    Even-length samples never average the two middle values, so the result is
    always an observed pull count.
    """

    if len(sample) == 0:
        return 0
    ordered = np.sort(np.asarray(sample, dtype=np.int64))
    return int(ordered[(len(ordered) - 1) // 2])


def copy_label(banner_type: str, copy_level: int) -> str:
    """Return ``C0``.. labels for characters and ``R1``.. labels for weapons."""

    if banner_type == "weapon":
        return f"R{copy_level}"
    return f"C{copy_level - 1}"


@dataclass(frozen=True)
class PlannedTarget:
    """A target with its date parsed, rules resolved and income accrual computed."""

    character_key: str
    banner_type: str
    date: str
    rules: BannerRules
    priority: int
    max_pull_budget: Optional[int]
    copies_needed: int
    accrual: int
    override: Optional[TargetPityOverride] = None


@dataclass(frozen=True)
class SimulationPlan:
    """Immutable, picklable description of a run shared by every trial."""

    targets: tuple[PlannedTarget, ...]
    starting_states: dict[str, PityState]
    starting_pulls: int
    iterations: int
    seed: Optional[int]
    progress_step: float

    @property
    def chunk_size(self) -> int:
        """Trials between two progress reports."""

        return max(1, math.ceil(self.iterations * self.progress_step))


@dataclass
class TrialAggregate:
    """Raw per-trial samples from a contiguous range of trials.

    Aggregates from disjoint ranges can be merged in any order without changing
    the finalized result.
    """

    trials: int = 0
    all_must_successes: int = 0
    nothing_count: int = 0
    pulls_used: list[list[int]] = field(default_factory=list)
    copies: list[list[int]] = field(default_factory=list)

    @classmethod
    def empty(cls, target_count: int) -> TrialAggregate:
        return cls(
            pulls_used=[[] for _ in range(target_count)],
            copies=[[] for _ in range(target_count)],
        )

    def merge(self, other: TrialAggregate) -> TrialAggregate:
        """Fold ``other`` into this aggregate in place and return ``self``."""

        if len(other.pulls_used) != len(self.pulls_used):
            raise ValueError("Cannot merge aggregates built for different target lists")
        self.trials += other.trials
        self.all_must_successes += other.all_must_successes
        self.nothing_count += other.nothing_count
        for mine, theirs in zip(self.pulls_used, other.pulls_used):
            mine.extend(theirs)
        for mine, theirs in zip(self.copies, other.copies):
            mine.extend(theirs)
        return self


def _check_override(
    index: int, override: TargetPityOverride, rules: BannerRules, problems: list[str]
) -> None:
    for name in ("pity", "radiant_streak", "fate_points"):
        value = getattr(override, name)
        if value is not None and value < 0:
            problems.append(f"per_target_states[{index}].{name} must be non-negative")
    if override.pity is not None and override.pity >= rules.hard_pity:
        problems.append(
            f"per_target_states[{index}].pity must be below hard pity ({rules.hard_pity})"
        )


def validate_input(sim_input: SimulationInput) -> None:
    """Reject unusable requests before any trial runs.

    Raises
    ------
    ConfigurationError
        For invalid simulation settings or rules objects.
    InputValidationError
        For malformed targets or starting values; every problem is listed.
    """

    config = sim_input.config
    if config.iterations <= 0:
        raise ConfigurationError(f"iterations must be positive, got {config.iterations}")
    if config.workers < 1:
        raise ConfigurationError(f"workers must be at least 1, got {config.workers}")
    if config.timeout is not None and config.timeout <= 0:
        raise ConfigurationError(f"timeout must be positive, got {config.timeout}")
    if not isinstance(sim_input.rules, BannerRules):
        raise ConfigurationError(f"rules must be BannerRules, got {type(sim_input.rules)!r}")
    for banner_type, rules in sim_input.rules_table.items():
        if not isinstance(rules, BannerRules):
            raise ConfigurationError(f"rules_table['{banner_type}'] is not BannerRules")

    problems: list[str] = []
    for name in (
        "starting_pity",
        "starting_radiant_streak",
        "starting_fate_points",
        "starting_pulls",
    ):
        if getattr(sim_input, name) < 0:
            problems.append(f"{name} must be non-negative")
    if not math.isfinite(sim_input.income_per_day) or sim_input.income_per_day < 0:
        problems.append("income_per_day must be a finite, non-negative number")
    if sim_input.starting_pity >= sim_input.rules.hard_pity:
        problems.append(
            f"starting_pity must be below hard pity ({sim_input.rules.hard_pity})"
        )

    overrides = sim_input.per_target_states
    if overrides is not None and len(overrides) != len(sim_input.targets):
        problems.append(
            f"per_target_states has {len(overrides)} entries for "
            f"{len(sim_input.targets)} targets"
        )
        overrides = None

    for index, target in enumerate(sim_input.targets):
        label = f"targets[{index}] ({target.character_key})"
        try:
            parse_start_date(target.expected_start_date)
        except (TypeError, ValueError):
            problems.append(f"{label}: unparseable expected_start_date {target.expected_start_date!r}")
        if isinstance(target.priority, bool) or target.priority not in (1, 2, 3, 4, 5):
            problems.append(f"{label}: priority must be an integer from 1 to 5")
        if target.max_pull_budget is not None and target.max_pull_budget < 0:
            problems.append(f"{label}: max_pull_budget must be non-negative")
        if target.copies_needed < 1:
            problems.append(f"{label}: copies_needed must be at least 1")
        if target.banner_type not in BANNER_TYPES:
            problems.append(f"{label}: unknown banner type '{target.banner_type}'")
            continue
        try:
            rules = sim_input.rules_for(target.banner_type)
        except KeyError:
            problems.append(f"{label}: no rules configured for the {target.banner_type} banner")
            continue
        if overrides is not None and overrides[index] is not None:
            _check_override(index, overrides[index], rules, problems)

    if problems:
        raise InputValidationError(problems)


def prepare_plan(sim_input: SimulationInput) -> SimulationPlan:
    """Sort targets by start date and precompute everything trials share.

    The sort is stable, so targets opening on the same date keep input order.
    Income accrual is fixed once per run against ``as_of`` (default: now).
    """

    as_of = sim_input.as_of or datetime.now(timezone.utc)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)

    overrides = sim_input.per_target_states or (None,) * len(sim_input.targets)
    dated = [
        (parse_start_date(target.expected_start_date), target, override)
        for target, override in zip(sim_input.targets, overrides)
    ]
    dated.sort(key=lambda item: item[0])

    planned: list[PlannedTarget] = []
    for start, target, override in dated:
        accrual = math.floor(days_until(start, as_of) * sim_input.income_per_day)
        planned.append(
            PlannedTarget(
                character_key=target.character_key,
                banner_type=target.banner_type,
                date=target.expected_start_date,
                rules=sim_input.rules_for(target.banner_type),
                priority=target.priority,
                max_pull_budget=target.max_pull_budget,
                copies_needed=target.copies_needed,
                accrual=accrual,
                override=override,
            )
        )

    starting_states = {banner_type: PityState() for banner_type in BANNER_TYPES}
    primary = sim_input.rules.banner_type
    starting_states[primary] = sim_input.starting_state
    if primary != "weapon" and sim_input.starting_fate_points:
        starting_states["weapon"] = PityState(fate_points=sim_input.starting_fate_points)

    config = sim_input.config
    return SimulationPlan(
        targets=tuple(planned),
        starting_states=starting_states,
        starting_pulls=sim_input.starting_pulls,
        iterations=config.iterations,
        seed=config.seed,
        progress_step=clamp_progress_step(config.progress_step),
    )


def simulate_trial(
    plan: SimulationPlan,
    rng: random.Random,
    aggregate: TrialAggregate,
) -> None:
    """Play one trial through every target and record it into ``aggregate``."""

    states = dict(plan.starting_states)
    available = plan.starting_pulls
    all_musts_met = True
    got_anything = False

    for index, target in enumerate(plan.targets):
        state = states[target.banner_type]
        if target.override is not None:
            state = target.override.apply(state)

        available += target.accrual
        budget = available
        if target.max_pull_budget is not None:
            budget = min(budget, target.max_pull_budget)
        budget = max(0, budget)

        rules = target.rules
        pity = state.pity
        guaranteed = state.guaranteed
        streak = state.radiant_streak
        fate = state.fate_points
        used = 0
        copies = 0
        while used < budget and copies < target.copies_needed:
            outcome = simulate_pull(pity, guaranteed, streak, rules, rng, fate)
            pity = outcome.new_pity
            guaranteed = outcome.new_guaranteed
            streak = outcome.new_radiant_streak
            fate = outcome.new_fate_points
            used += 1
            if outcome.got_5star and outcome.was_featured:
                copies += 1

        states[target.banner_type] = PityState(pity, guaranteed, streak, fate)
        available -= used
        aggregate.pulls_used[index].append(used)
        aggregate.copies[index].append(copies)
        if copies > 0:
            got_anything = True
        if target.priority == 1 and copies < target.copies_needed:
            all_musts_met = False

    aggregate.trials += 1
    if all_musts_met:
        aggregate.all_must_successes += 1
    if not got_anything:
        aggregate.nothing_count += 1


def run_trials(plan: SimulationPlan, start: int, stop: int) -> TrialAggregate:
    """Run trials ``start`` (inclusive) to ``stop`` (exclusive).

    With a seed, trial ``i`` draws from ``random.Random(seed + i)`` so that any
    split of the index range reproduces the same samples.
    """

    aggregate = TrialAggregate.empty(len(plan.targets))
    shared_rng = random.Random() if plan.seed is None else None
    for trial_index in range(start, stop):
        rng = shared_rng if shared_rng is not None else random.Random(plan.seed + trial_index)
        simulate_trial(plan, rng, aggregate)
    return aggregate


def iter_chunks(start: int, stop: int, chunk_size: int) -> Iterator[tuple[int, int]]:
    """Yield ``(chunk_start, chunk_stop)`` pairs covering ``[start, stop)``."""

    for chunk_start in range(start, stop, chunk_size):
        yield chunk_start, min(stop, chunk_start + chunk_size)


def shard_ranges(iterations: int, shards: int) -> list[tuple[int, int]]:
    """Split ``range(iterations)`` into at most ``shards`` contiguous, non-empty ranges."""

    shards = max(1, min(shards, iterations))
    base, extra = divmod(iterations, shards)
    ranges: list[tuple[int, int]] = []
    start = 0
    for shard in range(shards):
        stop = start + base + (1 if shard < extra else 0)
        ranges.append((start, stop))
        start = stop
    return ranges


def _ratio(count: int, total: int) -> float:
    return count / total if total > 0 else 0.0


def _summarise_target(
    target: PlannedTarget,
    pulls_used: Sequence[int],
    copies: Sequence[int],
    trials: int,
) -> TargetResult:
    pulls = np.asarray(pulls_used, dtype=np.int64)
    copy_counts = np.asarray(copies, dtype=np.int64)

    constellations: list[ConstellationResult] = []
    for copy_level in range(1, target.copies_needed + 1):
        reached = pulls[copy_counts >= copy_level]
        constellations.append(
            ConstellationResult(
                label=copy_label(target.banner_type, copy_level),
                probability=_ratio(int(reached.size), trials),
                average_pulls_used=_ratio(int(reached.sum()), int(reached.size)),
                median_pulls_used=lower_median(reached),
            )
        )

    successes = int(np.count_nonzero(copy_counts >= target.copies_needed))
    return TargetResult(
        character_key=target.character_key,
        banner_type=target.banner_type,
        probability=_ratio(successes, trials),
        average_pulls_used=_ratio(int(pulls.sum()), int(pulls.size)),
        median_pulls_used=lower_median(pulls),
        constellations=tuple(constellations),
    )


def build_timeline(
    plan: SimulationPlan, per_character: Sequence[TargetResult]
) -> tuple[TimelinePoint, ...]:
    """Project pulls available at each banner: income so far minus average spend before it."""

    points: list[TimelinePoint] = []
    accrued = plan.starting_pulls
    spent = 0.0
    for target, result in zip(plan.targets, per_character):
        accrued += target.accrual
        projected = max(0, math.floor(accrued - spent))
        points.append(
            TimelinePoint(
                date=target.date,
                event=f"{target.character_key} banner",
                projected_pulls=projected,
            )
        )
        spent += result.average_pulls_used
    return tuple(points)


def finalize(
    plan: SimulationPlan,
    aggregate: TrialAggregate,
    timed_out: bool = False,
) -> SimulationResult:
    """Turn raw trial samples into the published statistics."""

    trials = aggregate.trials
    per_character = tuple(
        _summarise_target(target, aggregate.pulls_used[index], aggregate.copies[index], trials)
        for index, target in enumerate(plan.targets)
    )
    all_musts = _ratio(aggregate.all_must_successes, trials) if trials > 0 else 1.0
    return SimulationResult(
        per_character=per_character,
        all_must_haves_probability=all_musts,
        pull_timeline=build_timeline(plan, per_character),
        nothing_probability=_ratio(aggregate.nothing_count, trials),
        iterations_completed=trials,
        timed_out=timed_out,
    )


def run_simulation(
    sim_input: SimulationInput,
    progress: Optional[ProgressFn] = None,
) -> SimulationResult:
    """Validate ``sim_input`` and run every trial in the calling thread.

    Parameters
    ----------
    sim_input:
        Targets, starting snapshot, income model, rules and Monte Carlo settings.
    progress:
        Optional callback receiving the completed fraction after each chunk of
        trials (every 1-5% of the iterations).

    Raises
    ------
    ConfigurationError
        If the settings are unusable (e.g. ``iterations <= 0``).
    InputValidationError
        If the targets or starting values are malformed.
    """

    validate_input(sim_input)
    plan = prepare_plan(sim_input)
    _LOGGER.info(
        "Running %d trials over %d targets (seed=%s)",
        plan.iterations,
        len(plan.targets),
        plan.seed,
    )
    aggregate = TrialAggregate.empty(len(plan.targets))
    for chunk_start, chunk_stop in iter_chunks(0, plan.iterations, plan.chunk_size):
        aggregate.merge(run_trials(plan, chunk_start, chunk_stop))
        if progress is not None:
            progress(chunk_stop / plan.iterations)
    result = finalize(plan, aggregate)
    _LOGGER.info(
        "Simulation finished: all must-haves %.4f", result.all_must_haves_probability
    )
    return result
