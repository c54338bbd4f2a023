"""Exact pull distributions computed by dynamic programming over pity states.

Where the Monte Carlo simulator samples whole plans, this module answers the
single-target questions exactly: the cumulative chance of the first featured
5-star within ``n`` pulls, the pulls needed to reach a confidence level, and
the daily income needed to afford a set of targets in time.

The radiant streak never changes the featured chance, so the propagated state
is ``(pity, guaranteed)`` on character/standard banners and
``(pity, fate_points)`` on the weapon banner.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final, Literal

from .engine import pull_probability
from .errors import InputValidationError
from .rules import BannerRules, WeaponRules

MAX_ANALYTICAL_PULLS: Final[int] = 300
EARLY_EXIT_PROBABILITY: Final[float] = 0.9999
CONFIDENCE_LEVELS: Final[tuple[float, ...]] = (0.5, 0.8, 0.9, 0.99)

PRIMOS_PER_PULL: Final[int] = 160
F2P_PRIMOS_PER_DAY: Final[float] = 60.0
WELKIN_PRIMOS_PER_DAY: Final[float] = 150.0
WELKIN_BP_PRIMOS_PER_DAY: Final[float] = 170.0
DIFFICULT_MULTIPLIER: Final[float] = 1.5

Feasibility = Literal["easy", "possible", "difficult", "unlikely"]
DistributionState = tuple[int, int]


@dataclass(frozen=True)
class DistributionPoint:
    pulls: int
    cumulative_probability: float


@dataclass(frozen=True)
class AnalyticalResult:
    """Exact single-target summary."""

    probability_with_current_pulls: float
    pulls_for: dict[float, int]
    distribution: tuple[DistributionPoint, ...]


@dataclass(frozen=True)
class RequiredIncome:
    required_pulls_per_day: float
    required_primos_per_day: float
    compared_to_f2p: float
    compared_to_welkin: float
    compared_to_welkin_bp: float
    feasibility: Feasibility


def _step(
    states: dict[DistributionState, float], rules: BannerRules
) -> tuple[dict[DistributionState, float], float]:
    """Advance every state by one pull; return the new states and the mass that succeeded."""

    next_states: dict[DistributionState, float] = {}
    succeeded = 0.0
    weapon = isinstance(rules, WeaponRules)
    for (pity, carry), mass in states.items():
        rate = pull_probability(pity, rules)
        if rate < 1.0:
            key = (pity + 1, carry)
            next_states[key] = next_states.get(key, 0.0) + mass * (1.0 - rate)
        hit = mass * rate
        if weapon:
            forced = carry >= rules.max_fate_points
        else:
            forced = bool(carry)
        if forced:
            succeeded += hit
            continue
        succeeded += hit * rules.featured_rate
        lost_carry = carry + 1 if weapon else 1
        key = (0, lost_carry)
        next_states[key] = next_states.get(key, 0.0) + hit * (1.0 - rules.featured_rate)
    return next_states, succeeded


def calculate_distribution(
    start_pity: int,
    guaranteed: bool,
    max_pulls: int,
    rules: BannerRules,
    fate_points: int = 0,
) -> list[DistributionPoint]:
    """Return the cumulative chance of the first featured 5-star after each pull.

    Parameters
    ----------
    start_pity:
        Pulls since the last 5-star.
    guaranteed:
        Whether the next 5-star is guaranteed featured (ignored on weapon rules).
    max_pulls:
        Length of the returned distribution, capped at ``MAX_ANALYTICAL_PULLS``.
    rules:
        Banner rules for the rate curve and featured mechanics.
    fate_points:
        Starting fate points (weapon rules only).

    Returns
    -------
    list[DistributionPoint]
        One point per pull count ``1..max_pulls``. Once the cumulative chance
        passes ``EARLY_EXIT_PROBABILITY`` the remaining points repeat it.
    """

    if start_pity < 0 or start_pity >= rules.hard_pity:
        raise InputValidationError(
            f"start_pity must be in [0, {rules.hard_pity}), got {start_pity}"
        )
    max_pulls = max(0, min(max_pulls, MAX_ANALYTICAL_PULLS))
    carry = fate_points if isinstance(rules, WeaponRules) else int(guaranteed)
    states: dict[DistributionState, float] = {(start_pity, carry): 1.0}

    cumulative = 0.0
    distribution: list[DistributionPoint] = []
    for pulls in range(1, max_pulls + 1):
        if cumulative < EARLY_EXIT_PROBABILITY:
            states, succeeded = _step(states, rules)
            cumulative = min(1.0, cumulative + succeeded)
        distribution.append(DistributionPoint(pulls, cumulative))
    return distribution


def pulls_for_probability(
    target_probability: float,
    start_pity: int,
    guaranteed: bool,
    rules: BannerRules,
    fate_points: int = 0,
) -> int:
    """Return the fewest pulls whose cumulative chance reaches ``target_probability``.

    Returns ``MAX_ANALYTICAL_PULLS`` when the level is not reached within it.
    """

    distribution = calculate_distribution(
        start_pity, guaranteed, MAX_ANALYTICAL_PULLS, rules, fate_points
    )
    for point in distribution:
        if point.cumulative_probability >= target_probability:
            return point.pulls
    return MAX_ANALYTICAL_PULLS


def calculate_single_target(
    current_pity: int,
    guaranteed: bool,
    available_pulls: int,
    rules: BannerRules,
    fate_points: int = 0,
) -> AnalyticalResult:
    """Summarise the exact odds of one target with ``available_pulls`` pulls."""

    if available_pulls < 0:
        raise InputValidationError(f"available_pulls must be non-negative, got {available_pulls}")
    full = calculate_distribution(
        current_pity, guaranteed, MAX_ANALYTICAL_PULLS, rules, fate_points
    )
    shown = max(1, min(available_pulls, MAX_ANALYTICAL_PULLS))
    if available_pulls == 0:
        probability = 0.0
    else:
        probability = full[min(available_pulls, MAX_ANALYTICAL_PULLS) - 1].cumulative_probability

    pulls_for: dict[float, int] = {}
    for level in CONFIDENCE_LEVELS:
        pulls_for[level] = next(
            (p.pulls for p in full if p.cumulative_probability >= level),
            MAX_ANALYTICAL_PULLS,
        )
    return AnalyticalResult(
        probability_with_current_pulls=probability,
        pulls_for=pulls_for,
        distribution=tuple(full[:shown]),
    )


def classify_feasibility(primos_per_day: float) -> Feasibility:
    if primos_per_day <= F2P_PRIMOS_PER_DAY:
        return "easy"
    if primos_per_day <= WELKIN_PRIMOS_PER_DAY:
        return "possible"
    if primos_per_day <= WELKIN_BP_PRIMOS_PER_DAY * DIFFICULT_MULTIPLIER:
        return "difficult"
    return "unlikely"


def calculate_required_income(
    target_count: int,
    target_probability: float,
    days_available: float,
    current_pity: int,
    guaranteed: bool,
    rules: BannerRules,
    fate_points: int = 0,
) -> RequiredIncome:
    """Estimate the daily income needed to secure ``target_count`` targets in time.

    Each target is costed at the pulls needed for ``target_probability`` from
    the current state, which overestimates later targets that start fresh.

    Raises
    ------
    InputValidationError
        For a non-positive horizon or count, or a probability outside ``(0, 1]``.
    """

    problems: list[str] = []
    if target_count < 1:
        problems.append("target_count must be at least 1")
    if not 0.0 < target_probability <= 1.0:
        problems.append("target_probability must be in (0, 1]")
    if days_available <= 0 or math.isnan(days_available):
        problems.append("days_available must be positive")
    if problems:
        raise InputValidationError(problems)

    per_target = pulls_for_probability(
        target_probability, current_pity, guaranteed, rules, fate_points
    )
    pulls_per_day = per_target * target_count / days_available
    primos_per_day = pulls_per_day * PRIMOS_PER_PULL
    return RequiredIncome(
        required_pulls_per_day=pulls_per_day,
        required_primos_per_day=primos_per_day,
        compared_to_f2p=primos_per_day / F2P_PRIMOS_PER_DAY,
        compared_to_welkin=primos_per_day / WELKIN_PRIMOS_PER_DAY,
        compared_to_welkin_bp=primos_per_day / WELKIN_BP_PRIMOS_PER_DAY,
        feasibility=classify_feasibility(primos_per_day),
    )
