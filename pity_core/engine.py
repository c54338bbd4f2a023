"""Single-pull pity state machine.

Every function here is pure: the pity counters arrive as arguments, randomness
comes from the supplied ``rng`` and the next state is returned inside a
:class:`~pity_core.models.PullOutcome`. Identical inputs and an identical RNG
sequence always produce the identical outcome.
"""

from __future__ import annotations

from typing import Protocol

from .models import PityState, PullOutcome
from .rules import BannerRules, CharacterRules, WeaponRules


class RandomSource(Protocol):
    """Anything producing uniform floats on ``[0, 1)``; ``random.Random`` qualifies."""

    def random(self) -> float: ...


def pull_probability(pity: int, rules: BannerRules) -> float:
    """Return the 5-star chance of the next pull given ``pity`` prior misses.

    Parameters
    ----------
    pity:
        Pulls since the last 5-star, not counting the pull about to be made.
    rules:
        Banner rules providing the rate curve.
    """

    if pity + 1 >= rules.hard_pity:
        return 1.0
    if pity >= rules.soft_pity_start:
        ramp = rules.soft_pity_rate_increase * (pity - rules.soft_pity_start + 1)
        return min(1.0, rules.base_rate + ramp)
    return rules.base_rate


def is_forced_featured(guaranteed: bool, fate_points: int, rules: BannerRules) -> bool:
    """Return True when the next 5-star is the featured item without a 50/50."""

    if isinstance(rules, WeaponRules):
        return fate_points >= rules.max_fate_points
    return guaranteed


def simulate_pull(
    pity: int,
    guaranteed: bool,
    radiant_streak: int,
    rules: BannerRules,
    rng: RandomSource,
    fate_points: int = 0,
) -> PullOutcome:
    """Advance the pity counters by exactly one pull.

    Parameters
    ----------
    pity:
        Pulls since the last 5-star on this banner.
    guaranteed:
        Whether the next 5-star is guaranteed to be featured (a 50/50 was lost).
        Unused and carried through unchanged on the weapon banner.
    radiant_streak:
        Consecutive 50/50 wins that did not trigger capturing radiance. Only
        character rules read or change it.
    rules:
        Banner rules; the concrete variant decides which mechanics apply.
    rng:
        Source of uniform floats. One value is consumed for the rarity roll and a
        second only when a 5-star needs a 50/50.
    fate_points:
        Weapon-banner counter of off-target 5-stars. Carried through unchanged
        on other banners.

    Returns
    -------
    PullOutcome
        Whether a 5-star dropped, whether it was featured, and the next state.
    """

    got_5star = rng.random() < pull_probability(pity, rules)
    if not got_5star:
        return PullOutcome(
            got_5star=False,
            was_featured=False,
            new_pity=pity + 1,
            new_guaranteed=guaranteed,
            new_radiant_streak=radiant_streak,
            new_fate_points=fate_points,
        )

    if isinstance(rules, WeaponRules):
        if fate_points >= rules.max_fate_points:
            was_featured = True
        else:
            was_featured = rng.random() < rules.featured_rate
        return PullOutcome(
            got_5star=True,
            was_featured=was_featured,
            new_pity=0,
            new_guaranteed=guaranteed,
            new_radiant_streak=radiant_streak,
            new_fate_points=0 if was_featured else fate_points + 1,
        )

    if guaranteed:
        return PullOutcome(
            got_5star=True,
            was_featured=True,
            new_pity=0,
            new_guaranteed=False,
            new_radiant_streak=radiant_streak,
            new_fate_points=fate_points,
        )

    was_featured = rng.random() < rules.featured_rate
    if not was_featured:
        return PullOutcome(
            got_5star=True,
            was_featured=False,
            new_pity=0,
            new_guaranteed=True,
            new_radiant_streak=radiant_streak,
            new_fate_points=fate_points,
        )

    triggered_radiance = False
    new_streak = radiant_streak
    if isinstance(rules, CharacterRules):
        if radiant_streak >= rules.radiance_threshold:
            triggered_radiance = True
            new_streak = 0
        else:
            new_streak = radiant_streak + 1
    return PullOutcome(
        got_5star=True,
        was_featured=True,
        new_pity=0,
        new_guaranteed=False,
        new_radiant_streak=new_streak,
        new_fate_points=fate_points,
        triggered_radiance=triggered_radiance,
    )


def advance(state: PityState, rules: BannerRules, rng: RandomSource) -> PullOutcome:
    """Run :func:`simulate_pull` on a :class:`PityState`."""

    return simulate_pull(
        state.pity,
        state.guaranteed,
        state.radiant_streak,
        rules,
        rng,
        fate_points=state.fate_points,
    )
