"""High-level entry points used by the UI and callers."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Optional

from .budget import Ledger, get_available_pulls, income_per_day_from_wishes
from .config import Settings, load_settings
from .errors import InputValidationError
from .host import ProgressCallback, SimulationHandle, SimulationHost
from .models import (
    SimulationConfig,
    SimulationInput,
    SimulationResult,
    SimulationTarget,
    TargetPityOverride,
)
from .rules import (
    BANNER_TYPES,
    DEFAULT_BANNER_RULES,
    BannerRules,
    infer_banner_type,
    rules_from_mapping,
)

_LOGGER = logging.getLogger(__name__)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _optional_int(
    raw: Mapping[str, Any], key: str, problems: list[str], where: str
) -> Optional[int]:
    value = raw.get(key)
    if value is None:
        return None
    if not _is_int(value):
        problems.append(f"{where}.{key} must be an integer or null")
        return None
    return value


def _target_from_dict(index: int, raw: Any, problems: list[str]) -> Optional[SimulationTarget]:
    where = f"targets[{index}]"
    if not isinstance(raw, Mapping):
        problems.append(f"{where} must be an object")
        return None
    character_key = raw.get("characterKey")
    start_date = raw.get("expectedStartDate")
    if not isinstance(character_key, str) or not character_key:
        problems.append(f"{where}.characterKey is required")
        return None
    if not isinstance(start_date, str):
        problems.append(f"{where}.expectedStartDate must be an ISO date string")
        return None
    priority = raw.get("priority", 3)
    if not _is_int(priority):
        problems.append(f"{where}.priority must be an integer")
        return None
    copies_needed = raw.get("copiesNeeded", 1)
    if not _is_int(copies_needed):
        problems.append(f"{where}.copiesNeeded must be an integer")
        return None
    target_id = raw.get("id")
    return SimulationTarget(
        character_key=character_key,
        expected_start_date=start_date,
        priority=priority,
        max_pull_budget=_optional_int(raw, "maxPullBudget", problems, where),
        banner_type=str(raw.get("bannerType", "character")),
        copies_needed=copies_needed,
        expected_end_date=raw.get("expectedEndDate"),
        target_id=str(target_id) if target_id is not None else None,
    )


def _override_from_dict(index: int, raw: Any, problems: list[str]) -> Optional[TargetPityOverride]:
    if raw is None:
        return None
    where = f"perTargetStates[{index}]"
    if not isinstance(raw, Mapping):
        problems.append(f"{where} must be an object or null")
        return None
    guaranteed = raw.get("guaranteed")
    if guaranteed is not None and not isinstance(guaranteed, bool):
        problems.append(f"{where}.guaranteed must be a boolean or null")
        guaranteed = None
    return TargetPityOverride(
        pity=_optional_int(raw, "pity", problems, where),
        guaranteed=guaranteed,
        radiant_streak=_optional_int(raw, "radiantStreak", problems, where),
        fate_points=_optional_int(raw, "fatePoints", problems, where),
    )


def _config_from_dict(raw: Any, settings: Settings, problems: list[str]) -> SimulationConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        problems.append("config must be an object")
        raw = {}
    iterations = raw.get("iterations", settings.iterations)
    if not _is_int(iterations):
        problems.append("config.iterations must be an integer")
        iterations = settings.iterations
    seed = _optional_int(raw, "seed", problems, "config")
    workers = raw.get("workers", settings.workers)
    if not _is_int(workers):
        problems.append("config.workers must be an integer")
        workers = settings.workers
    timeout = raw.get("timeout", settings.timeout)
    if timeout is not None and not _is_number(timeout):
        problems.append("config.timeout must be a number of seconds or null")
        timeout = None
    return SimulationConfig(
        iterations=iterations,
        seed=seed,
        progress_step=settings.progress_step,
        workers=workers,
        timeout=timeout,
    )


def simulation_input_from_dict(
    payload: Mapping[str, Any],
    rules_table: Optional[Mapping[str, BannerRules]] = None,
    settings: Optional[Settings] = None,
) -> SimulationInput:
    """Build a :class:`SimulationInput` from the camelCase request shape.

    Parameters
    ----------
    payload:
        Request dictionary (``targets``, ``startingPity``, ``incomePerDay``,
        ``config`` and friends). ``rules`` may be a camelCase rules mapping
        layered over the table entry for its ``bannerType``.
    rules_table:
        Rules per banner type; defaults to the built-in table.
    settings:
        Defaults for absent ``config`` fields; read from the environment when
        omitted.

    Raises
    ------
    InputValidationError
        If the payload shape or field types are wrong.
    ConfigurationError
        If the supplied rules are inconsistent.
    """

    if not isinstance(payload, Mapping):
        raise InputValidationError("simulation request must be an object")
    settings = settings or load_settings()
    table = dict(rules_table or DEFAULT_BANNER_RULES)
    problems: list[str] = []

    raw_targets = payload.get("targets", [])
    if not isinstance(raw_targets, list):
        raise InputValidationError("targets must be a list")
    targets = [_target_from_dict(i, raw, problems) for i, raw in enumerate(raw_targets)]

    raw_overrides = payload.get("perTargetStates")
    overrides: Optional[tuple[Optional[TargetPityOverride], ...]] = None
    if raw_overrides is not None:
        if not isinstance(raw_overrides, list):
            problems.append("perTargetStates must be a list")
        else:
            overrides = tuple(
                _override_from_dict(i, raw, problems) for i, raw in enumerate(raw_overrides)
            )

    numbers: dict[str, Any] = {}
    for key, default in (
        ("startingPity", 0),
        ("startingRadiantStreak", 0),
        ("startingFatePoints", 0),
        ("startingPulls", 0),
    ):
        value = payload.get(key, default)
        if not _is_int(value):
            problems.append(f"{key} must be an integer")
            value = default
        numbers[key] = value
    income = payload.get("incomePerDay", 0.0)
    if not _is_number(income):
        problems.append("incomePerDay must be a number")
        income = 0.0
    guaranteed = payload.get("startingGuaranteed", False)
    if not isinstance(guaranteed, bool):
        problems.append("startingGuaranteed must be a boolean")
        guaranteed = False

    config = _config_from_dict(payload.get("config"), settings, problems)
    if problems:
        raise InputValidationError(problems)

    rules = table["character"]
    raw_rules = payload.get("rules")
    if raw_rules is not None:
        if not isinstance(raw_rules, Mapping):
            raise InputValidationError("rules must be an object")
        banner_type = infer_banner_type(raw_rules)
        if banner_type not in BANNER_TYPES:
            raise InputValidationError(f"rules.bannerType '{banner_type}' is not a banner type")
        rules = rules_from_mapping(banner_type, raw_rules, base=table[banner_type])

    return SimulationInput(
        targets=tuple(target for target in targets if target is not None),
        config=config,
        starting_pity=numbers["startingPity"],
        starting_guaranteed=guaranteed,
        starting_radiant_streak=numbers["startingRadiantStreak"],
        starting_pulls=numbers["startingPulls"],
        income_per_day=float(income),
        rules=rules,
        starting_fate_points=numbers["startingFatePoints"],
        per_target_states=overrides,
        rules_table=table,
    )


def simulation_result_to_dict(result: SimulationResult) -> dict[str, Any]:
    """Return the camelCase response shape of ``result``."""

    return {
        "perCharacter": [
            {
                "characterKey": target.character_key,
                "bannerType": target.banner_type,
                "probability": target.probability,
                "averagePullsUsed": target.average_pulls_used,
                "medianPullsUsed": target.median_pulls_used,
                "constellations": [
                    {
                        "label": level.label,
                        "probability": level.probability,
                        "averagePullsUsed": level.average_pulls_used,
                        "medianPullsUsed": level.median_pulls_used,
                    }
                    for level in target.constellations
                ],
            }
            for target in result.per_character
        ],
        "allMustHavesProbability": result.all_must_haves_probability,
        "nothingProbability": result.nothing_probability,
        "pullTimeline": [
            {"date": point.date, "event": point.event, "projectedPulls": point.projected_pulls}
            for point in result.pull_timeline
        ],
        "iterationsCompleted": result.iterations_completed,
        "timedOut": result.timed_out,
    }


def build_plan_input(
    targets: Sequence[SimulationTarget],
    ledger: Ledger,
    config: SimulationConfig,
    starting_pity: int = 0,
    starting_guaranteed: bool = False,
    starting_radiant_streak: int = 0,
    starting_fate_points: int = 0,
    income_per_day: Optional[float] = None,
    rules: Optional[BannerRules] = None,
    rules_table: Optional[Mapping[str, BannerRules]] = None,
    as_of: Optional[datetime] = None,
) -> SimulationInput:
    """Combine a pity snapshot with the pulls and income a ledger implies.

    ``income_per_day`` overrides the rate estimated from recent wishes.
    """

    available = get_available_pulls(ledger, now=as_of)
    if income_per_day is None:
        income_per_day = income_per_day_from_wishes(ledger.wishes, now=as_of)
    table = dict(rules_table or DEFAULT_BANNER_RULES)
    _LOGGER.info(
        "Planning %d targets from %d available pulls at %.2f pulls/day",
        len(targets),
        available.available_pulls,
        income_per_day,
    )
    return SimulationInput(
        targets=tuple(targets),
        config=config,
        starting_pity=starting_pity,
        starting_guaranteed=starting_guaranteed,
        starting_radiant_streak=starting_radiant_streak,
        starting_pulls=available.available_pulls,
        income_per_day=income_per_day,
        rules=rules or table["character"],
        starting_fate_points=starting_fate_points,
        rules_table=table,
        as_of=as_of,
    )


def plan_targets(
    targets: Sequence[SimulationTarget],
    ledger: Ledger,
    config: SimulationConfig,
    host: Optional[SimulationHost] = None,
    on_progress: Optional[ProgressCallback] = None,
    **snapshot: Any,
) -> SimulationHandle:
    """Build the input for ``targets`` from ``ledger`` and submit it to ``host``.

    Extra keyword arguments are forwarded to :func:`build_plan_input`
    (``starting_pity``, ``income_per_day``, ``as_of`` ...).
    """

    sim_input = build_plan_input(targets, ledger, config, **snapshot)
    host = host or SimulationHost()
    return host.submit(sim_input, on_progress=on_progress)
