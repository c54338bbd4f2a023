"""Wish pity engine, Monte Carlo planner and budget helpers."""

from .analytical import (
    AnalyticalResult,
    DistributionPoint,
    RequiredIncome,
    calculate_distribution,
    calculate_required_income,
    calculate_single_target,
    pulls_for_probability,
)
from .api import (
    build_plan_input,
    plan_targets,
    simulation_input_from_dict,
    simulation_result_to_dict,
)
from .budget import (
    AvailablePullsResult,
    Ledger,
    ResourceTotals,
    bucket_primogem_entries,
    get_available_pulls,
    income_per_day_from_wishes,
    ledger_from_dict,
    load_ledger,
)
from .config import Settings, load_settings
from .engine import advance, pull_probability, simulate_pull
from .errors import (
    ConfigurationError,
    InputValidationError,
    PityCoreError,
    SimulationCancelled,
    SimulationFailed,
)
from .host import (
    SimulationHandle,
    SimulationHost,
    SimulationStatus,
    run_in_background,
    run_simulation_async,
)
from .models import (
    PityState,
    PullOutcome,
    SimulationConfig,
    SimulationInput,
    SimulationResult,
    SimulationTarget,
    TargetPityOverride,
    TargetResult,
)
from .rules import (
    BANNER_LABELS,
    BANNER_TYPES,
    CHARACTER_RULES,
    DEFAULT_BANNER_RULES,
    WEAPON_RULES,
    BannerRules,
    CharacterRules,
    StandardRules,
    WeaponRules,
    load_banner_rules,
)
from .simulation import run_simulation

__all__ = [
    "AnalyticalResult",
    "AvailablePullsResult",
    "BANNER_LABELS",
    "BANNER_TYPES",
    "BannerRules",
    "CHARACTER_RULES",
    "CharacterRules",
    "ConfigurationError",
    "DEFAULT_BANNER_RULES",
    "DistributionPoint",
    "InputValidationError",
    "Ledger",
    "PityCoreError",
    "PityState",
    "PullOutcome",
    "RequiredIncome",
    "ResourceTotals",
    "Settings",
    "SimulationCancelled",
    "SimulationConfig",
    "SimulationFailed",
    "SimulationHandle",
    "SimulationHost",
    "SimulationInput",
    "SimulationResult",
    "SimulationStatus",
    "SimulationTarget",
    "StandardRules",
    "TargetPityOverride",
    "TargetResult",
    "WEAPON_RULES",
    "WeaponRules",
    "advance",
    "bucket_primogem_entries",
    "build_plan_input",
    "calculate_distribution",
    "calculate_required_income",
    "calculate_single_target",
    "get_available_pulls",
    "income_per_day_from_wishes",
    "ledger_from_dict",
    "load_banner_rules",
    "load_ledger",
    "load_settings",
    "plan_targets",
    "pull_probability",
    "pulls_for_probability",
    "run_in_background",
    "run_simulation_async",
    "run_simulation",
    "simulate_pull",
    "simulation_input_from_dict",
    "simulation_result_to_dict",
]
