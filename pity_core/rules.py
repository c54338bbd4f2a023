"""Banner rule table: per-banner pity constants and the JSON override loader."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Final, Literal, Union

from .errors import ConfigurationError

_LOGGER = logging.getLogger(__name__)

BannerType = Literal["character", "weapon", "standard", "chronicled"]

BANNER_TYPES: Final[tuple[str, ...]] = ("character", "weapon", "standard", "chronicled")

BANNER_LABELS: Final[dict[str, str]] = {
    "character": "Character Event Wish",
    "weapon": "Weapon Event Wish",
    "standard": "Standard Wish",
    "chronicled": "Chronicled Wish",
}


@dataclass(frozen=True)
class BannerRules(ABC):
    """Pity constants shared by every banner variant.

    ``soft_pity_start`` and ``hard_pity`` are expressed as pity counts, i.e. the
    number of pulls since the last 5-star *before* the pull being made.
    """

    soft_pity_start: int
    hard_pity: int
    base_rate: float
    soft_pity_rate_increase: float
    version: str = "5.0+"
    featured_rate: float = 0.5

    def __post_init__(self) -> None:
        if self.soft_pity_start < 0:
            raise ConfigurationError(
                f"soft_pity_start must be non-negative, got {self.soft_pity_start}"
            )
        if self.hard_pity <= self.soft_pity_start:
            raise ConfigurationError(
                f"hard_pity ({self.hard_pity}) must exceed soft_pity_start "
                f"({self.soft_pity_start})"
            )
        if not 0.0 < self.base_rate < 1.0:
            raise ConfigurationError(f"base_rate must lie in (0, 1), got {self.base_rate}")
        if self.soft_pity_rate_increase < 0.0:
            raise ConfigurationError(
                "soft_pity_rate_increase must be non-negative, "
                f"got {self.soft_pity_rate_increase}"
            )
        if not 0.0 < self.featured_rate <= 1.0:
            raise ConfigurationError(
                f"featured_rate must lie in (0, 1], got {self.featured_rate}"
            )

    @property
    @abstractmethod
    def banner_type(self) -> str:
        """Banner type this rule set applies to."""

    @property
    def has_capturing_radiance(self) -> bool:
        return False

    @property
    def has_fate_points(self) -> bool:
        return False


@dataclass(frozen=True)
class CharacterRules(BannerRules):
    """Character event banner: 50/50 with guarantee plus capturing radiance."""

    radiance_threshold: int = 3

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.radiance_threshold < 1:
            raise ConfigurationError(
                f"radiance_threshold must be at least 1, got {self.radiance_threshold}"
            )

    @property
    def banner_type(self) -> str:
        return "character"

    @property
    def has_capturing_radiance(self) -> bool:
        return True


@dataclass(frozen=True)
class WeaponRules(BannerRules):
    """Weapon banner: off-target 5-stars accumulate fate points."""

    max_fate_points: int = 2

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.max_fate_points < 1:
            raise ConfigurationError(
                f"max_fate_points must be at least 1, got {self.max_fate_points}"
            )

    @property
    def banner_type(self) -> str:
        return "weapon"

    @property
    def has_fate_points(self) -> bool:
        return True


@dataclass(frozen=True)
class StandardRules(BannerRules):
    """Banners with the plain 50/50 and guarantee only (standard, chronicled)."""

    kind: str = "standard"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.kind not in ("standard", "chronicled"):
            raise ConfigurationError(f"StandardRules cannot describe a '{self.kind}' banner")

    @property
    def banner_type(self) -> str:
        return self.kind


AnyBannerRules = Union[CharacterRules, WeaponRules, StandardRules]

CHARACTER_RULES: Final[CharacterRules] = CharacterRules(
    soft_pity_start=73,  # pull 74 is the first soft-pity pull
    hard_pity=90,
    base_rate=0.006,
    soft_pity_rate_increase=0.06,
    radiance_threshold=3,
)
WEAPON_RULES: Final[WeaponRules] = WeaponRules(
    soft_pity_start=62,
    hard_pity=77,
    base_rate=0.007,
    soft_pity_rate_increase=0.07,
    max_fate_points=2,
)
STANDARD_RULES: Final[StandardRules] = StandardRules(
    soft_pity_start=73,
    hard_pity=90,
    base_rate=0.006,
    soft_pity_rate_increase=0.06,
    version="1.0+",
)
CHRONICLED_RULES: Final[StandardRules] = StandardRules(
    soft_pity_start=73,
    hard_pity=90,
    base_rate=0.006,
    soft_pity_rate_increase=0.06,
    version="4.5+",
    kind="chronicled",
)

DEFAULT_BANNER_RULES: Final[dict[str, BannerRules]] = {
    "character": CHARACTER_RULES,
    "weapon": WEAPON_RULES,
    "standard": STANDARD_RULES,
    "chronicled": CHRONICLED_RULES,
}

# camelCase keys used by rule files and the wire format.
_FIELD_NAMES: Final[dict[str, str]] = {
    "softPityStart": "soft_pity_start",
    "hardPity": "hard_pity",
    "baseRate": "base_rate",
    "softPityRateIncrease": "soft_pity_rate_increase",
    "featuredRate": "featured_rate",
    "version": "version",
    "radianceThreshold": "radiance_threshold",
    "maxFatePoints": "max_fate_points",
}
_INT_FIELDS: Final[frozenset[str]] = frozenset(
    {"soft_pity_start", "hard_pity", "radiance_threshold", "max_fate_points"}
)
_IGNORED_KEYS: Final[frozenset[str]] = frozenset({"bannerType"})
# Descriptive flags; they must agree with the rules variant they describe.
_FLAG_KEYS: Final[dict[str, str]] = {
    "hasCapturingRadiance": "has_capturing_radiance",
    "hasFatePoints": "has_fate_points",
}


def rules_for_banner(banner_type: str) -> BannerRules:
    """Return the built-in rules for ``banner_type``."""

    try:
        return DEFAULT_BANNER_RULES[banner_type]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown banner type '{banner_type}'") from exc


def infer_banner_type(raw: Mapping[str, object], default: str = "character") -> str:
    """Pick the banner a rules mapping describes.

    An explicit ``bannerType`` wins. Otherwise ``hasFatePoints: true`` means the
    weapon banner and ``hasCapturingRadiance: false`` the standard banner.
    """

    if "bannerType" in raw:
        return str(raw["bannerType"])
    if raw.get("hasFatePoints") is True:
        return "weapon"
    if raw.get("hasCapturingRadiance") is False:
        return "standard"
    return default


def _check_flags(banner_type: str, raw: Mapping[str, object], rules: BannerRules) -> None:
    for key, attribute in _FLAG_KEYS.items():
        if key not in raw:
            continue
        value = raw[key]
        if not isinstance(value, bool):
            raise ConfigurationError(f"Rule flag '{key}' must be a boolean, got {value!r}")
        if value != getattr(rules, attribute):
            raise ConfigurationError(
                f"{key}={str(value).lower()} contradicts the {banner_type} banner rules"
            )


def _coerce_fields(banner_type: str, raw: Mapping[str, object]) -> dict[str, object]:
    fields: dict[str, object] = {}
    for key, value in raw.items():
        if key in _IGNORED_KEYS or key in _FLAG_KEYS:
            continue
        name = _FIELD_NAMES.get(key)
        if name is None:
            raise ConfigurationError(f"Unknown rule field '{key}' for {banner_type} banner")
        if name == "version":
            fields[name] = str(value)
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(
                f"Rule field '{key}' for {banner_type} banner must be numeric, got {value!r}"
            )
        if name in _INT_FIELDS:
            if int(value) != value:
                raise ConfigurationError(
                    f"Rule field '{key}' for {banner_type} banner must be an integer"
                )
            fields[name] = int(value)
        else:
            fields[name] = float(value)
    return fields


def rules_from_mapping(
    banner_type: str,
    raw: Mapping[str, object],
    base: BannerRules | None = None,
) -> BannerRules:
    """Build rules for ``banner_type`` from camelCase fields layered over ``base``.

    Parameters
    ----------
    banner_type:
        One of ``BANNER_TYPES``.
    raw:
        Mapping such as ``{"softPityStart": 73, "hardPity": 90}``. Missing fields
        keep the value from ``base``.
    base:
        Rules to override; defaults to the built-in rules of the banner type.

    Raises
    ------
    ConfigurationError
        If the banner type is unknown, a field is unknown or non-numeric, or the
        resulting rules are inconsistent.
    """

    if base is None:
        base = rules_for_banner(banner_type)
    fields = _coerce_fields(banner_type, raw)
    if "radiance_threshold" in fields and not isinstance(base, CharacterRules):
        raise ConfigurationError(f"radianceThreshold is not valid for the {banner_type} banner")
    if "max_fate_points" in fields and not isinstance(base, WeaponRules):
        raise ConfigurationError(f"maxFatePoints is not valid for the {banner_type} banner")
    _check_flags(banner_type, raw, base)
    return replace(base, **fields)


def rules_to_mapping(rules: BannerRules) -> dict[str, object]:
    """Return the camelCase representation of ``rules``."""

    payload: dict[str, object] = {
        "bannerType": rules.banner_type,
        "version": rules.version,
        "softPityStart": rules.soft_pity_start,
        "hardPity": rules.hard_pity,
        "baseRate": rules.base_rate,
        "softPityRateIncrease": rules.soft_pity_rate_increase,
        "featuredRate": rules.featured_rate,
        "hasCapturingRadiance": rules.has_capturing_radiance,
        "hasFatePoints": rules.has_fate_points,
    }
    if isinstance(rules, CharacterRules):
        payload["radianceThreshold"] = rules.radiance_threshold
    if isinstance(rules, WeaponRules):
        payload["maxFatePoints"] = rules.max_fate_points
    return payload


def load_banner_rules(path: str | Path | None = None) -> dict[str, BannerRules]:
    """Load the rule table, merging an optional JSON override file over the defaults.

    A missing file yields the built-in table. A file that exists but cannot be
    parsed, or that describes invalid rules, raises ``ConfigurationError`` so
    that bad configuration is caught at startup rather than mid-simulation.
    """

    table = dict(DEFAULT_BANNER_RULES)
    if path is None:
        return table

    rules_path = Path(path)
    try:
        raw_text = rules_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        _LOGGER.warning("Banner rules file %s not found; using built-in rules", rules_path)
        return table
    try:
        raw_data = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Banner rules file {rules_path} is not valid JSON") from exc

    if not isinstance(raw_data, Mapping):
        raise ConfigurationError(f"Banner rules file {rules_path} must contain a JSON object")

    for banner_type, overrides in raw_data.items():
        if banner_type not in table:
            raise ConfigurationError(f"Unknown banner type '{banner_type}' in {rules_path}")
        if not isinstance(overrides, Mapping):
            raise ConfigurationError(
                f"Rules for '{banner_type}' in {rules_path} must be a JSON object"
            )
        table[banner_type] = rules_from_mapping(banner_type, overrides, table[banner_type])
    _LOGGER.info("Loaded banner rule overrides for %s", ", ".join(sorted(raw_data)))
    return table
