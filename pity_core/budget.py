"""Resource ledger aggregation: available pulls, wish spending and income rates."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Final, Literal, Optional

import pandas as pd

from .errors import InputValidationError
from .simulation import parse_start_date

_LOGGER = logging.getLogger(__name__)

PRIMOGEMS_PER_PULL: Final[int] = 160
STARGLITTER_PER_PULL: Final[int] = 5
DEFAULT_LOOKBACK_DAYS: Final[int] = 30

PRIMOGEM_SOURCES: Final[list[str]] = [
    "daily_commission",
    "welkin",
    "event",
    "exploration",
    "abyss",
    "quest",
    "achievement",
    "maintenance",
    "codes",
    "battle_pass",
    "purchase",
    "wish_conversion",
    "cosmetic",
    "other",
]

# Non-wish primogem spending, recorded as negative amounts.
SPENDING_SOURCES: Final[frozenset[str]] = frozenset({"cosmetic"})
PURCHASE_SOURCE: Final[str] = "purchase"

FATE_TYPES: Final[tuple[str, ...]] = ("intertwined", "acquaint")
WISH_BANNER_TYPES: Final[tuple[str, ...]] = ("character", "weapon", "standard", "chronicled")

FateType = Literal["intertwined", "acquaint"]
IncomeInterval = Literal["week", "month"]

BUCKET_COLUMNS: Final[list[str]] = ["bucket_start", "label", "total", "earned", "purchased", "spent"]


@dataclass(frozen=True)
class ResourceSnapshot:
    """In-game resource counts observed at ``timestamp``."""

    timestamp: str
    primogems: int = 0
    genesis_crystals: int = 0
    intertwined: int = 0
    acquaint: int = 0
    starglitter: int = 0


@dataclass(frozen=True)
class PrimogemEntry:
    timestamp: str
    amount: int
    source: str = "other"


@dataclass(frozen=True)
class FateEntry:
    timestamp: str
    amount: int
    fate_type: FateType = "intertwined"
    source: str = "other"


@dataclass(frozen=True)
class WishRecord:
    timestamp: str
    banner_type: str = "character"


@dataclass(frozen=True)
class Ledger:
    """Everything the tracker stores that bears on pull availability."""

    snapshot: Optional[ResourceSnapshot] = None
    primogem_entries: tuple[PrimogemEntry, ...] = ()
    fate_entries: tuple[FateEntry, ...] = ()
    wishes: tuple[WishRecord, ...] = ()


@dataclass(frozen=True)
class ResourceTotals:
    primogems: int = 0
    genesis_crystals: int = 0
    intertwined: int = 0
    acquaint: int = 0
    starglitter: int = 0


@dataclass(frozen=True)
class AvailablePullsResult:
    available_pulls: int
    resources: ResourceTotals


@dataclass(frozen=True)
class WishSpending:
    total_pulls: int
    primogem_equivalent: int
    pulls_by_fate: dict[str, int] = field(default_factory=dict)


def banner_to_fate_type(banner_type: str) -> FateType:
    """Standard-banner wishes spend acquaint fates; every other banner spends intertwined."""

    return "acquaint" if banner_type == "standard" else "intertwined"


def calculate_wish_spending(
    wishes: Iterable[WishRecord], since: Optional[str] = None
) -> WishSpending:
    """Count wishes made strictly after ``since`` (all wishes when omitted)."""

    since_at = parse_start_date(since) if since is not None else None
    pulls_by_fate = {fate_type: 0 for fate_type in FATE_TYPES}
    for wish in wishes:
        if since_at is not None and parse_start_date(wish.timestamp) <= since_at:
            continue
        pulls_by_fate[banner_to_fate_type(wish.banner_type)] += 1
    total = sum(pulls_by_fate.values())
    return WishSpending(
        total_pulls=total,
        primogem_equivalent=total * PRIMOGEMS_PER_PULL,
        pulls_by_fate=pulls_by_fate,
    )


def calculate_available_pulls(resources: ResourceTotals) -> float:
    """Return the pull equivalent of ``resources`` (fractional for leftover primogems)."""

    primogem_pulls = (resources.primogems + resources.genesis_crystals) / PRIMOGEMS_PER_PULL
    starglitter_pulls = resources.starglitter // STARGLITTER_PER_PULL
    return primogem_pulls + resources.intertwined + resources.acquaint + starglitter_pulls


def split_primogem_income(entries: Iterable[PrimogemEntry]) -> dict[str, int]:
    """Sum entries into earned, purchased, spent and total primogems."""

    totals = {"earned": 0, "purchased": 0, "spent": 0, "total": 0}
    for entry in entries:
        totals[_income_category(entry.source)] += entry.amount
        totals["total"] += entry.amount
    return totals


def _income_category(source: str) -> str:
    if source == PURCHASE_SOURCE:
        return "purchased"
    if source in SPENDING_SOURCES:
        return "spent"
    return "earned"


def _within(timestamp: str, start: Optional[datetime], end: Optional[datetime]) -> bool:
    moment = parse_start_date(timestamp)
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def get_available_pulls(ledger: Ledger, now: Optional[datetime] = None) -> AvailablePullsResult:
    """Reconstruct current resources from a ledger and convert them to pulls.

    With a snapshot, entries recorded between the snapshot and ``now`` are
    added to it and wishes made after it are deducted. Without one, every
    entry is summed from zero and no wishes are deducted. Each resource is
    clamped at zero before conversion; leftover primogems below a full pull
    are floored away.
    """

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    snapshot = ledger.snapshot
    if snapshot is not None:
        since = parse_start_date(snapshot.timestamp)
        primogem_entries = [e for e in ledger.primogem_entries if _within(e.timestamp, since, now)]
        fate_entries = [e for e in ledger.fate_entries if _within(e.timestamp, since, now)]
        spending = calculate_wish_spending(ledger.wishes, snapshot.timestamp)
        base = ResourceTotals(
            primogems=snapshot.primogems,
            genesis_crystals=snapshot.genesis_crystals,
            intertwined=snapshot.intertwined,
            acquaint=snapshot.acquaint,
            starglitter=snapshot.starglitter,
        )
    else:
        primogem_entries = list(ledger.primogem_entries)
        fate_entries = list(ledger.fate_entries)
        spending = WishSpending(0, 0, {fate_type: 0 for fate_type in FATE_TYPES})
        base = ResourceTotals()

    fate_deltas = {fate_type: 0 for fate_type in FATE_TYPES}
    for entry in fate_entries:
        fate_deltas[entry.fate_type] += entry.amount

    resources = ResourceTotals(
        primogems=max(
            0, base.primogems + sum(e.amount for e in primogem_entries) - spending.primogem_equivalent
        ),
        genesis_crystals=max(0, base.genesis_crystals),
        intertwined=max(
            0,
            base.intertwined + fate_deltas["intertwined"] - spending.pulls_by_fate["intertwined"],
        ),
        acquaint=max(
            0, base.acquaint + fate_deltas["acquaint"] - spending.pulls_by_fate["acquaint"]
        ),
        starglitter=max(0, base.starglitter),
    )
    available = math.floor(calculate_available_pulls(resources))
    _LOGGER.debug("Ledger resolves to %d available pulls (%s)", available, resources)
    return AvailablePullsResult(available_pulls=available, resources=resources)


def daily_primogem_rate_from_wishes(
    wishes: Sequence[WishRecord],
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    now: Optional[datetime] = None,
) -> float:
    """Estimate primogems spent per day from the wishes of the last ``lookback_days``.

    The rate is the primogem value of the recent wishes divided by the number
    of calendar days they span (at least one).
    """

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    cutoff = now - timedelta(days=lookback_days)
    recent = [
        moment
        for moment in (parse_start_date(wish.timestamp) for wish in wishes)
        if moment > cutoff
    ]
    if not recent:
        return 0.0
    span_days = max(1, (max(recent) - min(recent)).days + 1)
    return len(recent) * PRIMOGEMS_PER_PULL / span_days


def income_per_day_from_wishes(
    wishes: Sequence[WishRecord],
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    now: Optional[datetime] = None,
) -> float:
    """Pulls per day implied by recent wishing, in the unit the simulator expects."""

    return daily_primogem_rate_from_wishes(wishes, lookback_days, now) / PRIMOGEMS_PER_PULL


def bucket_primogem_entries(
    entries: Iterable[PrimogemEntry],
    interval: IncomeInterval = "week",
    start: Optional[str] = None,
    end: Optional[str] = None,
    source: str = "all",
    include_purchases: bool = True,
) -> pd.DataFrame:
    """Group primogem entries into weekly (Monday-start) or monthly buckets.

    Returns
    -------
    pandas.DataFrame
        One row per bucket sorted by ``bucket_start`` with the columns in
        ``BUCKET_COLUMNS`` followed by one column per entry in
        ``PRIMOGEM_SOURCES``.
    """

    if interval not in ("week", "month"):
        raise InputValidationError(f"interval must be 'week' or 'month', got {interval!r}")
    start_at = parse_start_date(start) if start else None
    end_at = parse_start_date(end) if end else None
    rows = [
        {"timestamp": entry.timestamp, "amount": entry.amount, "source": entry.source}
        for entry in entries
        if _within(entry.timestamp, start_at, end_at)
        and (include_purchases or entry.source != PURCHASE_SOURCE)
        and (source == "all" or entry.source == source)
    ]
    if not rows:
        return pd.DataFrame(columns=BUCKET_COLUMNS + PRIMOGEM_SOURCES)

    frame = pd.DataFrame(rows)
    moments = pd.to_datetime(frame["timestamp"], utc=True, format="ISO8601").dt.tz_convert(None)
    if interval == "month":
        frame["bucket_start"] = moments.dt.to_period("M").dt.to_timestamp()
        label_format = "%Y-%m"
    else:
        frame["bucket_start"] = moments.dt.normalize() - pd.to_timedelta(
            moments.dt.weekday, unit="D"
        )
        label_format = "%Y-%m-%d"
    frame["category"] = frame["source"].map(_income_category)

    categories = (
        frame.pivot_table(
            index="bucket_start", columns="category", values="amount", aggfunc="sum", fill_value=0
        )
        .reindex(columns=["earned", "purchased", "spent"], fill_value=0)
    )
    sources = frame.pivot_table(
        index="bucket_start", columns="source", values="amount", aggfunc="sum", fill_value=0
    ).reindex(columns=PRIMOGEM_SOURCES, fill_value=0)

    buckets = pd.concat([categories, sources], axis=1)
    buckets["total"] = frame.groupby("bucket_start")["amount"].sum()
    buckets = buckets.sort_index().reset_index()
    buckets["label"] = buckets["bucket_start"].dt.strftime(label_format)
    return buckets[BUCKET_COLUMNS + PRIMOGEM_SOURCES]


def _read(raw: Mapping[str, Any], key: str, default: Any, problems: list[str], where: str) -> Any:
    value = raw.get(key, default)
    if isinstance(default, int) and (isinstance(value, bool) or not isinstance(value, int)):
        problems.append(f"{where}.{key} must be an integer")
        return default
    if isinstance(default, str) and not isinstance(value, str):
        problems.append(f"{where}.{key} must be a string")
        return default
    return value


def _timestamp(raw: Mapping[str, Any], problems: list[str], where: str) -> str:
    value = raw.get("timestamp")
    if not isinstance(value, str):
        problems.append(f"{where}.timestamp is required")
        return "1970-01-01T00:00:00+00:00"
    try:
        parse_start_date(value)
    except ValueError:
        problems.append(f"{where}.timestamp {value!r} is not an ISO date")
        return "1970-01-01T00:00:00+00:00"
    return value


def _list(payload: Mapping[str, Any], key: str, problems: list[str]) -> list[Any]:
    value = payload.get(key, [])
    if not isinstance(value, list):
        problems.append(f"{key} must be a list")
        return []
    return value


def ledger_from_dict(payload: Mapping[str, Any]) -> Ledger:
    """Build a :class:`Ledger` from the camelCase JSON export shape.

    Raises
    ------
    InputValidationError
        Listing every malformed record.
    """

    if not isinstance(payload, Mapping):
        raise InputValidationError("ledger must be a JSON object")
    problems: list[str] = []

    snapshot: Optional[ResourceSnapshot] = None
    raw_snapshot = payload.get("snapshot")
    if raw_snapshot is not None:
        if not isinstance(raw_snapshot, Mapping):
            problems.append("snapshot must be an object")
        else:
            snapshot = ResourceSnapshot(
                timestamp=_timestamp(raw_snapshot, problems, "snapshot"),
                primogems=_read(raw_snapshot, "primogems", 0, problems, "snapshot"),
                genesis_crystals=_read(raw_snapshot, "genesisCrystals", 0, problems, "snapshot"),
                intertwined=_read(raw_snapshot, "intertwined", 0, problems, "snapshot"),
                acquaint=_read(raw_snapshot, "acquaint", 0, problems, "snapshot"),
                starglitter=_read(raw_snapshot, "starglitter", 0, problems, "snapshot"),
            )

    primogem_entries: list[PrimogemEntry] = []
    for index, raw in enumerate(_list(payload, "primogemEntries", problems)):
        where = f"primogemEntries[{index}]"
        if not isinstance(raw, Mapping):
            problems.append(f"{where} must be an object")
            continue
        source = _read(raw, "source", "other", problems, where)
        if source not in PRIMOGEM_SOURCES:
            problems.append(f"{where}.source {source!r} is not a known primogem source")
        primogem_entries.append(
            PrimogemEntry(
                timestamp=_timestamp(raw, problems, where),
                amount=_read(raw, "amount", 0, problems, where),
                source=source,
            )
        )

    fate_entries: list[FateEntry] = []
    for index, raw in enumerate(_list(payload, "fateEntries", problems)):
        where = f"fateEntries[{index}]"
        if not isinstance(raw, Mapping):
            problems.append(f"{where} must be an object")
            continue
        fate_type = _read(raw, "fateType", "intertwined", problems, where)
        if fate_type not in FATE_TYPES:
            problems.append(f"{where}.fateType {fate_type!r} must be one of {FATE_TYPES}")
            fate_type = "intertwined"
        fate_entries.append(
            FateEntry(
                timestamp=_timestamp(raw, problems, where),
                amount=_read(raw, "amount", 0, problems, where),
                fate_type=fate_type,
                source=_read(raw, "source", "other", problems, where),
            )
        )

    wishes: list[WishRecord] = []
    for index, raw in enumerate(_list(payload, "wishes", problems)):
        where = f"wishes[{index}]"
        if not isinstance(raw, Mapping):
            problems.append(f"{where} must be an object")
            continue
        banner_type = _read(raw, "bannerType", "character", problems, where)
        if banner_type not in WISH_BANNER_TYPES:
            problems.append(f"{where}.bannerType {banner_type!r} is not a banner type")
        wishes.append(WishRecord(timestamp=_timestamp(raw, problems, where), banner_type=banner_type))

    if problems:
        raise InputValidationError(problems)
    return Ledger(
        snapshot=snapshot,
        primogem_entries=tuple(primogem_entries),
        fate_entries=tuple(fate_entries),
        wishes=tuple(wishes),
    )


def load_ledger(path: str | Path) -> Ledger:
    """Load a ledger export from a JSON file.

    Raises
    ------
    OSError
        If the file cannot be read.
    InputValidationError
        If the file is not valid JSON or holds malformed records.
    """

    ledger_path = Path(path)
    try:
        payload = json.loads(ledger_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InputValidationError(f"{ledger_path} is not valid JSON: {exc}") from exc
    ledger = ledger_from_dict(payload)
    _LOGGER.info(
        "Loaded ledger from %s: %d primogem entries, %d fate entries, %d wishes",
        ledger_path,
        len(ledger.primogem_entries),
        len(ledger.fate_entries),
        len(ledger.wishes),
    )
    return ledger
