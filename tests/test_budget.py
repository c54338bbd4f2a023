import json
from datetime import datetime, timezone

import pytest

from pity_core.budget import (
    BUCKET_COLUMNS,
    PRIMOGEM_SOURCES,
    FateEntry,
    Ledger,
    PrimogemEntry,
    ResourceSnapshot,
    ResourceTotals,
    WishRecord,
    bucket_primogem_entries,
    calculate_available_pulls,
    calculate_wish_spending,
    daily_primogem_rate_from_wishes,
    get_available_pulls,
    income_per_day_from_wishes,
    ledger_from_dict,
    load_ledger,
    split_primogem_income,
)
from pity_core.errors import InputValidationError

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _snapshot(**kwargs):
    fields = {"timestamp": "2025-02-01T00:00:00+00:00", "primogems": 1600, "intertwined": 5}
    fields.update(kwargs)
    return ResourceSnapshot(**fields)


def test_available_pulls_conversion():
    resources = ResourceTotals(primogems=300, genesis_crystals=20, intertwined=3, acquaint=1, starglitter=12)

    assert calculate_available_pulls(resources) == pytest.approx(2 + 3 + 1 + 2)


def test_snapshot_plus_deltas_minus_wishes():
    ledger = Ledger(
        snapshot=_snapshot(),
        primogem_entries=(
            PrimogemEntry("2025-01-20T00:00:00+00:00", 5000, "event"),
            PrimogemEntry("2025-02-10T00:00:00+00:00", 800, "event"),
            PrimogemEntry("2025-04-01T00:00:00+00:00", 9000, "event"),
        ),
        fate_entries=(FateEntry("2025-02-12T00:00:00+00:00", 1, "acquaint"),),
        wishes=(
            WishRecord("2025-01-30T00:00:00+00:00", "character"),
            WishRecord("2025-02-15T00:00:00+00:00", "character"),
            WishRecord("2025-02-15T00:01:00+00:00", "weapon"),
            WishRecord("2025-02-15T00:02:00+00:00", "character"),
        ),
    )

    result = get_available_pulls(ledger, now=NOW)

    assert result.resources.primogems == 1600 + 800 - 3 * 160
    assert result.resources.intertwined == 2
    assert result.resources.acquaint == 1
    assert result.available_pulls == 12 + 2 + 1


def test_resources_are_clamped_at_zero():
    ledger = Ledger(
        snapshot=_snapshot(primogems=100, intertwined=0),
        wishes=tuple(WishRecord(f"2025-02-1{i}T00:00:00+00:00") for i in range(5)),
    )

    result = get_available_pulls(ledger, now=NOW)

    assert result.resources.primogems == 0
    assert result.resources.intertwined == 0
    assert result.available_pulls == 0


def test_without_snapshot_every_entry_counts_and_wishes_are_ignored():
    ledger = Ledger(
        primogem_entries=(
            PrimogemEntry("2025-01-01T00:00:00+00:00", 400, "daily_commission"),
            PrimogemEntry("2025-01-02T00:00:00+00:00", -100, "cosmetic"),
        ),
        fate_entries=(FateEntry("2025-01-03T00:00:00+00:00", 4, "intertwined"),),
        wishes=(WishRecord("2025-01-04T00:00:00+00:00"),),
    )

    result = get_available_pulls(ledger, now=NOW)

    assert result.resources.primogems == 300
    assert result.resources.intertwined == 4
    assert result.available_pulls == 1 + 4


def test_wish_spending_maps_banners_to_fates():
    wishes = [
        WishRecord("2025-01-01T00:00:00+00:00", "standard"),
        WishRecord("2025-01-02T00:00:00+00:00", "character"),
        WishRecord("2025-01-03T00:00:00+00:00", "chronicled"),
    ]

    spending = calculate_wish_spending(wishes)
    since = calculate_wish_spending(wishes, since="2025-01-02T00:00:00+00:00")

    assert spending.pulls_by_fate == {"intertwined": 2, "acquaint": 1}
    assert spending.primogem_equivalent == 480
    assert since.total_pulls == 1


def test_split_primogem_income():
    totals = split_primogem_income(
        [
            PrimogemEntry("2025-01-01", 600, "event"),
            PrimogemEntry("2025-01-01", 1000, "purchase"),
            PrimogemEntry("2025-01-01", -200, "cosmetic"),
        ]
    )

    assert totals == {"earned": 600, "purchased": 1000, "spent": -200, "total": 1400}


def test_daily_rate_from_recent_wishes():
    wishes = [WishRecord(f"2025-02-2{day}T10:00:00+00:00") for day in range(1, 6) for _ in range(2)]

    assert daily_primogem_rate_from_wishes(wishes, now=NOW) == pytest.approx(10 * 160 / 5)
    assert income_per_day_from_wishes(wishes, now=NOW) == pytest.approx(2.0)


def test_daily_rate_ignores_old_wishes():
    wishes = [WishRecord("2024-12-01T00:00:00+00:00")]

    assert daily_primogem_rate_from_wishes(wishes, now=NOW) == 0.0
    assert income_per_day_from_wishes([], now=NOW) == 0.0


def test_weekly_buckets_start_on_monday():
    entries = [
        PrimogemEntry("2025-01-08T12:00:00+00:00", 100, "event"),
        PrimogemEntry("2025-01-12T23:00:00+00:00", 500, "purchase"),
        PrimogemEntry("2025-01-12T23:30:00+00:00", -50, "cosmetic"),
        PrimogemEntry("2025-01-13T01:00:00+00:00", 60, "daily_commission"),
    ]

    buckets = bucket_primogem_entries(entries)

    assert list(buckets.columns) == BUCKET_COLUMNS + PRIMOGEM_SOURCES
    assert list(buckets["label"]) == ["2025-01-06", "2025-01-13"]
    first = buckets.iloc[0]
    assert first["earned"] == 100
    assert first["purchased"] == 500
    assert first["spent"] == -50
    assert first["total"] == 550
    assert first["event"] == 100
    assert buckets.iloc[1]["daily_commission"] == 60


def test_monthly_buckets_and_filters():
    entries = [
        PrimogemEntry("2025-01-08", 100, "event"),
        PrimogemEntry("2025-01-20", 1000, "purchase"),
        PrimogemEntry("2025-02-02", 60, "abyss"),
    ]

    monthly = bucket_primogem_entries(entries, interval="month", include_purchases=False)
    abyss_only = bucket_primogem_entries(entries, interval="month", source="abyss")
    january = bucket_primogem_entries(entries, interval="month", end="2025-01-31")

    assert list(monthly["label"]) == ["2025-01", "2025-02"]
    assert list(monthly["total"]) == [100, 60]
    assert list(abyss_only["label"]) == ["2025-02"]
    assert list(january["total"]) == [1100]


def test_bucketing_nothing_returns_empty_frame():
    buckets = bucket_primogem_entries([])

    assert buckets.empty
    assert list(buckets.columns) == BUCKET_COLUMNS + PRIMOGEM_SOURCES


def test_bucketing_rejects_unknown_interval():
    with pytest.raises(InputValidationError):
        bucket_primogem_entries([], interval="day")


def test_ledger_from_dict_reads_camel_case_export():
    ledger = ledger_from_dict(
        {
            "snapshot": {"timestamp": "2025-02-01", "primogems": 320, "genesisCrystals": 160},
            "primogemEntries": [{"timestamp": "2025-02-02", "amount": 60, "source": "daily_commission"}],
            "fateEntries": [{"timestamp": "2025-02-03", "amount": 1, "fateType": "acquaint"}],
            "wishes": [{"timestamp": "2025-02-04", "bannerType": "weapon"}],
        }
    )

    assert ledger.snapshot.genesis_crystals == 160
    assert ledger.primogem_entries[0].amount == 60
    assert ledger.fate_entries[0].fate_type == "acquaint"
    assert ledger.wishes[0].banner_type == "weapon"


def test_ledger_from_dict_reports_every_problem():
    with pytest.raises(InputValidationError) as excinfo:
        ledger_from_dict(
            {
                "snapshot": {"primogems": "many"},
                "primogemEntries": [{"timestamp": "yesterday", "amount": 1, "source": "lottery"}],
                "fateEntries": "none",
                "wishes": [{"timestamp": "2025-01-01", "bannerType": "beginner"}],
            }
        )

    problems = excinfo.value.problems
    assert any("snapshot.timestamp" in p for p in problems)
    assert any("snapshot.primogems" in p for p in problems)
    assert any("lottery" in p for p in problems)
    assert any("yesterday" in p for p in problems)
    assert any("fateEntries" in p for p in problems)
    assert any("beginner" in p for p in problems)


def test_load_ledger(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text(
        json.dumps({"primogemEntries": [{"timestamp": "2025-01-01", "amount": 1600, "source": "event"}]}),
        encoding="utf-8",
    )

    ledger = load_ledger(path)

    assert get_available_pulls(ledger, now=NOW).available_pulls == 10


def test_load_ledger_rejects_invalid_json(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("{oops", encoding="utf-8")

    with pytest.raises(InputValidationError):
        load_ledger(path)
