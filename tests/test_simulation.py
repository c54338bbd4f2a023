import math
from datetime import datetime, timezone

import pytest

from pity_core.errors import ConfigurationError, InputValidationError
from pity_core.models import (
    SimulationConfig,
    SimulationInput,
    SimulationTarget,
    TargetPityOverride,
)
from pity_core.rules import WEAPON_RULES
from pity_core.simulation import (
    TrialAggregate,
    copy_label,
    finalize,
    iter_chunks,
    lower_median,
    prepare_plan,
    run_simulation,
    run_trials,
    shard_ranges,
    validate_input,
)

AS_OF = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _target(key="Featured", start="2025-01-11", **kwargs):
    return SimulationTarget(character_key=key, expected_start_date=start, **kwargs)


def _input(targets=(), iterations=500, seed=1234, **kwargs):
    kwargs.setdefault("as_of", AS_OF)
    return SimulationInput(
        targets=tuple(targets),
        config=SimulationConfig(iterations=iterations, seed=seed),
        **kwargs,
    )


def test_lower_median_picks_lower_middle():
    assert lower_median([10, 20, 30, 40]) == 20
    assert lower_median([40, 10, 30, 20]) == 20
    assert lower_median([5, 1, 3]) == 3
    assert lower_median([]) == 0


def test_copy_labels():
    assert [copy_label("character", k) for k in (1, 2, 7)] == ["C0", "C1", "C6"]
    assert [copy_label("weapon", k) for k in (1, 5)] == ["R1", "R5"]


def test_empty_targets_are_vacuous_success():
    result = run_simulation(_input(iterations=1000))

    assert result.all_must_haves_probability == 1
    assert result.per_character == ()
    assert result.pull_timeline == ()
    assert result.nothing_probability == 1
    assert result.iterations_completed == 1000


def test_same_seed_gives_identical_results():
    sim_input = _input(
        [_target(priority=1), _target("Second", "2025-02-01", priority=2)],
        starting_pulls=120,
        income_per_day=1.5,
    )

    assert run_simulation(sim_input) == run_simulation(sim_input)


def test_hard_pity_single_pull_always_succeeds():
    result = run_simulation(
        _input([_target(priority=1)], starting_pity=89, starting_guaranteed=True, starting_pulls=1)
    )

    target = result.per_character[0]
    assert target.probability == 1.0
    assert target.average_pulls_used == 1.0
    assert target.median_pulls_used == 1
    assert result.all_must_haves_probability == 1.0


def test_no_budget_means_no_success():
    result = run_simulation(_input([_target(priority=1)], starting_pulls=0))

    target = result.per_character[0]
    assert target.probability == 0.0
    assert target.average_pulls_used == 0.0
    assert result.all_must_haves_probability == 0.0
    assert result.nothing_probability == 1.0


def test_non_must_have_failures_do_not_affect_all_musts():
    result = run_simulation(_input([_target(priority=2)], starting_pulls=0))

    assert result.all_must_haves_probability == 1.0


def test_probabilities_stay_in_bounds():
    result = run_simulation(
        _input(
            [_target(priority=1), _target("Weapon", "2025-01-20", banner_type="weapon", priority=1)],
            starting_pulls=150,
            income_per_day=2.0,
        )
    )

    assert 0.0 <= result.all_must_haves_probability <= 1.0
    for target in result.per_character:
        assert 0.0 <= target.probability <= 1.0


def test_max_pull_budget_caps_spend():
    result = run_simulation(_input([_target(max_pull_budget=10)], starting_pulls=500))

    assert result.per_character[0].average_pulls_used <= 10
    assert result.per_character[0].median_pulls_used <= 10


def test_budget_conservation_per_trial():
    sim_input = _input(
        [
            _target("A", "2025-01-05"),
            _target("B", "2025-01-25", max_pull_budget=40),
            _target("C", "2025-02-15", banner_type="weapon"),
        ],
        iterations=300,
        starting_pulls=60,
        income_per_day=1.3,
    )
    plan = prepare_plan(sim_input)
    aggregate = run_trials(plan, 0, plan.iterations)

    for trial in range(aggregate.trials):
        spent = 0
        accrued = plan.starting_pulls
        for index, target in enumerate(plan.targets):
            accrued += target.accrual
            spent += aggregate.pulls_used[index][trial]
            assert spent <= accrued


def test_targets_are_simulated_in_date_order():
    result = run_simulation(
        _input([_target("Later", "2025-03-01"), _target("Sooner", "2025-02-01")], starting_pulls=10)
    )

    assert [t.character_key for t in result.per_character] == ["Sooner", "Later"]
    assert [p.date for p in result.pull_timeline] == ["2025-02-01", "2025-03-01"]


def test_timeline_projects_accrued_income():
    result = run_simulation(
        _input([_target(start="2025-01-11", max_pull_budget=0)], starting_pulls=100, income_per_day=1.0)
    )

    point = result.pull_timeline[0]
    assert point.projected_pulls == 110
    assert point.event == "Featured banner"


def test_accrual_is_floored_and_past_dates_accrue_nothing():
    plan = prepare_plan(
        _input(
            [_target(start="2024-12-01"), _target(start="2025-01-04T12:00:00")],
            income_per_day=0.9,
        )
    )

    assert [t.accrual for t in plan.targets] == [0, 3]


def test_copies_needed_reports_every_copy_level():
    result = run_simulation(
        _input(
            [_target(copies_needed=3), _target("Blade", banner_type="weapon", copies_needed=2)],
            starting_pulls=2000,
        )
    )

    character, weapon = result.per_character
    assert [c.label for c in character.constellations] == ["C0", "C1", "C2"]
    assert [c.label for c in weapon.constellations] == ["R1", "R2"]
    first, _, last = character.constellations
    assert first.probability >= last.probability
    assert last.probability == character.probability


def test_per_target_override_applies_to_its_target():
    result = run_simulation(
        _input(
            [_target("Blade", banner_type="weapon", priority=1, max_pull_budget=1)],
            starting_pulls=10,
            per_target_states=(TargetPityOverride(pity=76, fate_points=2),),
        )
    )

    assert result.per_character[0].probability == 1.0


def test_weapon_snapshot_belongs_to_weapon_banner():
    result = run_simulation(
        _input(
            [_target("Blade", banner_type="weapon", max_pull_budget=1)],
            starting_pulls=5,
            rules=WEAPON_RULES,
            starting_pity=76,
            starting_fate_points=2,
        )
    )

    assert result.per_character[0].probability == 1.0


def test_starting_fate_points_carry_to_weapon_banner_from_character_snapshot():
    plan = prepare_plan(_input([_target()], starting_pity=10, starting_fate_points=1))

    assert plan.starting_states["character"].pity == 10
    assert plan.starting_states["weapon"].fate_points == 1
    assert plan.starting_states["weapon"].pity == 0


def test_sharded_trials_match_single_run():
    plan = prepare_plan(
        _input(
            [_target(priority=1), _target("B", "2025-02-01", copies_needed=2)],
            iterations=200,
            starting_pulls=150,
            income_per_day=1.0,
        )
    )
    whole = finalize(plan, run_trials(plan, 0, 200))

    merged = TrialAggregate.empty(len(plan.targets))
    for start, stop in reversed(shard_ranges(200, 3)):
        merged.merge(run_trials(plan, start, stop))

    assert finalize(plan, merged) == whole


def test_shard_ranges_cover_iterations():
    assert shard_ranges(10, 3) == [(0, 4), (4, 7), (7, 10)]
    assert shard_ranges(2, 5) == [(0, 1), (1, 2)]
    assert list(iter_chunks(0, 5, 2)) == [(0, 2), (2, 4), (4, 5)]


def test_finalize_uses_lower_middle_median():
    plan = prepare_plan(_input([_target()], iterations=4))
    aggregate = TrialAggregate(
        trials=4,
        all_must_successes=4,
        nothing_count=0,
        pulls_used=[[40, 10, 30, 20]],
        copies=[[1, 1, 1, 1]],
    )

    target = finalize(plan, aggregate).per_character[0]
    assert target.median_pulls_used == 20
    assert target.average_pulls_used == 25.0


def test_finalize_with_no_trials_is_a_flagged_partial():
    plan = prepare_plan(_input([_target(priority=1)]))

    result = finalize(plan, TrialAggregate.empty(1), timed_out=True)

    assert result.timed_out
    assert result.iterations_completed == 0
    assert result.all_must_haves_probability == 1.0
    assert result.per_character[0].probability == 0.0
    assert result.nothing_probability == 0.0


def test_merge_rejects_mismatched_aggregates():
    with pytest.raises(ValueError):
        TrialAggregate.empty(1).merge(TrialAggregate.empty(2))


def test_progress_reports_each_chunk():
    calls = []
    run_simulation(_input([_target()], iterations=100, starting_pulls=5), progress=calls.append)

    assert len(calls) == 50
    assert calls == sorted(calls)
    assert calls[-1] == 1.0


def test_unseeded_runs_complete():
    result = run_simulation(_input([_target()], seed=None, starting_pulls=90))

    assert result.iterations_completed == 500


def test_zero_iterations_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        run_simulation(_input([_target()], iterations=0))


def test_validation_lists_every_problem():
    sim_input = _input(
        [
            _target(start="next tuesday"),
            _target(priority=6, max_pull_budget=-1),
            _target(banner_type="beginner"),
            _target(copies_needed=0),
        ],
        starting_pity=90,
        income_per_day=-1.0,
    )

    with pytest.raises(InputValidationError) as excinfo:
        validate_input(sim_input)

    problems = excinfo.value.problems
    assert any("expected_start_date" in p for p in problems)
    assert any("priority" in p for p in problems)
    assert any("max_pull_budget" in p for p in problems)
    assert any("beginner" in p for p in problems)
    assert any("copies_needed" in p for p in problems)
    assert any("starting_pity" in p for p in problems)
    assert any("income_per_day" in p for p in problems)


def test_override_list_must_match_targets():
    sim_input = _input([_target(), _target("B")], per_target_states=(None,))

    with pytest.raises(InputValidationError, match="per_target_states"):
        validate_input(sim_input)


def test_override_pity_must_be_below_hard_pity():
    sim_input = _input(
        [_target(banner_type="weapon")],
        per_target_states=(TargetPityOverride(pity=80),),
    )

    with pytest.raises(InputValidationError, match="hard pity"):
        validate_input(sim_input)


@pytest.mark.parametrize("income", [math.inf, math.nan])
def test_income_must_be_finite(income):
    with pytest.raises(InputValidationError, match="income_per_day"):
        validate_input(_input([_target()], income_per_day=income))


def test_boolean_priority_is_rejected():
    with pytest.raises(InputValidationError, match="priority"):
        validate_input(_input([_target(priority=True)]))
