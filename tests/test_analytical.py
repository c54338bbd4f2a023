import pytest

from pity_core.analytical import (
    CONFIDENCE_LEVELS,
    MAX_ANALYTICAL_PULLS,
    calculate_distribution,
    calculate_required_income,
    calculate_single_target,
    classify_feasibility,
    pulls_for_probability,
)
from pity_core.errors import InputValidationError
from pity_core.rules import CHARACTER_RULES, STANDARD_RULES, WEAPON_RULES


def test_distribution_is_monotone_and_bounded():
    distribution = calculate_distribution(0, False, 200, CHARACTER_RULES)

    values = [point.cumulative_probability for point in distribution]
    assert [point.pulls for point in distribution] == list(range(1, 201))
    assert values == sorted(values)
    assert all(0.0 <= value <= 1.0 for value in values)


def test_guaranteed_state_is_certain_by_hard_pity():
    distribution = calculate_distribution(0, True, 90, CHARACTER_RULES)

    assert distribution[88].cumulative_probability < 1.0
    assert distribution[89].cumulative_probability == pytest.approx(1.0, abs=1e-4)


def test_fifty_fifty_needs_two_pity_cycles_for_certainty():
    distribution = calculate_distribution(0, False, 180, STANDARD_RULES)

    assert 0.5 <= distribution[89].cumulative_probability < 0.6
    assert distribution[179].cumulative_probability == pytest.approx(1.0, abs=1e-4)


def test_single_pull_at_hard_pity():
    distribution = calculate_distribution(89, True, 1, CHARACTER_RULES)

    assert distribution[0].cumulative_probability == pytest.approx(1.0)


def test_full_fate_points_make_weapon_certain_by_hard_pity():
    distribution = calculate_distribution(0, False, 77, WEAPON_RULES, fate_points=2)

    assert distribution[76].cumulative_probability == pytest.approx(1.0, abs=1e-4)


def test_weapon_without_fate_points_is_less_likely():
    fresh = calculate_distribution(0, False, 77, WEAPON_RULES)
    full = calculate_distribution(0, False, 77, WEAPON_RULES, fate_points=2)

    assert fresh[76].cumulative_probability < full[76].cumulative_probability


def test_distribution_length_is_capped():
    distribution = calculate_distribution(0, False, 10_000, CHARACTER_RULES)

    assert len(distribution) == MAX_ANALYTICAL_PULLS


def test_distribution_rejects_pity_outside_range():
    with pytest.raises(InputValidationError):
        calculate_distribution(90, False, 10, CHARACTER_RULES)


def test_pulls_for_probability():
    assert pulls_for_probability(0.99, 89, True, CHARACTER_RULES) == 1
    half = pulls_for_probability(0.5, 0, False, CHARACTER_RULES)
    ninety = pulls_for_probability(0.9, 0, False, CHARACTER_RULES)
    assert 1 <= half <= ninety <= 180


def test_single_target_summary():
    result = calculate_single_target(0, False, 90, CHARACTER_RULES)

    assert set(result.pulls_for) == set(CONFIDENCE_LEVELS)
    assert len(result.distribution) == 90
    assert result.probability_with_current_pulls == result.distribution[-1].cumulative_probability


def test_single_target_with_no_pulls():
    result = calculate_single_target(0, False, 0, CHARACTER_RULES)

    assert result.probability_with_current_pulls == 0.0
    assert len(result.distribution) == 1


def test_required_income_for_a_certain_pull():
    income = calculate_required_income(1, 0.99, 1, 89, True, CHARACTER_RULES)

    assert income.required_pulls_per_day == pytest.approx(1.0)
    assert income.required_primos_per_day == pytest.approx(160.0)
    assert income.feasibility == "difficult"


def test_required_income_over_long_horizon_is_easy():
    income = calculate_required_income(1, 0.99, 100, 89, True, CHARACTER_RULES)

    assert income.feasibility == "easy"
    assert income.compared_to_f2p == pytest.approx(1.6 / 60)


def test_feasibility_thresholds():
    assert classify_feasibility(60) == "easy"
    assert classify_feasibility(150) == "possible"
    assert classify_feasibility(255) == "difficult"
    assert classify_feasibility(256) == "unlikely"


def test_required_income_rejects_bad_arguments():
    with pytest.raises(InputValidationError) as excinfo:
        calculate_required_income(0, 1.5, 0, 0, False, CHARACTER_RULES)

    assert len(excinfo.value.problems) == 3
