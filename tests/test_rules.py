import json
import logging

import pytest

from pity_core.errors import ConfigurationError
from pity_core.rules import (
    CHARACTER_RULES,
    DEFAULT_BANNER_RULES,
    WEAPON_RULES,
    CharacterRules,
    StandardRules,
    WeaponRules,
    infer_banner_type,
    load_banner_rules,
    rules_for_banner,
    rules_from_mapping,
    rules_to_mapping,
)


def test_default_table_matches_game_constants():
    assert (CHARACTER_RULES.soft_pity_start, CHARACTER_RULES.hard_pity) == (73, 90)
    assert CHARACTER_RULES.radiance_threshold == 3
    assert (WEAPON_RULES.soft_pity_start, WEAPON_RULES.hard_pity) == (62, 77)
    assert WEAPON_RULES.max_fate_points == 2
    assert DEFAULT_BANNER_RULES["standard"].hard_pity == 90
    assert DEFAULT_BANNER_RULES["chronicled"].banner_type == "chronicled"


def test_variant_flags():
    assert CHARACTER_RULES.has_capturing_radiance
    assert not CHARACTER_RULES.has_fate_points
    assert WEAPON_RULES.has_fate_points
    assert not WEAPON_RULES.has_capturing_radiance
    standard = DEFAULT_BANNER_RULES["standard"]
    assert not standard.has_fate_points and not standard.has_capturing_radiance


@pytest.mark.parametrize(
    "kwargs",
    [
        {"soft_pity_start": 90, "hard_pity": 90},
        {"soft_pity_start": -1},
        {"base_rate": 0.0},
        {"base_rate": 1.5},
        {"soft_pity_rate_increase": -0.1},
        {"featured_rate": 0.0},
        {"radiance_threshold": 0},
    ],
)
def test_invalid_character_rules_rejected(kwargs):
    fields = {
        "soft_pity_start": 73,
        "hard_pity": 90,
        "base_rate": 0.006,
        "soft_pity_rate_increase": 0.06,
    }
    fields.update(kwargs)
    with pytest.raises(ConfigurationError):
        CharacterRules(**fields)


def test_invalid_weapon_and_standard_rules_rejected():
    with pytest.raises(ConfigurationError):
        WeaponRules(62, 77, 0.007, 0.07, max_fate_points=0)
    with pytest.raises(ConfigurationError):
        StandardRules(73, 90, 0.006, 0.06, kind="weapon")


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        rules_for_banner("beginner")


def test_rules_from_mapping_overrides_selected_fields():
    rules = rules_from_mapping("character", {"hardPity": 80, "softPityStart": 70})

    assert isinstance(rules, CharacterRules)
    assert rules.hard_pity == 80
    assert rules.soft_pity_start == 70
    assert rules.base_rate == CHARACTER_RULES.base_rate


def test_rules_from_mapping_rejects_foreign_mechanics():
    with pytest.raises(ConfigurationError):
        rules_from_mapping("weapon", {"radianceThreshold": 2})
    with pytest.raises(ConfigurationError):
        rules_from_mapping("standard", {"maxFatePoints": 1})


def test_rules_from_mapping_rejects_bad_values():
    with pytest.raises(ConfigurationError):
        rules_from_mapping("character", {"hardPity": "ninety"})
    with pytest.raises(ConfigurationError):
        rules_from_mapping("character", {"hardPity": 80.5})
    with pytest.raises(ConfigurationError):
        rules_from_mapping("character", {"pityCap": 10})


def test_rules_to_mapping_round_trips_through_from_mapping():
    payload = rules_to_mapping(WEAPON_RULES)

    assert payload["bannerType"] == "weapon"
    assert payload["maxFatePoints"] == 2
    assert rules_from_mapping("weapon", payload) == WEAPON_RULES


def test_load_banner_rules_without_path_returns_defaults():
    assert load_banner_rules() == DEFAULT_BANNER_RULES


def test_load_banner_rules_missing_file_falls_back(tmp_path, caplog):
    with caplog.at_level(logging.WARNING):
        table = load_banner_rules(tmp_path / "absent.json")

    assert table == DEFAULT_BANNER_RULES
    assert "not found" in caplog.text


def test_load_banner_rules_merges_overrides(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"weapon": {"maxFatePoints": 1, "hardPity": 80}}), encoding="utf-8")

    table = load_banner_rules(path)

    assert table["weapon"].max_fate_points == 1
    assert table["weapon"].hard_pity == 80
    assert table["character"] == CHARACTER_RULES


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps([1, 2]),
        json.dumps({"beginner": {}}),
        json.dumps({"character": {"hardPity": 10}}),
        json.dumps({"character": 5}),
    ],
)
def test_load_banner_rules_rejects_invalid_files(tmp_path, content):
    path = tmp_path / "rules.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_banner_rules(path)


def test_infer_banner_type_from_flags():
    assert infer_banner_type({"bannerType": "chronicled", "hasCapturingRadiance": False}) == "chronicled"
    assert infer_banner_type({"hasFatePoints": True}) == "weapon"
    assert infer_banner_type({"hasCapturingRadiance": False}) == "standard"
    assert infer_banner_type({"hardPity": 90}) == "character"


def test_rule_flags_must_be_booleans_that_match_the_banner():
    with pytest.raises(ConfigurationError, match="boolean"):
        rules_from_mapping("weapon", {"hasFatePoints": "yes"})
    with pytest.raises(ConfigurationError, match="hasFatePoints"):
        rules_from_mapping("standard", {"hasFatePoints": True})

    assert rules_from_mapping("weapon", rules_to_mapping(WEAPON_RULES)) == WEAPON_RULES
