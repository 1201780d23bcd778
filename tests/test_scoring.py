import pytest

from assessment_ingest.scoring import (
    ASSESSMENT_CONFIGS,
    config_key,
    find_config,
    load_configs,
    performance_level,
    record_level,
    score_range,
)


@pytest.mark.parametrize("atype, grade, form, expected", [
    ("NJSLA_ELA", "04", None, "NJSLA_ELA_4"),
    ("NJSLA_MATH", 5, None, "NJSLA_MATH_5"),
    ("LINKIT_NJSLS_ELA", "4", None, "LINKIT_NJSLS_ELA_4_FORM_A"),
    ("LINKIT_NJSLS_MATH", "5", "FORM_B", "LINKIT_NJSLS_MATH_5_FORM_B"),
    ("START_STRONG_ELA", "4", None, "START_STRONG_ELA_4"),
])
def test_config_key(atype, grade, form, expected):
    assert config_key(atype, grade, form) == expected


def test_registry_covers_njsla_grades_3_to_5():
    for subject in ("ELA", "MATH", "SCIENCE"):
        for grade in ("3", "4", "5"):
            cfg = find_config(f"NJSLA_{subject}", grade)
            assert cfg is not None
            assert (cfg.min_score, cfg.max_score) == (650, 850)
    assert len(find_config("NJSLA_SCIENCE", "5").bands) == 4
    assert find_config("NJSLA_ELA", "8") is None


@pytest.mark.parametrize("atype, grade, score, expected", [
    ("NJSLA_ELA", "3", 699, 1),
    ("NJSLA_ELA", "3", 700, 2),
    ("NJSLA_ELA", "3", 810, 5),
    ("NJSLA_ELA", "4", 789, 4),
    ("NJSLA_ELA", "4", 790, 5),
    ("NJSLA_ELA", "5", 798, 4),
    ("NJSLA_MATH", "4", 795, 4),
    ("NJSLA_MATH", "4", 796, 5),
    ("NJSLA_SCIENCE", "5", 760, 4),
])
def test_cut_points(atype, grade, score, expected):
    assert performance_level(score, "", find_config(atype, grade)) == expected


def test_score_wins_over_text_for_scored_programs():
    cfg = find_config("NJSLA_ELA", "4")
    assert performance_level(725, "Exceeding Expectations", cfg) == 3
    # missing score reads as 0
    assert performance_level(0, "Exceeding Expectations", cfg) == 5


def test_text_wins_for_start_strong():
    cfg = find_config("START_STRONG_ELA", "4")
    assert cfg.level_source == "text"
    assert performance_level(95, "Strong Support May Be Needed", cfg) == 1
    assert performance_level(95, "", cfg) == 4


def test_vendor_wording_for_linkit_forms():
    cfg = find_config("LINKIT_NJSLS_ELA", "5", "FORM_B")
    assert performance_level(None, "Bubble", cfg) == 3
    assert performance_level(45, "", cfg) == 2


def test_no_config_uses_generic_wording():
    assert performance_level(760, "Met Expectations", None) == 4
    assert performance_level(760, "", None) is None


def test_score_range():
    assert score_range("NJSLA_MATH", "3") == (650, 850)
    assert score_range("NJSLA_MATH") == (650, 850)
    assert score_range("LINKIT_NJSLS_ELA", "4", "FORM_B") == (0, 100)
    assert score_range("START_STRONG_MATH", "5") == (None, None)
    assert score_range("SOMETHING_ELSE", "4") == (None, None)


def test_record_level_prefers_stored_level():
    rec = {"assessment_type": "NJSLA_ELA", "grade": "4", "scale_score": 725, "performance_level": 1}
    assert record_level(rec) == 1
    rec["performance_level"] = float("nan")
    assert record_level(rec) == 3
    rec.update(performance_level=None, grade="", grade_level="4")
    assert record_level(rec) == 3


def test_bad_config_entries_are_skipped():
    raw = {
        "GOOD_4": {"assessment_type": "GOOD", "score_range": [0, 10],
                   "levels": [{"level": 1, "min": 0, "max": 10}]},
        "NO_TYPE_4": {"score_range": [0, 10]},
        "NOT_A_DICT": [1, 2],
    }
    configs = load_configs(raw)
    assert list(configs) == ["GOOD_4"]
    assert find_config("GOOD", "4", configs=configs).band_for_score("7").level == 1


def test_registry_is_loaded_from_package_data():
    assert "NJSLA_ELA_4" in ASSESSMENT_CONFIGS
    assert ASSESSMENT_CONFIGS["NJSLA_ELA_4"].bands[0].description
