import pytest

from assessment_ingest.mapping import generate_mappings
from assessment_ingest.models import FieldMapping, SourceFormat
from assessment_ingest.transform import (
    find_assessment_blocks,
    infer_assessment_type,
    split_student_name,
    transform_assessment_row,
    transform_student_row,
)

from conftest import BLOCK


def _row(**extra):
    row = {
        "Student": "Doe, Jane",
        "ID": "S100",
        "Grade": "4",
        f"{BLOCK} - Result Date": "05/01/2024",
        f"{BLOCK} - Level": "Meeting Expectations",
        f"{BLOCK} - Scaled": "725",
    }
    row.update(extra)
    return row


def test_row_becomes_one_base_record():
    [rec] = list(transform_assessment_row(_row()))
    assert rec.scale_score == 725
    assert rec.performance_level_text == "Meeting Expectations"
    assert rec.assessment_type == "NJSLA_ELA"
    assert rec.subject == "ELA"
    assert rec.question_id == "overall"
    assert rec.test_date == "2024-05-01"
    assert rec.school_year == "2023-24"
    assert rec.grade == "4"
    assert rec.student_id == "S100"
    assert (rec.min_possible_score, rec.max_possible_score) == (650, 850)
    # grade 4 ELA: 725-749 is level 3
    assert rec.performance_level == 3
    assert rec.is_placeholder is False


def test_resolved_student_uuid_takes_precedence():
    [rec] = list(transform_assessment_row(_row(_student_uuid="uuid-1", _school_student_id="S100")))
    assert rec.student_id == "uuid-1"
    assert rec.school_student_id == "S100"


def test_subscores_fan_out_into_sibling_records():
    row = _row(**{
        f"{BLOCK} - Reading - Literary Text (Level)": "Meeting",
        f"{BLOCK} - Reading - Literary Text (Scaled)": "740",
        f"{BLOCK} - Writing - Conventions (Level)": "Approaching",
    })
    base, lit, conv = transform_assessment_row(row)
    assert base.question_id == "overall"
    assert set(base.subscores) == {"reading_literary_text", "writing_conventions"}
    assert lit.question_id == "reading_literary_text"
    assert lit.scale_score == 740
    assert lit.performance_level is None
    assert lit.assessment_name == f"{BLOCK} - Reading - Literary Text"
    assert conv.scale_score == 0
    assert conv.performance_level_text == "Approaching"
    assert {r.student_id for r in (base, lit, conv)} == {"S100"}


def test_row_without_blocks_yields_placeholder():
    [rec] = list(transform_assessment_row({"Student": "Jane", "ID": "S1", "Grade": "4"}))
    assert rec.is_placeholder is True
    assert rec.assessment_type == "NJSLA_ELA"
    assert rec.scale_score == 0


def test_unparseable_score_is_zero():
    [rec] = list(transform_assessment_row(_row(**{f"{BLOCK} - Scaled": "N/A"})))
    assert rec.scale_score == 0


def test_percent_used_when_no_scaled_column():
    block = "2024-25 Gr 4 ELA NJSLS Form B"
    row = {"Student": "Jane", "ID": "S1", "Grade": "4", f"{block} - Percent": "82"}
    [rec] = list(transform_assessment_row(row))
    assert rec.scale_score == 82
    assert rec.score_type == "percent_score"
    assert rec.assessment_type == "LINKIT_NJSLS_ELA"
    assert rec.assessment_form == "FORM_B"
    assert (rec.min_possible_score, rec.max_possible_score) == (0, 100)
    assert rec.performance_level == 4


def test_start_strong_level_comes_from_band_text():
    block = "2024-25 Gr 5 Math Start Strong"
    row = {
        "Student": "Jane", "ID": "S1", "Grade": "5",
        f"{block} - Percent": "30", f"{block} - Level": "Less Support May Be Needed",
    }
    [rec] = list(transform_assessment_row(row))
    assert rec.assessment_type == "START_STRONG_MATH"
    assert rec.performance_level == 3
    assert (rec.min_possible_score, rec.max_possible_score) == (None, None)


def test_grade_without_scoring_config_falls_back_to_level_text():
    block = "2024-25 Gr 8 ELA NJSLA"
    row = {"Student": "Jane", "ID": "S1", "Grade": "8", f"{block} - Scaled": "760", f"{block} - Level": "Approaching"}
    [rec] = list(transform_assessment_row(row))
    assert rec.performance_level == 3
    assert (rec.min_possible_score, rec.max_possible_score) == (650, 850)


def test_each_block_gets_its_own_record():
    row = {
        "Student": "Jane", "ID": "S1", "Grade": "5",
        "2024-25 Gr 5 Math NJSLA - Scaled": "760",
        "2024-25 Gr 5 ELA NJSLA - Scaled": "731",
    }
    math, ela = transform_assessment_row(row)
    assert (math.assessment_type, math.subject, math.scale_score) == ("NJSLA_MATH", "Mathematics", 760)
    assert (ela.assessment_type, ela.subject, ela.scale_score) == ("NJSLA_ELA", "ELA", 731)


def test_find_assessment_blocks_ignores_demographics():
    headers = ["Student", "ID", "Grade", f"{BLOCK} - Level", f"{BLOCK} - Scaled", "Teacher"]
    assert find_assessment_blocks(headers) == [BLOCK]


@pytest.mark.parametrize("name, expected", [
    ("2024-25 Gr 5 Math Start Strong", ("START_STRONG_MATH", None)),
    ("NJSLS Science Form B", ("LINKIT_NJSLS_SCIENCE", "FORM_B")),
    ("Gr 3 ELA NJSLS", ("LINKIT_NJSLS_ELA", "FORM_A")),
    ("Gr 6 Math NJSLA", ("NJSLA_MATH", None)),
    ("Gr 6 Mathematics", ("NJSLA_MATH", None)),
    ("Something else", ("NJSLA_ELA", None)),
])
def test_assessment_type_cascade(name, expected):
    assert infer_assessment_type(name) == expected


@pytest.mark.parametrize("full, expected", [
    ("Doe, Jane", ("Jane", "Doe")),
    ("Jane Q  Doe", ("Jane Q", "Doe")),
    ("Cher", ("Cher", "")),
    ("", ("", "")),
])
def test_split_student_name(full, expected):
    assert split_student_name(full) == expected


def test_student_row_coerces_and_collects_unmapped_columns():
    headers = ["Student ID", "First Name", "Last Name", "Grade", "DOB", "GPA", "Status", "Locker"]
    mappings = generate_mappings(headers, SourceFormat.GENERIC)
    row = {
        "Student ID": "S1", "First Name": "Jane", "Last Name": "Doe", "Grade": "K",
        "DOB": "5/1/2019", "GPA": "3.5", "Status": "Active", "Locker": "12",
    }
    rec = transform_student_row(row, mappings, school_id="SCH-1")
    assert rec.school_student_id == "S1"
    assert rec.grade_level == 0
    assert rec.dob == "2019-05-01"
    assert rec.current_gpa == 3.5
    assert rec.academic_status == "active"
    assert rec.special_needs == {"Locker": "12"}
    assert rec.school_id == "SCH-1"


def test_student_row_splits_full_name():
    mappings = [
        FieldMapping("ID", "school_student_id", required=True),
        FieldMapping("Name", "full_name"),
        FieldMapping("Grade", "grade_level"),
    ]
    rec = transform_student_row({"ID": "S2", "Name": "Smith, John", "Grade": "abc"}, mappings)
    assert (rec.first_name, rec.last_name) == ("John", "Smith")
    # kept for the validator to report
    assert rec.grade_level == "abc"


def test_student_row_uses_mapping_default_for_blank_cells():
    mappings = [
        FieldMapping("ID", "school_student_id"),
        FieldMapping("Status", "academic_status", default_value="inactive"),
    ]
    rec = transform_student_row({"ID": "S3", "Status": ""}, mappings)
    assert rec.academic_status == "inactive"
