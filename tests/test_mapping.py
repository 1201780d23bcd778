from assessment_ingest.mapping import generate_mappings, load_mapping_profile, persist_mapping_profile
from assessment_ingest.models import FieldMapping, SourceFormat
from assessment_ingest.snapshots import SnapshotStore

from conftest import BLOCK

LINKIT_HEADERS = [
    "Student", "ID", "Grade",
    f"{BLOCK} - Result Date",
    f"{BLOCK} - Level",
    f"{BLOCK} - Scaled",
]


def _by_target(mappings):
    out = {}
    for m in mappings:
        out.setdefault(m.target_field, []).append(m)
    return out


def test_linkit_demographics_are_required_exact_matches():
    ms = generate_mappings(LINKIT_HEADERS, SourceFormat.LINKIT)
    by = _by_target(ms)
    for src, tgt in (("Student", "student_name"), ("ID", "student_id"), ("Grade", "grade_level")):
        [m] = by[tgt]
        assert m.source_field == src
        assert m.required is True
        assert m.similarity == 1.0


def test_linkit_block_attributes_and_derived_fields():
    by = _by_target(generate_mappings(LINKIT_HEADERS, SourceFormat.LINKIT))
    assert by["test_date"][0].source_field == f"{BLOCK} - Result Date"
    assert by["performance_level_text"][0].source_field == f"{BLOCK} - Level"
    assert by["scale_score"][0].source_field == f"{BLOCK} - Scaled"
    assert by["school_year"][0].default_value == "2023-24"
    assert by["assessment_type"][0].default_value == "NJSLA_ELA"
    assert [m.source_field for m in by["subject"]] == ["ELA_DETECTED"]


def test_linkit_one_mapping_per_block():
    headers = ["Student", "ID", "Grade", "2024-25 Gr 5 Math NJSLA - Scaled", "2024-25 Gr 5 ELA NJSLA - Scaled"]
    by = _by_target(generate_mappings(headers, SourceFormat.LINKIT))
    assert len(by["scale_score"]) == 2
    assert [m.default_value for m in by["assessment_type"]] == ["NJSLA_MATH", "NJSLA_ELA"]
    assert {m.source_field for m in by["subject"]} == {"ELA_DETECTED", "MATH_DETECTED"}


def test_generic_alias_matches():
    headers = ["Student ID", "First Name", "Last Name", "Birth Date", "GPA", "Home School"]
    by = _by_target(generate_mappings(headers, SourceFormat.GENERIC))
    assert by["school_student_id"][0].source_field == "Student ID"
    assert by["school_student_id"][0].required is True
    assert by["first_name"][0].similarity == 1.0
    assert by["dob"][0].source_field == "Birth Date"
    assert by["current_gpa"][0].required is False
    assert by["school_id"][0].source_field == "Home School"


def test_generic_fuzzy_match_reports_similarity():
    by = _by_target(generate_mappings(["Frist Name", "Student ID", "Last Name"], SourceFormat.GENERIC))
    m = by["first_name"][0]
    assert m.source_field == "Frist Name"
    assert 0.4 <= m.similarity < 1.0
    assert m.required is True


def test_fuzzy_candidates_below_threshold_are_dropped():
    ms = generate_mappings(["Frist Name"], SourceFormat.GENERIC, threshold=0.99)
    assert ms == []


def test_every_generic_mapping_meets_threshold():
    headers = ["Stu ID", "Frist", "Surname", "Grd", "Locker", "Guardian Phone", "Zip"]
    for thr in (0.4, 0.6, 0.8):
        for m in generate_mappings(headers, SourceFormat.GENERIC, threshold=thr):
            assert m.similarity >= thr


def test_locker_is_not_mapped_at_default_threshold(roster_rows):
    ms = generate_mappings(roster_rows[0], SourceFormat.GENERIC)
    assert "Locker" not in [m.source_field for m in ms]
    assert [m.source_field for m in _by_target(ms)["school_student_id"]] == ["Student ID"]


def test_fuzzy_match_never_takes_a_claimed_target():
    # "Loca ID" is closest to the "local id" alias, which "Student ID" already holds
    ms = generate_mappings(["Student ID", "First Name", "Last Name", "Loca ID"], SourceFormat.GENERIC)
    assert [m.source_field for m in _by_target(ms)["school_student_id"]] == ["Student ID"]
    assert all(m.target_field != "school_student_id" for m in ms if m.source_field == "Loca ID")


def test_second_id_column_does_not_claim_natural_key():
    ms = generate_mappings(["Student ID", "State ID", "First Name", "Last Name"], SourceFormat.GENERIC)
    assert [m.source_field for m in ms] == ["Student ID", "First Name", "Last Name"]


def test_one_fuzzy_column_per_target():
    headers = ["Student ID", "Frist Name", "Firts Name", "Last Name"]
    ms = generate_mappings(headers, SourceFormat.GENERIC)
    [m] = _by_target(ms)["first_name"]
    assert m.source_field in ("Frist Name", "Firts Name")
    positions = [headers.index(x.source_field) for x in ms]
    assert positions == sorted(positions)


def test_unsupported_formats_return_no_mappings():
    assert generate_mappings(["Student ID"], SourceFormat.GENESIS) == []
    assert generate_mappings(["Student ID"], SourceFormat.NJSLA_DIRECT) == []


def test_profile_round_trip(tmp_path):
    store = SnapshotStore("profiles", root=tmp_path)
    headers = ["Pupil", "Forename", "Family"]
    confirmed = [
        FieldMapping("Pupil", "school_student_id", required=True),
        FieldMapping("Forename", "first_name", required=True),
        FieldMapping("Family", "last_name", required=True),
    ]
    sig = persist_mapping_profile(headers, confirmed, store=store)
    assert store.exists(sig)
    assert load_mapping_profile(headers, store=store) == confirmed
    assert generate_mappings(headers, SourceFormat.GENERIC, use_profile=True, store=store) == confirmed

    # a different header set falls back to computed mappings
    other = generate_mappings(["Student ID"], SourceFormat.GENERIC, use_profile=True, store=store)
    assert [m.target_field for m in other] == ["school_student_id"]


def test_profile_signature_ignores_case_and_spacing(tmp_path):
    store = SnapshotStore("profiles", root=tmp_path)
    confirmed = [FieldMapping("Pupil", "school_student_id")]
    persist_mapping_profile(["Pupil", "Forename"], confirmed, store=store)
    assert load_mapping_profile([" PUPIL ", "forename"], store=store) == confirmed
