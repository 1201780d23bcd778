from assessment_ingest.classify import classify, header_window
from assessment_ingest.models import SourceFormat


def test_vendor_branding_wins():
    rows = [["LinkIt! Export"], ["Name", "Value"]]
    assert classify(rows) == SourceFormat.LINKIT


def test_demographics_and_subject_token(linkit_rows):
    assert classify(linkit_rows) == SourceFormat.LINKIT


def test_demographics_and_column_fingerprint():
    rows = [["Student Name", "Student ID", "Grade", "Scale Score"], ["Jane", "1", "4", "700"]]
    assert classify(rows) == SourceFormat.LINKIT


def test_competing_sis_export():
    rows = [["Genesis SIS export"], ["Student ID", "Name"], ["1", "Jane"]]
    assert classify(rows) == SourceFormat.GENESIS


def test_direct_assessment_export():
    rows = [["NJSLA Results"], ["Name", "Scale"], ["Jane", "745"]]
    assert classify(rows) == SourceFormat.NJSLA_DIRECT


def test_plain_roster_is_generic(roster_rows):
    assert classify(roster_rows) == SourceFormat.GENERIC


def test_full_dates_are_not_school_years():
    rows = [["Student ID", "Grade", "Enrollment Date"], ["1", "4", "2024-09-03"]]
    assert classify(rows) == SourceFormat.GENERIC


def test_tokens_inside_words_do_not_count():
    rows = [["Student ID", "Grade", "Emergency Relationship", "Analysis"]]
    # "relationship" holds "ela" and "analysis" holds "sis"
    assert classify(rows) == SourceFormat.GENERIC


def test_only_scan_window_is_consulted():
    rows = [["Note"]] * 8 + [["Powered by LinkIt"], ["Student", "ID", "Grade", "Score"]]
    assert classify(rows) == SourceFormat.GENERIC
    assert classify(rows, scan_rows=12) == SourceFormat.LINKIT


def test_classification_is_deterministic(linkit_rows, roster_rows):
    for rows in (linkit_rows, roster_rows):
        assert classify(rows) == classify([list(r) for r in rows])


def test_subject_word_in_data_rows_does_not_count(roster_rows):
    rows = roster_rows + [["S3", "Ela", "Njsla", "4", "2015-05-05", "", ""]]
    assert classify(rows) == SourceFormat.GENERIC


def test_school_named_after_sis_in_data_rows_does_not_count():
    rows = [
        ["Student ID", "First Name", "Last Name", "Grade", "School"],
        ["S1", "Jane", "Doe", "4", "Genesis Academy"],
    ]
    assert classify(rows) == SourceFormat.GENERIC


def test_window_stops_at_header(linkit_rows, roster_rows):
    assert header_window(roster_rows) == roster_rows[:1]
    # split header keeps its sub-label row, data rows are dropped
    assert header_window(linkit_rows) == linkit_rows[:6]


def test_blank_id_data_row_is_not_a_sub_label_row():
    rows = [
        ["Student ID", "First Name", "Last Name", "Grade"],
        ["", "Ela", "Lee", "4"],
    ]
    assert header_window(rows) == rows[:1]
    assert classify(rows) == SourceFormat.GENERIC
