import pytest

from assessment_ingest.errors import HeaderResolutionError
from assessment_ingest.header_detect import detect_header_row, resolve_multi_header, resolve_single_header

from conftest import BLOCK


def test_split_header_below_metadata_block(linkit_rows):
    t = resolve_multi_header(linkit_rows)
    assert t.headers == [
        "Student", "ID", "Grade",
        f"{BLOCK} - Result Date",
        f"{BLOCK} - Scaled",
    ]
    assert t.rows == [{
        "Student": "Jane Doe",
        "ID": "S100",
        "Grade": "4",
        f"{BLOCK} - Result Date": "2024-05-01",
        f"{BLOCK} - Scaled": "725",
    }]
    assert t.header_row == 5
    assert t.data_start_row == 7
    assert t.origin_rows == [7]
    assert t.metadata["District"] == "Demo District"
    assert t.metadata["Selected Tests"] == BLOCK


def test_merged_block_label_is_carried_forward(linkit_full_rows):
    t = resolve_multi_header(linkit_full_rows)
    assert t.headers[3:6] == [
        f"{BLOCK} - Result Date",
        f"{BLOCK} - Level",
        f"{BLOCK} - Scaled",
    ]
    assert t.headers[6] == f"{BLOCK} - Reading - Literary Text (Level)"


def test_blank_data_rows_are_skipped_with_source_positions(linkit_full_rows):
    t = resolve_multi_header(linkit_full_rows)
    assert [r["ID"] for r in t.rows] == ["S100", "S200"]
    assert t.origin_rows == [7, 9]


def test_sub_label_equal_to_main_or_blank_keeps_main():
    rows = [["x"]] * 3 + [
        ["Student", "ID", "Grade", "", "Math Gr 4", "Math Gr 4"],
        ["", "", "", "", "", "Math Gr 4"],
        ["Jane", "1", "4", "z", "a", "b"],
    ]
    t = resolve_multi_header(rows)
    # blank demographic label gets a synthetic name, repeated names are suffixed
    assert t.headers == ["Student", "ID", "Grade", "col_4", "Math Gr 4", "Math Gr 4__2"]


def test_main_header_found_on_later_scan_row():
    rows = [["a", "b"]] * 5 + [["Student", "ID", "Grade", BLOCK], ["", "", "", "Level"], ["Jane", "1", "4", "Meeting"]]
    t = resolve_multi_header(rows, scan_end=6)
    assert t.header_row == 6
    assert t.headers[-1] == f"{BLOCK} - Level"


def test_too_few_rows_raises():
    with pytest.raises(HeaderResolutionError):
        resolve_multi_header([["Student", "ID", "Grade"], ["", "", ""], ["Jane", "1", "4"]])


def test_no_demographic_row_raises():
    rows = [["a", "b"]] * 8
    with pytest.raises(HeaderResolutionError):
        resolve_multi_header(rows)


def test_single_header_below_metadata():
    rows = [
        ["Roster export"],
        ["Generated", "2024-01-01"],
        ["Student ID", "First Name", "Last Name", "Grade"],
        ["S1", "Jane", "Doe", "4"],
    ]
    assert detect_header_row(rows) == 2
    t = resolve_single_header(rows)
    assert t.headers == ["Student ID", "First Name", "Last Name", "Grade"]
    assert t.header_row == 3
    assert t.rows == [{"Student ID": "S1", "First Name": "Jane", "Last Name": "Doe", "Grade": "4"}]
    assert t.origin_rows == [4]


def test_single_header_duplicate_and_blank_names():
    rows = [["Name", "Name", "", "Grade"], ["a", "b", "c", "4"]]
    t = resolve_single_header(rows)
    assert t.headers == ["Name", "Name__2", "col_3", "Grade"]


def test_no_header_row_gives_synthetic_columns():
    rows = [["1", "2"], ["3", "4"]]
    assert detect_header_row(rows) is None
    t = resolve_single_header(rows)
    assert t.headers == ["Column_1", "Column_2"]
    assert len(t.rows) == 2
    assert t.header_row == 0
