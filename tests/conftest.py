import csv
from io import StringIO

import pytest


def to_csv_bytes(rows, delimiter=","):
    buf = StringIO()
    writer = csv.writer(buf, delimiter=delimiter, lineterminator="\n")
    for r in rows:
        writer.writerow(r)
    return buf.getvalue().encode("utf-8")


BLOCK = "2023-24 Gr 4 ELA NJSLA"


@pytest.fixture
def linkit_rows():
    # metadata block, split header, one data row
    return [
        ["Report", "Assessment Results"],
        ["District", "Demo District"],
        ["Generated", "2024-06-01"],
        ["Selected Tests", BLOCK],
        ["Student", "ID", "Grade", BLOCK, BLOCK],
        ["", "", "", "Result Date", "Scaled"],
        ["Jane Doe", "S100", "4", "2024-05-01", "725"],
    ]


@pytest.fixture
def linkit_full_rows():
    return [
        ["Report", "Assessment Results"],
        ["District", "Demo District"],
        ["Generated", "2024-06-01"],
        ["Selected Tests", BLOCK],
        ["Student", "ID", "Grade", BLOCK, "", "", "", ""],
        ["", "", "", "Result Date", "Level", "Scaled",
         "Reading - Literary Text (Level)", "Reading - Literary Text (Scaled)"],
        ["Doe, Jane", "S100", "4", "05/01/2024", "Meeting Expectations", "725", "Meeting", "740"],
        ["", "", "", "", "", "", "", ""],
        ["Smith, John", "S200", "4", "05/02/2024", "Partially Meeting Expectations", "701", "", ""],
    ]


@pytest.fixture
def roster_rows():
    return [
        ["Student ID", "First Name", "Last Name", "Grade", "DOB", "GPA", "Locker"],
        ["S1", "Jane", "Doe", "4", "2015-03-01", "3.5", "12"],
        ["S2", "John", "Smith", "5", "2014-02-01", "", ""],
    ]
