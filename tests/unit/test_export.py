"""
Unit tests -- detail rows to xlsx.
"""
import io

import openpyxl
import pandas as pd

from kpichat.copilot.export import EMPTY_MESSAGE, SHEET_NAME, export_rows


def test_rows_written_with_header():
    data = export_rows([
        {"st_EmpID": "E001", "st_DeptName": "CT"},
        {"st_EmpID": "E002", "st_DeptName": "SPS"},
    ])
    df = pd.read_excel(io.BytesIO(data), sheet_name=SHEET_NAME, engine="openpyxl")
    assert list(df.columns) == ["st_EmpID", "st_DeptName"]
    assert df["st_EmpID"].tolist() == ["E001", "E002"]


def test_empty_result_writes_notice():
    wb = openpyxl.load_workbook(io.BytesIO(export_rows([])))
    ws = wb[SHEET_NAME]
    assert ws["A1"].value == EMPTY_MESSAGE
    assert ws.max_row == 1
    assert ws.max_column == 1


def test_output_is_xlsx_zip():
    assert export_rows([{"a": 1}])[:2] == b"PK"
