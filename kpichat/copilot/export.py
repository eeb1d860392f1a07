"""
Detail export -- result rows to an xlsx workbook (pandas + openpyxl).
"""
from __future__ import annotations

import io
from typing import Any

import pandas as pd

SHEET_NAME = "Detail"
EMPTY_MESSAGE = "No data found matching the criteria."
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def export_rows(rows: list[dict[str, Any]]) -> bytes:
    """Serialise *rows* as a single-sheet workbook; an empty result gets a notice row."""
    if rows:
        df = pd.DataFrame(rows)
        header = True
    else:
        df = pd.DataFrame([[EMPTY_MESSAGE]])
        header = False

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=SHEET_NAME, index=False, header=header)
    return buffer.getvalue()
