"""Excel export of post-processed test cases (one row per record)."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from ..generation.records import TestCaseRecord

logger = logging.getLogger(__name__)

SHEET_NAME = "TestCases"

# (header, record attribute, column width)
COLUMNS: Tuple[Tuple[str, str, int], ...] = (
    ("No.", "no", 5),
    ("제목", "title", 30),
    ("1Depth", "depth1", 15),
    ("2Depth", "depth2", 15),
    ("3Depth", "depth3", 15),
    ("사전조건", "precondition", 30),
    ("절차", "steps", 40),
    ("예상결과", "expected_result", 40),
)


def record_rows(records: Sequence[TestCaseRecord]) -> List[list]:
    return [[getattr(r, attr) for _, attr, _ in COLUMNS] for r in records]


def build_workbook(records: Sequence[TestCaseRecord]) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_NAME

    ws.append([header for header, _, _ in COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    wrap = Alignment(wrap_text=True, vertical="top")
    for row in record_rows(records):
        ws.append(row)
        for cell in ws[ws.max_row]:
            cell.alignment = wrap

    for index, (_, _, width) in enumerate(COLUMNS, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width
    ws.freeze_panes = "A2"
    return wb


def export_to_bytes(records: Sequence[TestCaseRecord]) -> bytes:
    bio = io.BytesIO()
    build_workbook(records).save(bio)
    return bio.getvalue()


def export_to_excel(records: Sequence[TestCaseRecord], path: Union[str, Path]) -> Path:
    """Write ``records`` to an .xlsx file, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    build_workbook(records).save(path)
    logger.info("Exported %d test cases to %s", len(records), path)
    return path
