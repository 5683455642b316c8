"""Append combined deal records to an Excel workbook using openpyxl."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

import structlog
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from deal_monitor.config import AppConfig
from deal_monitor.schemas import CombinedRecord

logger = structlog.get_logger(__name__)

# (header, record field key); metadata columns come first
_COLUMNS = [
    ("Timestamp", None),
    ("Email Date", None),
    ("Sender", None),
    ("Subject", None),
    ("Sender Name", "senderName"),
    ("Sender Phone Number", "senderPhoneNumber"),
    ("Property Street Address", "propertyStreetAddress"),
    ("Property City", "propertyCity"),
    ("Property State", "propertyState"),
    ("Property Zip", "propertyZip"),
    ("Bedrooms", "bedrooms"),
    ("Bathrooms", "bathrooms"),
    ("Garage Spaces", "garageSpaces"),
    ("Square Footage", "squareFootage"),
    ("Lot Size", "lotSize"),
    ("Year Built", "yearBuilt"),
    ("Earnest Money", "earnestMoney"),
    ("Closing Date", "closingDate"),
    ("Asking Price", "askingPrice"),
    ("Provided ARV", "providedARV"),
    ("Source URL", "sourceURL"),
    ("Notes", "notes"),
    ("Owner Name", "ownerName"),
]

SHEET_HEADERS: List[str] = [header for header, _ in _COLUMNS]

_HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
_HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)


def record_to_row(record: CombinedRecord, tz: Optional[ZoneInfo] = None) -> List[Any]:
    """Render a record as one row in ``SHEET_HEADERS`` order; absent values are None."""

    def cell(value: Any) -> Any:
        # Excel cannot store timezone-aware datetimes
        if isinstance(value, datetime) and value.tzinfo is not None:
            if tz is not None:
                value = value.astimezone(tz)
            return value.replace(tzinfo=None)
        return value

    row: List[Any] = [
        cell(record.logged_at),
        cell(record.email_date),
        record.sender,
        record.subject,
    ]
    for _, key in _COLUMNS[4:]:
        row.append(cell(record.get(key)))
    return row


class SheetSink:
    """Best-effort writer: one row per processed message, never raises."""

    def __init__(self, config: AppConfig) -> None:
        self._path = Path(config.spreadsheet_path)
        self._sheet_name = config.sheet_name
        self._enabled = config.log_to_sheet
        self._tz = ZoneInfo(config.display_timezone)

    def _open_workbook(self) -> Workbook:
        if self._path.exists():
            return load_workbook(self._path)
        wb = Workbook()
        wb.remove(wb.active)
        return wb

    def _create_sheet(self, wb: Workbook) -> Worksheet:
        ws = wb.create_sheet(self._sheet_name)
        ws.append(SHEET_HEADERS)
        for cell in ws[1]:
            cell.fill = _HEADER_FILL
            cell.font = _HEADER_FONT
            cell.alignment = Alignment(horizontal="center")
        for col_idx, header in enumerate(SHEET_HEADERS, start=1):
            ws.column_dimensions[ws.cell(row=1, column=col_idx).column_letter].width = max(len(header) + 4, 15)
        ws.freeze_panes = "A2"
        logger.info("sheet_created", path=str(self._path), sheet=self._sheet_name)
        return ws

    def _check_headers(self, ws: Worksheet) -> None:
        current = [c.value for c in ws[1]]
        while current and current[-1] is None:
            current.pop()
        if current != SHEET_HEADERS:
            logger.warning(
                "sheet_header_mismatch",
                sheet=self._sheet_name,
                expected=SHEET_HEADERS,
                found=current,
            )

    def log(self, record: CombinedRecord) -> bool:
        """Append *record*; returns False when disabled or the write failed."""
        if not self._enabled:
            logger.debug("sheet_logging_disabled")
            return False

        row = record_to_row(record, self._tz)
        try:
            wb = self._open_workbook()
            if self._sheet_name in wb.sheetnames:
                ws = wb[self._sheet_name]
                self._check_headers(ws)
            else:
                ws = self._create_sheet(wb)
            ws.append(row)
            wb.save(self._path)
        except Exception as exc:
            logger.error(
                "sheet_write_failed",
                path=str(self._path),
                sheet=self._sheet_name,
                error=str(exc),
                payload={header: str(value) if value is not None else None for header, value in zip(SHEET_HEADERS, row)},
            )
            return False

        logger.info("sheet_row_appended", path=str(self._path), sheet=self._sheet_name)
        return True
