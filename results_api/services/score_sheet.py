"""Score sheet parsing.

A score sheet is the wide spreadsheet exchanged with teachers::

    user_id,email,first_name,last_name,MATH_CA,MATH_EXAM,ENG_CA,ENG_EXAM,...

Each data row is reshaped into one ``ParsedScoreRecord`` per subject that has
at least one score filled in. Bad cells are reported per row and subject and
never abort the rest of the file.
"""

import csv
import io
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from decimal import Decimal, InvalidOperation
from typing import Any, BinaryIO

from openpyxl import load_workbook

from results_api.core.exceptions import CSVParseTimeoutError, UploadError
from results_api.schemas.result import ImportRowError, ParsedScoreRecord, ParsedScoreSheet

logger = logging.getLogger(__name__)

IDENTITY_COLUMNS = ("user_id", "email", "first_name", "last_name")
USER_ID_ALIASES = ("user_id", "userId", "student_id")

# Largest value a DECIMAL(5, 2) score column holds
MAX_SCORE = Decimal("999.99")
SCORE_QUANTUM = Decimal("0.01")


def ca_column(subject_code: str) -> str:
    return f"{subject_code}_CA"


def exam_column(subject_code: str) -> str:
    return f"{subject_code}_EXAM"


def template_header(subject_codes: Iterable[str]) -> list[str]:
    """Header row shared by uploaded score sheets and generated templates."""
    header = list(IDENTITY_COLUMNS)
    for code in subject_codes:
        header.extend([ca_column(code), exam_column(code)])
    return header


def _cell_text(value: Any) -> str:
    """Normalize a raw cell (CSV text or spreadsheet value) to stripped text."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Spreadsheets store typed ids and whole scores as floats
        return str(int(value))
    return str(value).strip()


# ==========================================
# Row sources
# ==========================================

def iter_csv_rows(fileobj: BinaryIO) -> Iterator[dict[str, str]]:
    """Stream rows of a UTF-8 CSV file (BOM tolerated) as header-keyed dicts."""
    text = io.TextIOWrapper(fileobj, encoding="utf-8-sig", newline="")
    try:
        reader = csv.DictReader(text)
        if reader.fieldnames is None:
            raise UploadError("Score sheet is empty")
        reader.fieldnames = [name.strip() for name in reader.fieldnames]
        for row in reader:
            yield {key: _cell_text(value) for key, value in row.items() if key}
    except UnicodeDecodeError as e:
        raise UploadError(f"Score sheet is not valid UTF-8 text: {e}")
    except csv.Error as e:
        raise UploadError(f"Failed to read CSV file: {e}")
    finally:
        # Leave the caller's file open
        text.detach()


def iter_xlsx_rows(fileobj: BinaryIO) -> Iterator[dict[str, str]]:
    """Stream rows of the first worksheet of an ``.xlsx`` score sheet."""
    try:
        workbook = load_workbook(filename=fileobj, read_only=True, data_only=True)
    except Exception as e:
        raise UploadError(f"Failed to parse Excel file: {e}")

    try:
        sheet = workbook.active
        if sheet is None:
            raise UploadError("Excel file has no active sheet")

        rows = sheet.iter_rows(values_only=True)
        header_row = next(rows, None)
        if header_row is None:
            raise UploadError("Score sheet is empty")
        headers = [_cell_text(h) for h in header_row]
        logger.debug(f"[SCORE SHEET] Detected headers: {headers}")

        for row in rows:
            row_dict = {
                headers[i]: _cell_text(value)
                for i, value in enumerate(row)
                if i < len(headers) and headers[i]
            }
            yield row_dict
    finally:
        workbook.close()


def iter_score_sheet_rows(fileobj: BinaryIO, filename: str) -> Iterator[dict[str, str]]:
    """Pick the row source from the file extension."""
    if filename.lower().endswith(".xlsx"):
        return iter_xlsx_rows(fileobj)
    return iter_csv_rows(fileobj)


# ==========================================
# Parsing
# ==========================================

def _parse_score(raw: str) -> Decimal | None:
    """Parse one score cell; None means the value is not a usable score."""
    try:
        score = Decimal(raw)
    except InvalidOperation:
        return None
    if not score.is_finite() or score < 0 or score > MAX_SCORE:
        return None
    return score.quantize(SCORE_QUANTUM)


def parse_score_rows(
    rows: Iterable[dict[str, str]],
    subject_codes: Iterable[str],
    timeout_seconds: float,
    clock: Callable[[], float] = time.monotonic,
) -> ParsedScoreSheet:
    """Reshape score sheet rows into per-student, per-subject score records.

    Line numbers follow the spreadsheet: the header is line 1 and the first
    data row is line 2. Raises ``CSVParseTimeoutError`` once ``timeout_seconds``
    of wall-clock time have elapsed; the rest of the stream is not read.
    """
    codes = list(subject_codes)
    deadline = clock() + timeout_seconds
    records: list[ParsedScoreRecord] = []
    errors: list[ImportRowError] = []
    rows_read = 0

    for line, row in enumerate(rows, start=2):
        if clock() > deadline:
            logger.warning(f"[SCORE SHEET] Parsing timed out after {rows_read} rows")
            raise CSVParseTimeoutError(timeout_seconds, rows_read=rows_read)
        rows_read += 1

        if not any(row.values()):
            logger.debug(f"[SCORE SHEET] Line {line} skipped (all values empty)")
            continue

        user_id = next((row[alias] for alias in USER_ID_ALIASES if row.get(alias)), None)
        email = row.get("email") or None

        if not user_id and not email:
            errors.append(
                ImportRowError(line=line, error="Missing user_id or email", data=row)
            )
            continue

        for code in codes:
            ca_raw = row.get(ca_column(code), "")
            exam_raw = row.get(exam_column(code), "")

            if not ca_raw and not exam_raw:
                continue

            ca_score = _parse_score(ca_raw) if ca_raw else Decimal("0.00")
            if ca_score is None:
                errors.append(
                    ImportRowError(
                        line=line,
                        subject_code=code,
                        error=f"Invalid CA score for {code}: {ca_raw}",
                        data={**row, "subject": code},
                    )
                )
                continue

            exam_score = _parse_score(exam_raw) if exam_raw else Decimal("0.00")
            if exam_score is None:
                errors.append(
                    ImportRowError(
                        line=line,
                        subject_code=code,
                        error=f"Invalid Exam score for {code}: {exam_raw}",
                        data={**row, "subject": code},
                    )
                )
                continue

            if ca_score + exam_score > MAX_SCORE:
                errors.append(
                    ImportRowError(
                        line=line,
                        subject_code=code,
                        error=f"Total score out of range for {code}: {ca_score + exam_score}",
                        data={**row, "subject": code},
                    )
                )
                continue

            records.append(
                ParsedScoreRecord(
                    line=line,
                    user_id=user_id,
                    email=email,
                    subject_code=code,
                    ca_score=ca_score,
                    exam_score=exam_score,
                    total_score=ca_score + exam_score,
                )
            )

    logger.info(
        f"[SCORE SHEET] Parsed {rows_read} rows: {len(records)} records, {len(errors)} errors"
    )
    return ParsedScoreSheet(records=records, errors=errors, rows_read=rows_read)
