"""Grade table extraction from PDF, Excel and CSV bulletins."""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Any, List, Optional, Pattern, Sequence, Tuple

import pandas as pd
import pdfplumber
from openpyxl import load_workbook

from classreview.errors import ExtractionError, NoTableFound, UnsupportedSourceType
from classreview.models import GradeTable, RowShapeIssue, SourceType

logger = logging.getLogger(__name__)

EXTENSION_SOURCE_TYPES = {
    '.pdf': SourceType.PDF,
    '.xlsx': SourceType.EXCEL,
    '.xlsm': SourceType.EXCEL,
    '.csv': SourceType.CSV,
}

CSV_DELIMITERS = (';', ',', '\t')


@dataclass
class ExtractionOptions:
    """
    Tuning for table extraction.

    structure_threshold: gap (in PDF points) under which neighbouring text
        fragments are merged into the same cell. Bulletins use proportional
        layouts, so column boundaries come from horizontal gaps.
    ignore_patterns: regexes for boilerplate (letterhead, page footers). Any
        text line matching one of them is removed before tables are built.
    """
    structure_threshold: float = 3.0
    ignore_patterns: Sequence[str] = field(default_factory=list)

    def compiled_patterns(self) -> List[Pattern]:
        return [re.compile(p, re.IGNORECASE) for p in self.ignore_patterns]

    def table_settings(self) -> dict:
        """pdfplumber settings inferring rows and columns from text alignment."""
        return {
            'vertical_strategy': 'text',
            'horizontal_strategy': 'text',
            'snap_tolerance': self.structure_threshold,
            'join_tolerance': self.structure_threshold,
            'text_x_tolerance': self.structure_threshold,
        }


def detect_source_type(filename: str) -> SourceType:
    """Map an uploaded file name onto the extractor that can read it."""
    name = (filename or '').lower()
    for extension, source_type in EXTENSION_SOURCE_TYPES.items():
        if name.endswith(extension):
            return source_type
    raise UnsupportedSourceType(
        f"Unsupported file type for '{filename}'. Expected one of: {', '.join(EXTENSION_SOURCE_TYPES)}"
    )


def cell_to_text(value: Any) -> str:
    """
    Render a raw cell value as stripped text.

    None becomes '', integral floats lose their '.0' (Excel stores 12 as 12.0),
    dates are rendered in ISO format.
    """
    if value is None:
        return ''
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ''
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return re.sub(r'\s+', ' ', str(value)).strip()


def parse_number(value: Optional[str]) -> Optional[float]:
    """
    Parse a grade cell such as '12,5', '14.25' or ' 8 '.

    Returns None when the text is not a finite real number; callers decide
    whether that is an error. Never coerces to zero.
    """
    if value is None:
        return None
    text = str(value).strip().replace('\u00a0', '').replace(' ', '')
    if not text:
        return None
    text = text.replace(',', '.')
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def normalize_rows(raw_rows: Sequence[Sequence[Any]]) -> Tuple[List[List[str]], List[RowShapeIssue]]:
    """
    Turn raw rows into a rectangular text matrix.

    Fully empty rows are dropped. Rows whose length differs from the header
    are padded or cut to the header width and reported as RowShapeIssue.
    """
    rows = [[cell_to_text(cell) for cell in row] for row in raw_rows]
    rows = [row for row in rows if any(cell for cell in row)]
    if not rows:
        return [], []

    # Trailing columns empty in every row are layout noise (Excel formatting, CSV trailing separators)
    width = max(len(row) for row in rows)
    while width > 0 and all(len(row) < width or not row[width - 1] for row in rows):
        width -= 1
    rows = [row[:width] for row in rows]

    expected = len(rows[0])
    issues: List[RowShapeIssue] = []
    table: List[List[str]] = []
    for index, row in enumerate(rows):
        if len(row) != expected:
            issues.append(RowShapeIssue(row_index=index, found=len(row), expected=expected))
            row = (row + [''] * expected)[:expected]
        table.append(row)

    if issues:
        logger.warning(
            "%d row(s) did not match the header width of %d cells: %s",
            len(issues), expected, [issue.row_index for issue in issues]
        )
    return table, issues


def _strip_ignored(text: Optional[str], patterns: List[Pattern]) -> str:
    if not text:
        return ''
    for pattern in patterns:
        text = pattern.sub('', text)
    return text


def _inside(obj: dict, boxes: List[Tuple[float, float, float, float]], tolerance: float = 0.5) -> bool:
    for x0, top, x1, bottom in boxes:
        if (obj['x0'] >= x0 - tolerance and obj['x1'] <= x1 + tolerance
                and obj['top'] >= top - tolerance and obj['bottom'] <= bottom + tolerance):
            return True
    return False


def _without_boilerplate(page, patterns: List[Pattern]):
    """Filter out the characters of every text line matching an ignore pattern."""
    if not patterns:
        return page
    boxes = [
        (line['x0'], line['top'], line['x1'], line['bottom'])
        for line in page.extract_text_lines()
        if any(pattern.search(line['text']) for pattern in patterns)
    ]
    if not boxes:
        return page
    logger.debug("Ignoring %d boilerplate line(s) on page %s", len(boxes), page.page_number)
    return page.filter(lambda obj: obj.get('object_type') != 'char' or not _inside(obj, boxes))


def extract_pdf_tables(source_bytes: bytes, options: ExtractionOptions) -> List[List[List[List[str]]]]:
    """
    Extract every table on every page.

    Returns one list of tables per page; each table is a list of rows of
    cleaned cell text.
    """
    patterns = options.compiled_patterns()
    settings = options.table_settings()
    pages_tables = []
    try:
        with pdfplumber.open(BytesIO(source_bytes)) as pdf:
            logger.info("PDF loaded with %d page(s)", len(pdf.pages))
            for page in pdf.pages:
                cleaned_page = _without_boilerplate(page, patterns)
                tables = []
                for raw_table in cleaned_page.extract_tables(settings):
                    tables.append([
                        [_strip_ignored(cell, patterns).strip() for cell in row]
                        for row in raw_table
                    ])
                pages_tables.append(tables)
    except Exception as e:
        raise ExtractionError(f"Could not read PDF document: {e}") from e
    return pages_tables


def _load_pdf_rows(source_bytes: bytes, options: ExtractionOptions) -> List[List[str]]:
    pages_tables = extract_pdf_tables(source_bytes, options)
    total = sum(len(tables) for tables in pages_tables)
    if total == 0:
        raise NoTableFound("No table found in the PDF document")
    if not pages_tables[0]:
        # Only the first table of the first page is treated as the grade table
        raise NoTableFound(
            f"No table on the first page ({total} table(s) found on later pages are not used)"
        )
    if total > 1:
        logger.info("Found %d tables, using the first table of the first page", total)
    return pages_tables[0][0]


def _load_excel_rows(source_bytes: bytes) -> List[List[Any]]:
    try:
        workbook = load_workbook(filename=BytesIO(source_bytes), read_only=True, data_only=True)
    except Exception as e:
        raise ExtractionError(f"Could not read Excel workbook: {e}") from e
    try:
        if not workbook.worksheets:
            raise NoTableFound("The workbook has no worksheet")
        sheet = workbook.worksheets[0]
        logger.info("Reading worksheet '%s'", sheet.title)
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _decode(source_bytes: bytes) -> str:
    try:
        return source_bytes.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.info("CSV is not UTF-8, falling back to latin-1")
        return source_bytes.decode('latin-1')


def _sniff_delimiter(text: str) -> str:
    """Separator used most often on the first non-empty line."""
    first_line = next((line for line in text.splitlines() if line.strip()), '')
    return max(CSV_DELIMITERS, key=first_line.count)


def _present_cells(values: Sequence[Any]) -> List[Any]:
    # pandas pads short records with NaN; explicit empty fields stay ''
    cells = list(values)
    while cells and not isinstance(cells[-1], str):
        cells.pop()
    return cells


def _load_csv_rows(source_bytes: bytes) -> List[List[Any]]:
    text = _decode(source_bytes)
    if not text.strip():
        raise NoTableFound("The CSV file is empty")
    delimiter = _sniff_delimiter(text)
    # One column per field of the widest line, so ragged rows are padded rather than rejected
    width = max(line.count(delimiter) for line in text.splitlines()) + 1
    try:
        df = pd.read_csv(
            StringIO(text),
            sep=delimiter,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            engine='python',
        )
    except (pd.errors.ParserError, ValueError) as e:
        raise ExtractionError(f"Could not read CSV file: {e}") from e
    return [_present_cells(row) for row in df.itertuples(index=False, name=None)]


def extract_table(
    source_bytes: bytes,
    source_type: SourceType,
    options: Optional[ExtractionOptions] = None
) -> GradeTable:
    """
    Extract the canonical grade table from a bulletin.

    Args:
        source_bytes: Raw bytes of one document
        source_type: Declared format of the document
        options: PDF tuning (structure threshold, ignore patterns)

    Returns:
        GradeTable whose rows all have the header's width

    Raises:
        NoTableFound: if no table is located
        UnsupportedSourceType: for an unknown source type
        ExtractionError: if the document cannot be read
    """
    options = options or ExtractionOptions()
    try:
        source_type = SourceType(source_type)
    except ValueError:
        raise UnsupportedSourceType(f"Unsupported source type: {source_type!r}")

    if source_type == SourceType.PDF:
        raw_rows = _load_pdf_rows(source_bytes, options)
    elif source_type == SourceType.EXCEL:
        raw_rows = _load_excel_rows(source_bytes)
    else:
        raw_rows = _load_csv_rows(source_bytes)

    rows, issues = normalize_rows(raw_rows)
    if not rows:
        raise NoTableFound(f"No non-empty row found in the {source_type.value} document")

    logger.info(
        "Extracted %s table: %d data row(s) x %d column(s)",
        source_type.value, len(rows) - 1, len(rows[0])
    )
    return GradeTable(rows=rows, source_type=source_type, shape_issues=issues)
