"""Apply mapping templates to extracted grade tables."""

import logging
import re
from typing import Dict, List, Optional

from classreview.errors import MappingError, TemplateNotFound, TemplateSourceMismatch
from classreview.models import (
    NUMERIC_FIELDS,
    REQUIRED_FIELDS,
    ByHeaderPattern,
    ByIndex,
    GradeTable,
    LogicalField,
    MappingResult,
    MappingTemplate,
    RowError,
    StudentGradeRecord,
)
from classreview.parsers import parse_number

logger = logging.getLogger(__name__)

# Checked in order; the first field whose keywords appear in a header wins.
HEADER_KEYWORDS = [
    (LogicalField.CLASS_AVERAGE, ['moyenne de classe', 'moy. classe', 'moy classe', 'class average']),
    (LogicalField.TEACHER_COMMENT, ['appréciation', 'appreciation', 'commentaire', 'comment']),
    (LogicalField.STUDENT_NAME, ['élève', 'eleve', 'nom', 'étudiant', 'etudiant', 'student']),
    (LogicalField.SUBJECT, ['matière', 'matiere', 'discipline', 'subject']),
    (LogicalField.GRADE, ['note', 'moyenne', 'moy', 'grade']),
    (LogicalField.STUDENT_ID, ['id', 'identifiant', 'n°']),
]


def resolve_column(header: List[str], locator) -> Optional[int]:
    """Column index a locator points at, or None if it matches nothing."""
    if isinstance(locator, ByIndex):
        return locator.index if locator.index < len(header) else None
    if isinstance(locator, ByHeaderPattern):
        pattern = re.compile(locator.pattern, re.IGNORECASE)
        for index, cell in enumerate(header):
            if pattern.search(cell):
                return index
    return None


def _describe(locator) -> str:
    if isinstance(locator, ByIndex):
        return f"column {locator.index}"
    return f"header matching /{locator.pattern}/"


def resolve_columns(table: GradeTable, template: MappingTemplate) -> Dict[LogicalField, int]:
    """
    Resolve every locator of a template against the table header.

    Raises:
        MappingError: if a required field cannot be located
    """
    columns: Dict[LogicalField, int] = {}
    for logical_field, locator in template.mapping_config.items():
        index = resolve_column(table.header, locator)
        if index is None:
            if logical_field in REQUIRED_FIELDS:
                raise MappingError(
                    f"Required field '{logical_field.value}' not found ({_describe(locator)}) "
                    f"in header {table.header}"
                )
            continue
        columns[logical_field] = index
    return columns


def map_table(table: GradeTable, template: MappingTemplate) -> MappingResult:
    """
    Turn each data row of a table into a StudentGradeRecord.

    Rows with a missing required value or an unparsable number are excluded
    and reported in `errors`; the call still succeeds with the other rows.

    Args:
        table: Extracted grade table (row 0 is the header)
        template: Mapping template compatible with the table's source type

    Returns:
        MappingResult with records, row errors and warnings

    Raises:
        TemplateSourceMismatch: if the template targets another source type
        MappingError: if a required column cannot be located
    """
    if template.source_type != table.source_type:
        raise TemplateSourceMismatch(template.source_type.value, table.source_type.value)

    columns = resolve_columns(table, template)
    result = MappingResult(template_id=template.id)

    for logical_field, locator in template.mapping_config.items():
        if logical_field not in columns:
            result.warnings.append(
                f"Optional field '{logical_field.value}' not found ({_describe(locator)}), left empty"
            )
    for issue in table.shape_issues:
        result.warnings.append(
            f"Row {issue.row_index} had {issue.found} cell(s) instead of {issue.expected}"
        )

    grade_header = table.header[columns[LogicalField.GRADE]]

    for row_index, row in enumerate(table.data_rows, start=1):
        values = {f: row[i].strip() for f, i in columns.items()}
        record_fields = {}
        error = None

        for logical_field, value in values.items():
            if logical_field in NUMERIC_FIELDS:
                if not value:
                    if logical_field in REQUIRED_FIELDS:
                        error = RowError(row_index=row_index, field=logical_field.value,
                                         value=value, message="Missing value")
                        break
                    continue
                number = parse_number(value)
                if number is None:
                    error = RowError(row_index=row_index, field=logical_field.value,
                                     value=value, message=f"'{value}' is not a number")
                    break
                record_fields[logical_field.value] = number
            else:
                if not value:
                    if logical_field in REQUIRED_FIELDS:
                        error = RowError(row_index=row_index, field=logical_field.value,
                                         value=value, message="Missing value")
                        break
                    continue
                record_fields[logical_field.value] = value

        if error is not None:
            result.errors.append(error)
            continue

        record_fields.setdefault(LogicalField.SUBJECT.value, grade_header)
        result.records.append(StudentGradeRecord(row_index=row_index, **record_fields))

    logger.info(
        "Mapped %d record(s) with template %s, %d row(s) rejected",
        len(result.records), template.id, len(result.errors)
    )
    return result


def suggest_mapping(header: List[str]) -> Dict[LogicalField, ByIndex]:
    """Guess a column mapping from header keywords, each column used at most once."""
    suggestion: Dict[LogicalField, ByIndex] = {}
    for index, cell in enumerate(header):
        text = cell.lower()
        for logical_field, keywords in HEADER_KEYWORDS:
            if logical_field in suggestion:
                continue
            if any(_keyword_in(keyword, text) for keyword in keywords):
                suggestion[logical_field] = ByIndex(index=index)
                break
    return suggestion


def _keyword_in(keyword: str, text: str) -> bool:
    # short keywords ('id', 'moy') must be whole words to avoid 'validé' or 'moyen-âge'
    if len(keyword) <= 3:
        return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text) is not None
    return keyword in text


class BulletinMapper:
    """Maps tables with templates borrowed from a TemplateStore."""

    def __init__(self, store):
        self.store = store

    def map(self, table: GradeTable, template_id: str) -> MappingResult:
        """
        Map a table with a stored template and record the template as used.

        Raises:
            TemplateNotFound: if no template has this id
            TemplateSourceMismatch: if the template targets another source type
        """
        template = self.store.get_by_id(template_id)
        if template is None:
            raise TemplateNotFound(f"No mapping template with id '{template_id}'")
        result = map_table(table, template)
        self.store.touch_last_used(template.id)
        return result
