"""Data models for the ClassReview bulletin pipeline."""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SourceType(str, Enum):
    """Document formats a grade table can be extracted from."""
    PDF = "pdf"
    EXCEL = "excel"
    CSV = "csv"


class RowShapeIssue(BaseModel):
    """A source row whose cell count differed from the header's."""
    row_index: int
    found: int
    expected: int


class GradeTable(BaseModel):
    """Rectangular matrix of text cells; row 0 is the header."""
    rows: List[List[str]]
    source_type: SourceType
    shape_issues: List[RowShapeIssue] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_rectangular(self) -> "GradeTable":
        if not self.rows:
            raise ValueError("A grade table needs at least a header row")
        width = len(self.rows[0])
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"Row {index} has {len(row)} cells, header has {width}"
                )
        return self

    @property
    def header(self) -> List[str]:
        return self.rows[0]

    @property
    def data_rows(self) -> List[List[str]]:
        return self.rows[1:]

    @property
    def column_count(self) -> int:
        return len(self.rows[0])


class LogicalField(str, Enum):
    """Named targets a template maps table columns onto."""
    STUDENT_NAME = "student_name"
    STUDENT_ID = "student_id"
    SUBJECT = "subject"
    GRADE = "grade"
    CLASS_AVERAGE = "class_average"
    TEACHER_COMMENT = "teacher_comment"


REQUIRED_FIELDS = (LogicalField.STUDENT_NAME, LogicalField.GRADE)
NUMERIC_FIELDS = (LogicalField.GRADE, LogicalField.CLASS_AVERAGE)


class ByIndex(BaseModel):
    """Locate a column by its zero-based position."""
    kind: Literal["index"] = "index"
    index: int = Field(ge=0)


class ByHeaderPattern(BaseModel):
    """Locate the first column whose header matches a regular expression."""
    kind: Literal["header"] = "header"
    pattern: str

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Header pattern cannot be empty")
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid header pattern {value!r}: {exc}") from exc
        return value


ColumnLocator = Annotated[Union[ByIndex, ByHeaderPattern], Field(discriminator="kind")]


class _TemplateFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    source_type: SourceType = Field(alias="sourceType")
    mapping_config: Dict[LogicalField, ColumnLocator] = Field(alias="mappingConfig")

    @field_validator("mapping_config")
    @classmethod
    def _required_fields_mapped(cls, value: Dict[LogicalField, Any]) -> Dict[LogicalField, Any]:
        missing = [f.value for f in REQUIRED_FIELDS if f not in value]
        if missing:
            raise ValueError(f"Mapping must locate the required fields: {', '.join(missing)}")
        return value


class TemplateDraft(_TemplateFields):
    """Template as submitted by a caller, before the store assigns ids and dates."""
    id: Optional[str] = None


class MappingTemplate(_TemplateFields):
    """Named, persisted column-mapping configuration."""
    id: str
    date_created: datetime = Field(alias="dateCreated")
    last_used: Optional[datetime] = Field(default=None, alias="lastUsed")


class StudentGradeRecord(BaseModel):
    """One table row resolved through a mapping template."""
    row_index: int
    student_name: str
    student_id: Optional[str] = None
    subject: str
    grade: float
    class_average: Optional[float] = None
    teacher_comment: Optional[str] = None


class RowError(BaseModel):
    """A data row excluded from the mapping output."""
    row_index: int
    field: str
    value: Optional[str] = None
    message: str


class MappingResult(BaseModel):
    """Records mapped from a table, plus the rows that could not be."""
    template_id: Optional[str] = None
    records: List[StudentGradeRecord] = Field(default_factory=list)
    errors: List[RowError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class GradeStatus(str, Enum):
    """Qualitative standing derived from the grade thresholds."""
    DIFFICULTY = "difficulty"
    STANDARD = "standard"
    EXCELLENCE = "excellence"


class ClassifiedRecord(StudentGradeRecord):
    """Grade record with its threshold status."""
    status: GradeStatus


class RangeBucket(BaseModel):
    """Number of students whose average falls in a note range."""
    range: str
    count: int
    percentage: float


class ClassStatistics(BaseModel):
    """Class-level aggregates over mapped records."""
    student_count: int
    class_average: Optional[float] = None
    subject_averages: Dict[str, float] = Field(default_factory=dict)
    status_counts: Dict[GradeStatus, int] = Field(default_factory=dict)
    distribution: List[RangeBucket] = Field(default_factory=list)


class Tone(str, Enum):
    """Register of a generated appreciation."""
    EXIGEANT = "exigeant"
    NEUTRE = "neutre"
    DITHYRAMBIQUE = "dithyrambique"


class _GenerationRequest(BaseModel):
    model: str
    temperature: float
    max_tokens: int
    tone: Tone
    target_length: int
    system_message: str
    prompt: str

    def to_wire(self) -> Dict[str, Any]:
        """JSON body sent to the generation service."""
        return self.model_dump(mode="json")


class AppreciationRequest(_GenerationRequest):
    """Outbound request for one student's appreciation."""
    student_payload: Dict[str, Any]


class ClassAppreciationRequest(_GenerationRequest):
    """Outbound request for the general appreciation of a class."""
    class_payload: Dict[str, Any]


class ReportSummary(BaseModel):
    """Content summary attached to a delivered report."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    synthese_length: int = Field(alias="syntheseLength")
    categories_count: int = Field(alias="categoriesCount")
    has_evolution: bool = Field(alias="hasEvolution")
    has_conseils: bool = Field(alias="hasConseils")


class ReportMetadata(BaseModel):
    """Provenance of a delivered report."""
    model_config = ConfigDict(frozen=True)

    timestamp: str
    source: str
    summary: ReportSummary


class ReportEnvelope(BaseModel):
    """Webhook payload delivered once report generation finishes."""
    model_config = ConfigDict(frozen=True)

    status: str
    message: str = ""
    rapport_html: Optional[str] = None
    metadata: Optional[ReportMetadata] = None


class ReportResult(BaseModel):
    """Outcome of interpreting a report envelope."""
    success: bool
    html_report: Optional[str] = None
    metadata: Optional[ReportMetadata] = None
    error: Optional[str] = None


class ExtractResponse(BaseModel):
    """Response from the table preview endpoint."""
    success: bool
    message: str
    source_type: SourceType
    table: List[List[str]]
    shape_issues: List[RowShapeIssue]
    suggested_mapping: Dict[LogicalField, ColumnLocator]


class MapResponse(BaseModel):
    """Response from the mapping endpoint."""
    success: bool
    message: str
    template_id: str
    results: List[ClassifiedRecord]
    errors: List[RowError]
    warnings: List[str]
    statistics: ClassStatistics


class AppreciationRequestBody(BaseModel):
    """Request for building an appreciation generation request."""
    record: ClassifiedRecord
    tone: Tone
    length: int
    max_chars: Optional[int] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class ClassAppreciationRequestBody(BaseModel):
    """Request for building a class appreciation generation request."""
    statistics: ClassStatistics
    tone: Tone
    length: int
    max_chars: Optional[int] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
