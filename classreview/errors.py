"""Exceptions raised by the bulletin pipeline."""


class ClassReviewError(Exception):
    """Base class for pipeline errors."""


class ExtractionError(ClassReviewError):
    """A grade table could not be extracted from the source document."""


class NoTableFound(ExtractionError):
    """The document was readable but no grade table was located."""


class UnsupportedSourceType(ExtractionError):
    """The declared source type (or file extension) is not handled."""


class TemplateStoreError(ClassReviewError):
    """The persisted template collection is unreadable or corrupt."""


class MappingError(ClassReviewError):
    """A mapping template cannot be applied to a table."""


class TemplateNotFound(MappingError):
    """No stored template has the requested id."""


class TemplateSourceMismatch(MappingError):
    """The template was built for a different source type than the table."""

    def __init__(self, template_source: str, table_source: str):
        self.template_source = template_source
        self.table_source = table_source
        super().__init__(
            f"Template expects '{template_source}' tables but the table comes from '{table_source}'"
        )


class ReportError(ClassReviewError):
    """The report envelope is not a usable, completed report."""
