"""Shared fixtures for the pipeline tests."""

from datetime import datetime, timedelta, timezone

import pytest

from classreview.models import ByHeaderPattern, ByIndex, GradeTable, MappingTemplate, SourceType
from classreview.templates import InMemoryBackend, TemplateStore


class StepClock:
    """Clock advancing one second per call, so timestamps are distinct and ordered."""

    def __init__(self, start: datetime = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def store(backend, clock) -> TemplateStore:
    return TemplateStore(backend, clock=clock)


@pytest.fixture
def sample_csv_bytes() -> bytes:
    return (
        "Nom;Matière;Moyenne;Moyenne de classe;Appréciation\n"
        "Martin Léa;Mathématiques;15,5;12,1;Très bon trimestre\n"
        "Durand Hugo;Mathématiques;9;12,1;Doit s'investir davantage\n"
        "Petit Inès;Mathématiques;abs;12,1;\n"
    ).encode('utf-8')


@pytest.fixture
def csv_table() -> GradeTable:
    return GradeTable(
        source_type=SourceType.CSV,
        rows=[
            ['Nom', 'Matière', 'Moyenne', 'Moyenne de classe'],
            ['Martin Léa', 'Mathématiques', '15,5', '12,1'],
            ['Durand Hugo', 'Mathématiques', '9', '12,1'],
        ],
    )


@pytest.fixture
def csv_template() -> MappingTemplate:
    return MappingTemplate(
        id='tpl-csv',
        name='Bulletin CSV collège',
        source_type=SourceType.CSV,
        date_created=datetime(2024, 1, 1, tzinfo=timezone.utc),
        mapping_config={
            'student_name': ByIndex(index=0),
            'subject': ByIndex(index=1),
            'grade': ByHeaderPattern(pattern=r'^moyenne$'),
            'class_average': ByHeaderPattern(pattern='classe'),
        },
    )
