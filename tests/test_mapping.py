"""Unit tests for applying mapping templates."""

from datetime import datetime, timezone

import pytest

from classreview.errors import MappingError, TemplateNotFound, TemplateSourceMismatch
from classreview.mapping import BulletinMapper, map_table, resolve_column, suggest_mapping
from classreview.models import (
    ByHeaderPattern,
    ByIndex,
    GradeTable,
    LogicalField,
    MappingTemplate,
    RowShapeIssue,
    SourceType,
    TemplateDraft,
)


def make_template(mapping_config, source_type=SourceType.CSV) -> MappingTemplate:
    return MappingTemplate(
        id='tpl',
        name='test',
        source_type=source_type,
        date_created=datetime(2024, 1, 1, tzinfo=timezone.utc),
        mapping_config=mapping_config,
    )


def test_map_table(csv_table, csv_template):
    result = map_table(csv_table, csv_template)

    assert result.template_id == 'tpl-csv'
    assert result.errors == []
    assert [r.student_name for r in result.records] == ['Martin Léa', 'Durand Hugo']
    first = result.records[0]
    assert first.grade == 15.5
    assert first.class_average == 12.1
    assert first.subject == 'Mathématiques'
    assert first.row_index == 1


def test_unparsable_grade_is_reported_not_fatal():
    """Header + 2 rows, second grade 'abs': one record, one row error."""
    table = GradeTable(
        source_type=SourceType.CSV,
        rows=[['Nom', 'Note'], ['Martin', '12'], ['Durand', 'abs']],
    )
    template = make_template({'student_name': ByIndex(index=0), 'grade': ByIndex(index=1)})

    result = map_table(table, template)

    assert len(result.records) == 1
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.row_index == 2
    assert error.field == 'grade'
    assert error.value == 'abs'


def test_grade_is_never_coerced_to_zero():
    table = GradeTable(
        source_type=SourceType.CSV,
        rows=[['Nom', 'Note'], ['Martin', ''], ['Durand', 'n.not']],
    )
    template = make_template({'student_name': ByIndex(index=0), 'grade': ByIndex(index=1)})

    result = map_table(table, template)

    assert result.records == []
    assert [e.message for e in result.errors] == ["Missing value", "'n.not' is not a number"]


def test_missing_student_name_is_reported():
    table = GradeTable(
        source_type=SourceType.CSV,
        rows=[['Nom', 'Note'], ['', '12'], ['Moyenne de classe', '11,4']],
    )
    template = make_template({'student_name': ByIndex(index=0), 'grade': ByIndex(index=1)})

    result = map_table(table, template)

    assert len(result.records) == 1
    assert result.errors[0].field == 'student_name'


def test_invalid_optional_number_rejects_row():
    table = GradeTable(
        source_type=SourceType.CSV,
        rows=[['Nom', 'Note', 'Classe'], ['Martin', '12', 'NC'], ['Durand', '9', '']],
    )
    template = make_template({
        'student_name': ByIndex(index=0),
        'grade': ByIndex(index=1),
        'class_average': ByIndex(index=2),
    })

    result = map_table(table, template)

    assert [r.student_name for r in result.records] == ['Durand']
    assert result.records[0].class_average is None
    assert result.errors[0].field == 'class_average'


def test_source_mismatch_fails_before_rows(csv_table):
    template = make_template(
        {'student_name': ByIndex(index=0), 'grade': ByIndex(index=2)},
        source_type=SourceType.PDF,
    )

    with pytest.raises(TemplateSourceMismatch) as exc_info:
        map_table(csv_table, template)

    assert exc_info.value.template_source == 'pdf'
    assert exc_info.value.table_source == 'csv'


def test_required_column_not_found(csv_table):
    template = make_template({
        'student_name': ByIndex(index=0),
        'grade': ByHeaderPattern(pattern='^note$'),
    })

    with pytest.raises(MappingError):
        map_table(csv_table, template)


def test_required_index_out_of_range(csv_table):
    template = make_template({'student_name': ByIndex(index=0), 'grade': ByIndex(index=12)})

    with pytest.raises(MappingError):
        map_table(csv_table, template)


def test_optional_column_not_found_is_a_warning(csv_table):
    template = make_template({
        'student_name': ByIndex(index=0),
        'grade': ByIndex(index=2),
        'teacher_comment': ByHeaderPattern(pattern='appr'),
    })

    result = map_table(csv_table, template)

    assert len(result.records) == 2
    assert any('teacher_comment' in w for w in result.warnings)
    assert result.records[0].teacher_comment is None


def test_subject_defaults_to_grade_header():
    table = GradeTable(
        source_type=SourceType.PDF,
        rows=[['Élève', 'Français'], ['Martin', '13']],
    )
    template = make_template(
        {'student_name': ByIndex(index=0), 'grade': ByIndex(index=1)},
        source_type=SourceType.PDF,
    )

    result = map_table(table, template)

    assert result.records[0].subject == 'Français'


def test_shape_issues_become_warnings():
    table = GradeTable(
        source_type=SourceType.CSV,
        rows=[['Nom', 'Note'], ['Martin', '']],
        shape_issues=[RowShapeIssue(row_index=1, found=1, expected=2)],
    )
    template = make_template({'student_name': ByIndex(index=0), 'grade': ByIndex(index=1)})

    result = map_table(table, template)

    assert result.warnings == ["Row 1 had 1 cell(s) instead of 2"]
    assert len(result.errors) == 1


def test_resolve_column_header_pattern_is_case_insensitive():
    header = ['NOM', 'Moy. générale', 'Moyenne de classe']
    assert resolve_column(header, ByHeaderPattern(pattern='moy')) == 1
    assert resolve_column(header, ByHeaderPattern(pattern='classe')) == 2
    assert resolve_column(header, ByHeaderPattern(pattern='absent')) is None
    assert resolve_column(header, ByIndex(index=3)) is None


def test_suggest_mapping():
    header = ['N°', 'Nom élève', 'Matière', 'Moyenne', 'Moyenne de classe', 'Appréciation']

    suggestion = suggest_mapping(header)

    assert suggestion[LogicalField.STUDENT_ID].index == 0
    assert suggestion[LogicalField.STUDENT_NAME].index == 1
    assert suggestion[LogicalField.SUBJECT].index == 2
    assert suggestion[LogicalField.GRADE].index == 3
    assert suggestion[LogicalField.CLASS_AVERAGE].index == 4
    assert suggestion[LogicalField.TEACHER_COMMENT].index == 5


def test_suggest_mapping_short_keywords_need_whole_words():
    suggestion = suggest_mapping(['Validé', 'Moyen-âge'])
    assert LogicalField.STUDENT_ID not in suggestion
    assert LogicalField.GRADE not in suggestion


def test_bulletin_mapper_touches_template(store, csv_table):
    saved = store.save(TemplateDraft(
        name='CSV',
        source_type=SourceType.CSV,
        mapping_config={'student_name': ByIndex(index=0), 'grade': ByIndex(index=2)},
    ))

    result = BulletinMapper(store).map(csv_table, saved.id)

    assert len(result.records) == 2
    assert store.get_by_id(saved.id).last_used > saved.last_used


def test_bulletin_mapper_unknown_template(store, csv_table):
    with pytest.raises(TemplateNotFound):
        BulletinMapper(store).map(csv_table, 'missing')


def test_bulletin_mapper_mismatch_does_not_touch(store, csv_table):
    saved = store.save(TemplateDraft(
        name='PDF',
        source_type=SourceType.PDF,
        mapping_config={'student_name': ByIndex(index=0), 'grade': ByIndex(index=2)},
    ))

    with pytest.raises(TemplateSourceMismatch):
        BulletinMapper(store).map(csv_table, saved.id)

    assert store.get_by_id(saved.id).last_used == saved.last_used
