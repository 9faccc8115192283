"""Unit tests for appreciation request building."""

import pytest

from classreview.appreciation import (
    CLASS_SYSTEM_MESSAGE,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    SYSTEM_MESSAGE,
    build_appreciation_request,
    build_class_appreciation_request,
    build_class_prompt,
    build_prompt,
    clamp_length,
    student_payload,
)
from classreview.classification import class_statistics
from classreview.models import ClassifiedRecord, GradeStatus, StudentGradeRecord, Tone


@pytest.fixture
def classified_record() -> ClassifiedRecord:
    return ClassifiedRecord(
        row_index=1,
        student_name='Martin Léa',
        student_id='E042',
        subject='Mathématiques',
        grade=15.5,
        class_average=12.1,
        teacher_comment='Très bon trimestre',
        status=GradeStatus.EXCELLENCE,
    )


def test_clamp_length():
    """Test slider clamping."""
    assert clamp_length(-5, 500) == 0
    assert clamp_length(9000, 500) == 500
    assert clamp_length(250, 500) == 250
    assert clamp_length(0, 500) == 0
    assert clamp_length(500, 500) == 500


def test_request_defaults(classified_record, monkeypatch):
    monkeypatch.delenv('DEFAULT_MODEL', raising=False)

    request = build_appreciation_request(classified_record, Tone.NEUTRE, 300, 500)

    assert request.model == 'gpt-4o-mini'
    assert request.temperature == DEFAULT_TEMPERATURE == 0.7
    assert request.max_tokens == DEFAULT_MAX_TOKENS == 1500
    assert request.target_length == 300
    assert request.system_message == SYSTEM_MESSAGE


def test_request_model_from_environment(classified_record, monkeypatch):
    monkeypatch.setenv('DEFAULT_MODEL', 'mistral-small')

    request = build_appreciation_request(classified_record, Tone.NEUTRE, 300, 500)

    assert request.model == 'mistral-small'


def test_request_overrides(classified_record):
    request = build_appreciation_request(
        classified_record, Tone.EXIGEANT, 300, 500,
        model_id='gpt-4o', temperature=0.2, max_tokens=400,
    )

    assert request.model == 'gpt-4o'
    assert request.temperature == 0.2
    assert request.max_tokens == 400


def test_request_zero_temperature_is_kept(classified_record):
    request = build_appreciation_request(classified_record, Tone.NEUTRE, 300, 500, temperature=0.0)
    assert request.temperature == 0.0


def test_request_length_is_clamped(classified_record):
    request = build_appreciation_request(classified_record, Tone.NEUTRE, 9000, 500)

    assert request.target_length == 500
    assert "environ 500 caractères" in request.prompt


def test_tone_given_as_string(classified_record):
    request = build_appreciation_request(classified_record, 'dithyrambique', 200, 500)

    assert request.tone == Tone.DITHYRAMBIQUE
    assert "très élogieux et dithyrambique" in request.prompt


def test_unknown_tone_rejected(classified_record):
    with pytest.raises(ValueError):
        build_appreciation_request(classified_record, 'sarcastique', 200, 500)


def test_student_payload(classified_record):
    assert student_payload(classified_record) == {
        'name': 'Martin Léa',
        'student_id': 'E042',
        'subject': 'Mathématiques',
        'grade': 15.5,
        'class_average': 12.1,
        'teacher_comment': 'Très bon trimestre',
        'status': 'excellence',
    }


def test_build_prompt(classified_record):
    prompt = build_prompt(classified_record, Tone.EXIGEANT, 350)

    assert "l'élève Martin Léa" in prompt
    assert "ton exigeant et strict" in prompt
    assert "environ 350 caractères" in prompt
    assert "- Matière: Mathématiques" in prompt
    assert "- Note: 15.5/20" in prompt
    assert "- Moyenne de classe: 12.1/20" in prompt
    assert "- Niveau global: excellent" in prompt
    assert "- Commentaire de l'enseignant: Très bon trimestre" in prompt


def test_build_prompt_without_optional_data(classified_record):
    record = classified_record.model_copy(update={
        'class_average': None,
        'teacher_comment': None,
        'grade': 8.0,
        'status': GradeStatus.DIFFICULTY,
    })

    prompt = build_prompt(record, Tone.NEUTRE, 200)

    assert "- Note: 8/20" in prompt
    assert "- Moyenne de classe: non disponible" in prompt
    assert "Commentaire de l'enseignant" not in prompt
    assert "- Niveau global: en difficulté" in prompt


def test_to_wire(classified_record):
    wire = build_appreciation_request(classified_record, Tone.NEUTRE, 300, 500).to_wire()

    assert set(wire) == {
        'model', 'temperature', 'max_tokens', 'tone', 'target_length',
        'student_payload', 'system_message', 'prompt',
    }
    assert wire['tone'] == 'neutre'
    assert wire['student_payload']['status'] == 'excellence'


@pytest.fixture
def statistics():
    return class_statistics([
        StudentGradeRecord(row_index=1, student_name='Alice', subject='Math', grade=8.0),
        StudentGradeRecord(row_index=2, student_name='Alice', subject='Fr', grade=12.0),
        StudentGradeRecord(row_index=3, student_name='Bob', subject='Math', grade=16.0),
        StudentGradeRecord(row_index=4, student_name='Chloé', subject='Math', grade=4.0),
    ])


def test_class_request_defaults(statistics, monkeypatch):
    monkeypatch.delenv('DEFAULT_MODEL', raising=False)

    request = build_class_appreciation_request(statistics, 'neutre', 9000, 500)

    assert request.model == 'gpt-4o-mini'
    assert request.temperature == 0.7
    assert request.max_tokens == 1500
    assert request.target_length == 500
    assert request.tone == Tone.NEUTRE
    assert request.system_message == CLASS_SYSTEM_MESSAGE
    assert request.class_payload['student_count'] == 3
    assert request.class_payload['status_counts'] == {'difficulty': 1, 'standard': 1, 'excellence': 1}


def test_class_request_unknown_tone(statistics):
    with pytest.raises(ValueError):
        build_class_appreciation_request(statistics, 'sarcastique', 200, 500)


def test_build_class_prompt(statistics):
    prompt = build_class_prompt(statistics, Tone.DITHYRAMBIQUE, 400)

    assert "appréciation générale pour la classe" in prompt
    assert "ton très élogieux et dithyrambique" in prompt
    assert "environ 400 caractères" in prompt
    assert "EFFECTIF: 3 élève(s)" in prompt
    assert "MOYENNE DE CLASSE: 10/20" in prompt
    assert "- 0 - 5: 1 élèves (33.3%)" in prompt
    assert "- 5 - 10: 0 élèves (0.0%)" in prompt
    assert "- Math: 9.33/20" in prompt
    assert "- Fr: 12/20" in prompt
    assert "- en difficulté: 1" in prompt


def test_build_class_prompt_without_records():
    prompt = build_class_prompt(class_statistics([]), Tone.NEUTRE, 200)

    assert "EFFECTIF: 0 élève(s)" in prompt
    assert "MOYENNE DE CLASSE: non disponible" in prompt
    assert "MOYENNES PAR MATIÈRE:\n- non disponible" in prompt


def test_class_to_wire(statistics):
    wire = build_class_appreciation_request(statistics, Tone.EXIGEANT, 300, 500).to_wire()

    assert set(wire) == {
        'model', 'temperature', 'max_tokens', 'tone', 'target_length',
        'class_payload', 'system_message', 'prompt',
    }
