"""Build generation requests for student and class appreciations."""

from typing import Any, Dict, Optional, Union

from classreview.config import get_default_model
from classreview.models import (
    AppreciationRequest,
    ClassAppreciationRequest,
    ClassifiedRecord,
    ClassStatistics,
    GradeStatus,
    Tone,
)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1500

SYSTEM_MESSAGE = (
    "Vous êtes un professeur principal français expérimenté qui rédige des "
    "appréciations scolaires précises et professionnelles."
)

CLASS_SYSTEM_MESSAGE = (
    "Vous êtes un professeur principal expérimenté qui analyse des résultats "
    "scolaires d'une classe. Votre analyse est factuelle, précise et "
    "constructive. Votre objectif est d'identifier les tendances, les forces "
    "et les points d'amélioration à partir des données fournies."
)

TONE_PHRASES = {
    Tone.EXIGEANT: "exigeant et strict",
    Tone.NEUTRE: "neutre et objectif",
    Tone.DITHYRAMBIQUE: "très élogieux et dithyrambique",
}

STATUS_PHRASES = {
    GradeStatus.DIFFICULTY: "en difficulté",
    GradeStatus.STANDARD: "dans la moyenne",
    GradeStatus.EXCELLENCE: "excellent",
}


def clamp_length(length_chars: int, max_chars: int) -> int:
    """Bring a slider value back into [0, max_chars]."""
    return max(0, min(int(length_chars), max(0, int(max_chars))))


def student_payload(record: ClassifiedRecord) -> Dict[str, Any]:
    """Student data handed to the generation service."""
    return {
        'name': record.student_name,
        'student_id': record.student_id,
        'subject': record.subject,
        'grade': record.grade,
        'class_average': record.class_average,
        'teacher_comment': record.teacher_comment,
        'status': record.status.value,
    }


def _format_grade(value: Optional[float]) -> str:
    if value is None:
        return "non disponible"
    return f"{value:.2f}".rstrip('0').rstrip('.') + "/20"


def build_prompt(record: ClassifiedRecord, tone: Tone, target_length: int) -> str:
    """French prompt asking for one student's appreciation."""
    lines = [
        f"En tant que professeur principal, rédigez une appréciation individuelle pour l'élève {record.student_name}",
        f"avec un ton {TONE_PHRASES[tone]} et d'une longueur d'environ {target_length} caractères.",
        "",
        "Basez-vous sur les données suivantes:",
        f"- Matière: {record.subject}",
        f"- Note: {_format_grade(record.grade)}",
        f"- Moyenne de classe: {_format_grade(record.class_average)}",
        f"- Niveau global: {STATUS_PHRASES[record.status]}",
    ]
    if record.teacher_comment:
        lines.append(f"- Commentaire de l'enseignant: {record.teacher_comment}")
    lines += [
        "",
        "L'appréciation doit évaluer les résultats obtenus, les progrès réalisés",
        "et formuler des conseils personnalisés.",
        "",
        "Rédigez en français avec un style professionnel adapté à un bulletin scolaire.",
    ]
    return "\n".join(lines)


def _request_settings(
    tone: Union[Tone, str],
    length_chars: int,
    max_chars: int,
    model_id: Optional[str],
    temperature: Optional[float],
    max_tokens: Optional[int]
) -> Dict[str, Any]:
    return {
        'model': model_id or get_default_model(),
        'temperature': DEFAULT_TEMPERATURE if temperature is None else temperature,
        'max_tokens': DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens,
        'tone': Tone(tone),
        'target_length': clamp_length(length_chars, max_chars),
    }


def build_appreciation_request(
    record: ClassifiedRecord,
    tone: Union[Tone, str],
    length_chars: int,
    max_chars: int,
    model_id: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None
) -> AppreciationRequest:
    """
    Assemble the generation request for one classified student.

    Args:
        record: Classified student record
        tone: One of the Tone values; unknown strings raise ValueError
        length_chars: Requested length from the slider
        max_chars: Upper bound of the slider; length is clamped to [0, max_chars]
        model_id: Model override (default: DEFAULT_MODEL setting)
        temperature: Sampling temperature (default 0.7)
        max_tokens: Token budget (default 1500)

    Returns:
        AppreciationRequest ready to be sent
    """
    settings = _request_settings(tone, length_chars, max_chars, model_id, temperature, max_tokens)
    return AppreciationRequest(
        **settings,
        student_payload=student_payload(record),
        system_message=SYSTEM_MESSAGE,
        prompt=build_prompt(record, settings['tone'], settings['target_length']),
    )


def class_payload(statistics: ClassStatistics) -> Dict[str, Any]:
    """Class figures handed to the generation service."""
    return statistics.model_dump(mode='json')


def build_class_prompt(statistics: ClassStatistics, tone: Tone, target_length: int) -> str:
    """French prompt asking for the general appreciation of a class."""
    lines = [
        "En tant que professeur principal, rédigez une appréciation générale pour la classe",
        f"avec un ton {TONE_PHRASES[tone]} et d'une longueur d'environ {target_length} caractères.",
        "",
        f"EFFECTIF: {statistics.student_count} élève(s)",
        f"MOYENNE DE CLASSE: {_format_grade(statistics.class_average)}",
        "",
        "RÉPARTITION DES ÉLÈVES PAR TRANCHES DE NOTES:",
    ]
    lines += [
        f"- {bucket.range}: {bucket.count} élèves ({bucket.percentage}%)"
        for bucket in statistics.distribution
    ]
    lines += ["", "MOYENNES PAR MATIÈRE:"]
    if statistics.subject_averages:
        lines += [
            f"- {subject}: {_format_grade(average)}"
            for subject, average in statistics.subject_averages.items()
        ]
    else:
        lines.append("- non disponible")
    lines += ["", "NIVEAUX:"]
    lines += [
        f"- {STATUS_PHRASES[status]}: {statistics.status_counts.get(status, 0)}"
        for status in GradeStatus
    ]
    lines += [
        "",
        "INSTRUCTIONS D'ANALYSE:",
        "1. Fournir un résumé général des résultats de la classe.",
        "2. Commenter la moyenne générale de la classe.",
        "3. Commenter la répartition des élèves par tranches de notes (0-5, 5-10, 10-15, 15-20).",
        "4. Identifier les matières où les élèves excellent et celles qui posent des difficultés.",
        "5. Suggérer des pistes d'amélioration ciblées.",
    ]
    return "\n".join(lines)


def build_class_appreciation_request(
    statistics: ClassStatistics,
    tone: Union[Tone, str],
    length_chars: int,
    max_chars: int,
    model_id: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None
) -> ClassAppreciationRequest:
    """
    Assemble the generation request for a class appreciation.

    Same tone, clamping and defaults as build_appreciation_request; the
    prompt is built from the class statistics of a mapped bulletin.
    """
    settings = _request_settings(tone, length_chars, max_chars, model_id, temperature, max_tokens)
    return ClassAppreciationRequest(
        **settings,
        class_payload=class_payload(statistics),
        system_message=CLASS_SYSTEM_MESSAGE,
        prompt=build_class_prompt(statistics, settings['tone'], settings['target_length']),
    )
