"""Interpret report envelopes delivered by the report webhook."""

import logging
from typing import Any

from pydantic import ValidationError

from classreview.errors import ReportError
from classreview.models import ReportEnvelope, ReportResult

logger = logging.getLogger(__name__)

INVALID_REPORT_MESSAGE = "Réponse N8N invalide"


def receive_report(envelope: Any) -> ReportResult:
    """
    Unpack a report envelope.

    Accepts a ReportEnvelope or the decoded webhook body. Only status
    'completed' with a rapport_html that is not blank is a success. Any
    other envelope (still processing, failed, malformed) gets the same
    generic failure.
    """
    if not isinstance(envelope, ReportEnvelope):
        try:
            envelope = ReportEnvelope.model_validate(envelope)
        except ValidationError as e:
            logger.warning("Malformed report envelope: %s", e)
            return ReportResult(success=False, error=INVALID_REPORT_MESSAGE)

    if envelope.status == 'completed' and (envelope.rapport_html or '').strip():
        logger.info("Report received (%d characters)", len(envelope.rapport_html))
        return ReportResult(
            success=True,
            html_report=envelope.rapport_html,
            metadata=envelope.metadata,
        )

    logger.info("Report envelope not usable (status=%r)", envelope.status)
    return ReportResult(success=False, error=INVALID_REPORT_MESSAGE)


def html_or_raise(result: ReportResult) -> str:
    """HTML of a successful result; raises ReportError otherwise."""
    if not result.success or not (result.html_report or '').strip():
        raise ReportError(result.error or INVALID_REPORT_MESSAGE)
    return result.html_report
