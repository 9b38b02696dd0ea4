"""
Email Dispatch - templated reminder emails posted to the configured webhook.

The webhook (an external automation) does the actual sending; this module
only renders the template and records the dispatch on the patient.
"""
import logging
from typing import Optional

import httpx

from .models import MAX_EMAILS_PER_PATIENT, ArchiveStatus, PatientStatus
from .schemas import Patient
from .state import FailureReason, OperationResult, PatientState

logger = logging.getLogger(__name__)


def render_template(template: str, patient: Patient) -> str:
    """
    Substitute ``{{firstName}}``, ``{{lastName}}`` and ``{{email}}``.
    """
    return (
        template
        .replace("{{firstName}}", patient.first_name or "")
        .replace("{{lastName}}", patient.last_name or "")
        .replace("{{email}}", patient.email or "")
    )


def choose_template(configuration, sent_count: int) -> Optional[str]:
    """
    Pick the first-contact template for the first email and the reminder
    template afterwards, each falling back to the other.
    """
    if configuration is None:
        return None
    first = configuration.email_template_first
    reminder = configuration.email_template_reminder
    if sent_count == 0:
        return first or reminder
    return reminder or first


async def send_patient_email(
    state: PatientState,
    patient_id,
    configuration,
    client: httpx.AsyncClient
) -> OperationResult:
    """
    Send the next email to a patient and move the patient to ``reminded``.

    Every pre-check refuses before anything is posted or persisted.

    Args:
        state: The owner's patient state
        patient_id: Patient to email
        configuration: The practice configuration row (may be None)
        client: HTTP client used for the webhook call

    Returns:
        OperationResult: The updated patient on success
    """
    patient = state.get(patient_id)
    if patient is None:
        return OperationResult.fail(FailureReason.NOT_FOUND, "Patient not found")

    if patient.archive_status == ArchiveStatus.ARCHIVED:
        return OperationResult.fail(FailureReason.VALIDATION, "Archived patients cannot be emailed")

    if patient.email_sent_count >= MAX_EMAILS_PER_PATIENT:
        return OperationResult.fail(
            FailureReason.LIMIT,
            f"Email limit reached: at most {MAX_EMAILS_PER_PATIENT} emails per patient"
        )

    template = choose_template(configuration, patient.email_sent_count)
    if configuration is None or not configuration.webhook_url or not template:
        return OperationResult.fail(
            FailureReason.VALIDATION,
            "Configuration missing: set the webhook URL and an email template in the settings"
        )

    if not patient.email:
        return OperationResult.fail(FailureReason.VALIDATION, "This patient has no email address")

    payload = {
        "firstName": patient.first_name or "",
        "lastName": patient.last_name,
        "email": patient.email,
        "emailText": render_template(template, patient),
    }

    try:
        response = await client.post(configuration.webhook_url, json=payload)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Error sending email for patient {patient_id}: {str(e)}")
        return OperationResult.fail(FailureReason.REMOTE, "There was a problem sending the email")

    logger.info(f"Email for patient {patient_id} handed to webhook")

    result = await state.increment_email_count(patient_id)
    if not result.success:
        return result
    return await state.move(patient_id, PatientStatus.REMINDED)
