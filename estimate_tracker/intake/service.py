"""
Intake Service - creates patients on behalf of trusted automations.

Records are owned by the first admin account and go through the same record
store as the dashboard, so open board sessions see them through the change
feed.
"""
import base64
import binascii
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..auth.service import get_first_admin_id
from ..exceptions import AppException, StoreError, StorageError
from ..patients.files import PDF_CONTENT_TYPE, build_pdf_key, is_pdf_filename
from ..patients.models import ARCHIVAL_STATUSES, ArchiveStatus, PatientStatus
from ..patients.schemas import is_valid_email
from .schemas import IntakePatient, IntakePdf, IntakeRequest, IntakeResponse

# Set up logging
logger = logging.getLogger(__name__)

_DATA_URI_PREFIX = re.compile(r"^data:application/pdf;base64,")
_WHITESPACE = re.compile(r"\s+")


class IntakeError(AppException):
    """An intake failure reported to the caller as ``<Reason>: <detail>``."""


def bad_request(detail: str) -> IntakeError:
    return IntakeError(status.HTTP_400_BAD_REQUEST, f"Bad Request: {detail}")


def server_error(detail: str) -> IntakeError:
    return IntakeError(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Internal Server Error: {detail}")


def parse_request(body) -> IntakeRequest:
    """
    Validate a decoded JSON body.

    Raises:
        IntakeError: 400 for anything that is not a usable patient payload
    """
    if not isinstance(body, dict):
        raise bad_request("JSON object expected")
    try:
        payload = IntakeRequest.model_validate(body)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ()))
        logger.error(f"Invalid intake payload: {e.errors()}")
        raise bad_request(f"{field}: {error.get('msg')}" if field else error.get("msg"))

    if not payload.last_name or not payload.last_name.strip():
        logger.error("Missing required field: lastName")
        raise bad_request("lastName is required")

    if payload.email and payload.email.strip() and not is_valid_email(payload.email.strip()):
        logger.error(f"Invalid email in intake payload: {payload.email}")
        raise bad_request("Invalid email format")
    return payload


def decode_pdf(pdf: IntakePdf, max_bytes: int) -> bytes:
    """
    Decode and check an intake PDF.

    Raises:
        IntakeError: 400 for invalid base64, oversize content or a non-PDF name
    """
    encoded = _WHITESPACE.sub("", _DATA_URI_PREFIX.sub("", pdf.data))
    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.error(f"PDF processing error: {str(e)}")
        raise bad_request("Invalid PDF data")

    if len(content) > max_bytes:
        logger.error(f"PDF file too large: {len(content) / (1024 * 1024):.2f}MB")
        raise bad_request(f"PDF file must be less than {max_bytes // (1024 * 1024)}MB")

    if not is_pdf_filename(pdf.filename):
        logger.error(f"Invalid file type: {pdf.filename}")
        raise bad_request("Only PDF files are allowed")
    return content


async def create_intake_patient(
    db: Session,
    records,
    objects,
    payload: IntakeRequest,
    bucket: str,
    max_pdf_bytes: int,
    signed_url_ttl: int = 3600
) -> IntakeResponse:
    """
    Create a patient from a validated intake payload.

    Args:
        db: Database session used to resolve the owning admin
        records: Record store of the ``patients`` table
        objects: Object store holding the PDFs
        payload: Validated request body
        bucket: Bucket of the cost-estimate PDFs
        max_pdf_bytes: Size limit of a decoded PDF
        signed_url_ttl: Lifetime of the returned PDF link in seconds

    Returns:
        IntakeResponse: Summary of the created patient

    Raises:
        IntakeError: For rejected input (400) or a failed step (500)
    """
    owner_id = await run_in_threadpool(get_first_admin_id, db)
    if owner_id is None:
        logger.error("No admin account found for intake")
        raise server_error("No admin user found")

    pdf_key: Optional[str] = None
    pdf = payload.pdf
    if pdf is not None and pdf.filename and pdf.data:
        content = decode_pdf(pdf, max_pdf_bytes)
        pdf_key = build_pdf_key(owner_id, pdf.filename)
        logger.info(f"Uploading PDF to: {pdf_key}")
        try:
            await objects.upload(bucket, pdf_key, content, content_type=PDF_CONTENT_TYPE, upsert=False)
        except StorageError as e:
            logger.error(f"Storage upload error: {str(e)}")
            raise server_error("Failed to upload PDF")

    first_name = (payload.first_name or "").strip() or None
    last_name = payload.last_name.strip()
    email = (payload.email or "").strip() or None
    patient_status = payload.status or PatientStatus.SENT
    now = datetime.now(timezone.utc)

    values = {
        "owner_id": owner_id,
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "status": patient_status.value,
        "archive_status": ArchiveStatus.NOT_ARCHIVED.value,
        "pdf_file_path": pdf_key,
        "email_sent_count": 0,
        "created_at": now,
    }
    if patient_status in ARCHIVAL_STATUSES:
        values["archive_status"] = ArchiveStatus.ARCHIVED.value
        values["archived_at"] = now

    try:
        row = await records.insert(values)
    except StoreError as e:
        logger.error(f"Database insert error: {str(e)}")
        if pdf_key:
            try:
                await objects.remove(bucket, [pdf_key])
            except StorageError as cleanup_error:
                logger.error(f"Could not remove orphaned PDF {pdf_key}: {str(cleanup_error)}")
        raise server_error("Failed to create patient record")

    pdf_url = None
    if pdf_key:
        try:
            pdf_url = await objects.create_signed_url(bucket, pdf_key, signed_url_ttl)
        except StorageError as e:
            logger.warning(f"Could not sign PDF link for patient {row['id']}: {str(e)}")

    created_at = row["created_at"]
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    logger.info(f"Patient {row['id']} created through intake for {owner_id}")
    return IntakeResponse(patient=IntakePatient(
        id=str(row["id"]),
        name=" ".join(part for part in (first_name, last_name) if part),
        email=email,
        status=row["status"],
        pdf_url=pdf_url,
        created_at=created_at.isoformat()
    ))
