"""
Patients Router - the dashboard's board operations.

Every route works on the signed-in account's PatientState, opening it on
first use.
"""
import asyncio
import logging
from typing import Optional

from fastapi import (
    APIRouter, Depends, File, Form, Query, UploadFile, WebSocket, WebSocketDisconnect, status
)
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from sqlalchemy.orm import Session
import httpx

from ..auth.dependencies import account_from_token, get_current_account
from ..auth.exceptions import AuthException
from ..auth.models import Account
from ..configuration.service import get_configuration
from ..core.feed import ChangeFeed, DELETE, INSERT, UPDATE
from ..database import get_db
from ..dependencies import get_feed, get_http_client, get_session_registry
from ..exceptions import AppException, StoreError
from .board import group_columns
from .email import send_patient_email
from .files import MAX_PDF_BYTES, is_pdf_filename
from .schemas import (
    ArchivedCountsEnvelope,
    ArchiveRequest,
    BoardEnvelope,
    DeleteArchivedEnvelope,
    NotesUpdate,
    Patient,
    PatientCreate,
    PatientEnvelope,
    PatientListEnvelope,
    PatientView,
    PdfAttachment,
    PdfLinkEnvelope,
    StatusUpdate,
)
from .state import FailureReason, OperationResult, PatientState, SessionRegistry

# Set up logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/patients", tags=["Patients"])

FAILURE_STATUS = {
    FailureReason.VALIDATION: status.HTTP_400_BAD_REQUEST,
    FailureReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureReason.LIMIT: status.HTTP_409_CONFLICT,
    FailureReason.REMOTE: status.HTTP_502_BAD_GATEWAY,
}


async def get_patient_state(
    current_account: Account = Depends(get_current_account),
    registry: SessionRegistry = Depends(get_session_registry)
) -> PatientState:
    try:
        return await registry.sign_in(current_account.id)
    except StoreError as e:
        raise AppException(status.HTTP_502_BAD_GATEWAY, str(e))


def _view(state: PatientState, patient: Patient) -> PatientView:
    return PatientView(
        **patient.model_dump(),
        name=patient.display_name,
        pdf_url=state.pdf_url(patient)
    )


def _checked(result: OperationResult) -> OperationResult:
    """
    Raises:
        AppException: Mapping a failed result to its HTTP status
    """
    if not result.success:
        raise AppException(FAILURE_STATUS.get(result.reason, status.HTTP_500_INTERNAL_SERVER_ERROR), result.error)
    return result


@router.get("", response_model=PatientListEnvelope)
async def get_patients(state: PatientState = Depends(get_patient_state)):
    """
    The signed-in account's patients: loaded active records plus every change
    seen since, archived ones included.
    """
    return PatientListEnvelope(patients=[_view(state, p) for p in state.patients])

@router.get("/board", response_model=BoardEnvelope)
async def get_board(
    sort_by: str = Query("date", description="date or name"),
    state: PatientState = Depends(get_patient_state)
):
    """
    The board's columns (``sent`` and ``reminded``), each sorted by creation
    date or by name.
    """
    try:
        columns = group_columns(state.patients, sort_by)
    except ValueError as e:
        raise AppException(status.HTTP_400_BAD_REQUEST, str(e))
    return BoardEnvelope(
        sort_by=sort_by,
        columns={column: [_view(state, p) for p in patients] for column, patients in columns.items()}
    )

@router.get("/archived/counts", response_model=ArchivedCountsEnvelope)
async def get_archived_counts(state: PatientState = Depends(get_patient_state)):
    """Number of archived patients per archive outcome."""
    try:
        counts = await state.archived_counts()
    except StoreError as e:
        logger.error(f"Error counting archived patients: {str(e)}")
        raise AppException(status.HTTP_502_BAD_GATEWAY, "Archived patients could not be counted")
    return ArchivedCountsEnvelope(counts=counts, total=sum(counts.values()))

@router.post("", response_model=PatientEnvelope, status_code=status.HTTP_201_CREATED)
async def post_patient(
    last_name: str = Form(""),
    first_name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    pdf: Optional[UploadFile] = File(None),
    state: PatientState = Depends(get_patient_state)
):
    """
    Add a patient to the ``sent`` column.

    - **last_name**: Required
    - **first_name** / **email**: Optional
    - **pdf**: Optional cost estimate, PDF only, at most 10MB
    """
    attachment = None
    if pdf is not None and pdf.filename:
        content = await pdf.read()
        if not is_pdf_filename(pdf.filename):
            raise AppException(status.HTTP_400_BAD_REQUEST, "Only PDF files are allowed")
        if len(content) > MAX_PDF_BYTES:
            raise AppException(status.HTTP_400_BAD_REQUEST, "PDF file must be less than 10MB")
        attachment = PdfAttachment(filename=pdf.filename, content=content)

    try:
        data = PatientCreate(first_name=first_name, last_name=last_name, email=email, pdf=attachment)
    except ValidationError as e:
        error = e.errors()[0]
        raise AppException(status.HTTP_400_BAD_REQUEST, f"{error['loc'][0]}: {error['msg']}")

    result = _checked(await state.create(data))
    return PatientEnvelope(patient=_view(state, result.patient))

@router.patch("/{patient_id}/status", response_model=PatientEnvelope)
async def patch_status(
    patient_id: int,
    status_update: StatusUpdate,
    state: PatientState = Depends(get_patient_state)
):
    """Move a patient to another column; archive outcomes archive the patient."""
    result = _checked(await state.move(patient_id, status_update.status))
    return PatientEnvelope(patient=_view(state, result.patient))

@router.post("/{patient_id}/archive", response_model=PatientEnvelope)
async def archive_patient(
    patient_id: int,
    archive_request: ArchiveRequest,
    state: PatientState = Depends(get_patient_state)
):
    """Archive a patient as ``appointment`` or ``no_appointment``."""
    result = _checked(await state.archive(patient_id, archive_request.archive_type))
    return PatientEnvelope(patient=_view(state, result.patient))

@router.put("/{patient_id}/notes", response_model=PatientEnvelope)
async def put_notes(
    patient_id: int,
    notes_update: NotesUpdate,
    state: PatientState = Depends(get_patient_state)
):
    result = _checked(await state.update_notes(patient_id, notes_update.notes))
    return PatientEnvelope(patient=_view(state, result.patient))

@router.post("/{patient_id}/send-email", response_model=PatientEnvelope)
async def send_email(
    patient_id: int,
    state: PatientState = Depends(get_patient_state),
    db: Session = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Send the first email or the reminder through the configured webhook.

    At most two emails are sent per patient.
    """
    result = _checked(await send_patient_email(state, patient_id, get_configuration(db), client))
    return PatientEnvelope(patient=_view(state, result.patient))

@router.get("/{patient_id}/pdf", response_model=PdfLinkEnvelope)
async def get_pdf_link(
    patient_id: int,
    state: PatientState = Depends(get_patient_state)
):
    """A one-hour signed link to the patient's cost estimate."""
    _checked(await state.create_pdf_url(patient_id))
    return PdfLinkEnvelope(url=state.pdf_url(state.get(patient_id)))

@router.delete("/archived", response_model=DeleteArchivedEnvelope)
async def delete_archived(state: PatientState = Depends(get_patient_state)):
    """Delete every archived patient together with its PDF."""
    result = _checked(await state.delete_archived())
    return DeleteArchivedEnvelope(deleted=result.count)

@router.websocket("/feed")
async def patient_feed(
    websocket: WebSocket,
    token: str = Query(""),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    """
    Relay the signed-in account's record changes as
    ``{"event": ..., "record": ...}`` messages.
    """
    try:
        account = account_from_token(db, token)
    except AuthException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    account_id = account.id

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()

    def relay(event: str):
        def push(row: dict) -> None:
            queue.put_nowait({"event": event, "record": jsonable_encoder(Patient.model_validate(row))})
        return push

    subscription = feed.subscribe(
        {"owner_id": account_id},
        on_insert=relay(INSERT),
        on_update=relay(UPDATE),
        on_delete=relay(DELETE)
    )
    logger.info(f"Feed relay opened for {account_id}")

    async def forward():
        while True:
            await websocket.send_json(await queue.get())

    async def drain():
        while True:
            await websocket.receive_text()

    sender = asyncio.create_task(forward())
    receiver = asyncio.create_task(drain())
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"Feed relay for {account_id} failed: {str(error)}")
    finally:
        feed.unsubscribe(subscription)
        logger.info(f"Feed relay closed for {account_id}")
