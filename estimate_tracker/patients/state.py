"""
Patient State - per-session cache of the board's patient records.

The cache has two writers:

* local operations, which apply their change optimistically, call the record
  store, and restore the exact pre-call snapshot when the call fails;
* the Change Feed, whose pushed rows overwrite the cached record with the same
  id wholesale (insert and update) or drop it (delete).

The last message touching an id wins. No operation raises to its caller: each
returns an ``OperationResult``.
"""
import enum
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from ..core.feed import ChangeFeed, Subscription
from ..exceptions import StoreError, StorageError
from .files import PDF_CONTENT_TYPE, build_pdf_key
from .models import (
    ARCHIVAL_STATUSES,
    MAX_EMAILS_PER_PATIENT,
    ArchiveStatus,
    PatientStatus
)
from .schemas import Patient, PatientCreate

logger = logging.getLogger(__name__)

PatientId = Union[int, str]


class FailureReason(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    LIMIT = "limit"
    REMOTE = "remote"


class OperationResult:
    """Outcome of a state operation: a success flag plus an optional error."""

    def __init__(
        self,
        success: bool,
        error: Optional[str] = None,
        reason: Optional[FailureReason] = None,
        patient: Optional[Patient] = None,
        count: int = 0
    ):
        self.success = success
        self.error = error
        self.reason = reason
        self.patient = patient
        self.count = count

    @classmethod
    def ok(cls, patient: Optional[Patient] = None, count: int = 0) -> "OperationResult":
        return cls(True, patient=patient, count=count)

    @classmethod
    def fail(cls, reason: FailureReason, error: str) -> "OperationResult":
        return cls(False, error=error, reason=reason)

    def __repr__(self):
        if self.success:
            return "<OperationResult(success=True)>"
        return f"<OperationResult(success=False, reason={self.reason}, error={self.error!r})>"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PatientState:
    """
    Client-visible set of one owner's patient records.

    Args:
        owner_id: Account whose records are cached
        records: Record store of the ``patients`` table
        objects: Object store holding the PDFs
        feed: Change feed to reconcile against
        bucket: Bucket of the cost-estimate PDFs
        signed_url_ttl: Lifetime of derived PDF links in seconds
    """
    def __init__(
        self,
        owner_id: str,
        records,
        objects,
        feed: ChangeFeed,
        bucket: str = "cost_estimates",
        signed_url_ttl: int = 3600
    ):
        self.owner_id = owner_id
        self.records = records
        self.objects = objects
        self.feed = feed
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl
        self.patients: List[Patient] = []
        self.loaded = False
        self.loading = False
        self._pdf_urls: Dict[str, str] = {}
        self._subscription: Optional[Subscription] = None

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------
    def _index(self, patient_id: PatientId) -> Optional[int]:
        for index, patient in enumerate(self.patients):
            if patient.id == patient_id:
                return index
        return None

    def get(self, patient_id: PatientId) -> Optional[Patient]:
        index = self._index(patient_id)
        return self.patients[index] if index is not None else None

    def _put(self, patient: Patient) -> None:
        index = self._index(patient.id)
        if index is None:
            self.patients.append(patient)
        else:
            self.patients[index] = patient

    def _drop(self, patient_id: PatientId) -> None:
        self.patients = [patient for patient in self.patients if patient.id != patient_id]

    def _restore(self, snapshot: Patient) -> None:
        # Only a record still in the cache is restored; a feed delete wins
        index = self._index(snapshot.id)
        if index is not None:
            self.patients[index] = snapshot

    def pdf_url(self, patient: Patient) -> Optional[str]:
        """Signed PDF link derived for this session, if one was created."""
        if not patient.pdf_file_path:
            return None
        return self._pdf_urls.get(patient.pdf_file_path)

    async def create_pdf_url(self, patient_id: PatientId) -> OperationResult:
        """
        Derive a fresh signed link for a record's PDF.
        """
        patient = self.get(patient_id)
        if patient is None:
            return OperationResult.fail(FailureReason.NOT_FOUND, "Patient not found")
        if not patient.pdf_file_path:
            return OperationResult.fail(FailureReason.NOT_FOUND, "Patient has no PDF attached")
        try:
            url = await self.objects.create_signed_url(self.bucket, patient.pdf_file_path, self.signed_url_ttl)
        except StorageError as e:
            logger.error(f"Could not sign PDF link for patient {patient_id}: {str(e)}")
            return OperationResult.fail(FailureReason.REMOTE, "PDF link could not be created")
        self._pdf_urls[patient.pdf_file_path] = url
        return OperationResult.ok(patient)

    # ------------------------------------------------------------------
    # Change feed reconciliation
    # ------------------------------------------------------------------
    def start(self) -> None:
        """
        Subscribe to the owner's changes. At most one subscription is active:
        starting again replaces the previous one.
        """
        if self._subscription is not None:
            self.feed.unsubscribe(self._subscription)
        self._subscription = self.feed.subscribe(
            {"owner_id": self.owner_id},
            on_insert=self.apply_insert,
            on_update=self.apply_update,
            on_delete=self.apply_delete
        )

    def stop(self) -> None:
        """Tear down the subscription and forget the cached records."""
        if self._subscription is not None:
            self.feed.unsubscribe(self._subscription)
            self._subscription = None
        self.patients = []
        self._pdf_urls = {}
        self.loaded = False

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def apply_insert(self, row: dict) -> None:
        self._put(Patient.model_validate(row))

    def apply_update(self, row: dict) -> None:
        patient = Patient.model_validate(row)
        if self._index(patient.id) is None:
            logger.debug(f"Feed update for uncached patient {patient.id}, caching it")
        self._put(patient)

    def apply_delete(self, row: dict) -> None:
        self._drop(row.get("id"))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def load(self) -> OperationResult:
        """
        Fetch the owner's non-archived records, oldest first.
        """
        self.loading = True
        try:
            rows = await self.records.select(
                {"owner_id": self.owner_id, "archive_status": ArchiveStatus.NOT_ARCHIVED.value},
                order_by="created_at"
            )
        except StoreError as e:
            logger.error(f"Error fetching patients for {self.owner_id}: {str(e)}")
            self.patients = []
            return OperationResult.fail(FailureReason.REMOTE, "Patient data could not be loaded")
        finally:
            self.loading = False

        self.patients = [Patient.model_validate(row) for row in rows]
        self.loaded = True
        return OperationResult.ok(count=len(self.patients))

    async def create(self, data: PatientCreate) -> OperationResult:
        """
        Add a patient: optimistic placeholder, PDF upload, insert, then replace
        the placeholder with the stored record.
        """
        temp_id = f"temp-{uuid.uuid4()}"
        placeholder = Patient(
            id=temp_id,
            owner_id=self.owner_id,
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            status=PatientStatus.SENT,
            created_at=_utcnow()
        )
        self.patients.append(placeholder)

        pdf_key = None
        try:
            if data.pdf is not None:
                pdf_key = build_pdf_key(self.owner_id, data.pdf.filename)
                await self.objects.upload(
                    self.bucket, pdf_key, data.pdf.content,
                    content_type=PDF_CONTENT_TYPE, upsert=False
                )
            row = await self.records.insert({
                "owner_id": self.owner_id,
                "first_name": data.first_name,
                "last_name": data.last_name,
                "email": data.email,
                "pdf_file_path": pdf_key,
                "status": PatientStatus.SENT.value,
                "archive_status": ArchiveStatus.NOT_ARCHIVED.value,
                "email_sent_count": 0,
            })
        except StorageError as e:
            logger.error(f"PDF upload failed while creating patient: {str(e)}")
            self._drop(temp_id)
            return OperationResult.fail(FailureReason.REMOTE, "PDF could not be uploaded")
        except StoreError as e:
            logger.error(f"Insert failed while creating patient: {str(e)}")
            self._drop(temp_id)
            if pdf_key:
                await self._remove_pdfs([pdf_key])
            return OperationResult.fail(FailureReason.REMOTE, "Patient could not be created")

        patient = Patient.model_validate(row)
        if pdf_key:
            try:
                self._pdf_urls[pdf_key] = await self.objects.create_signed_url(
                    self.bucket, pdf_key, self.signed_url_ttl
                )
            except StorageError as e:
                logger.warning(f"Could not sign PDF link for new patient {patient.id}: {str(e)}")

        placeholder_index = self._index(temp_id)
        if self._index(patient.id) is not None:
            # The feed echo arrived first
            self._drop(temp_id)
            self._put(patient)
        elif placeholder_index is not None:
            self.patients[placeholder_index] = patient
        else:
            self.patients.append(patient)

        logger.info(f"Patient {patient.id} created for {self.owner_id}")
        return OperationResult.ok(patient)

    async def _mutate(self, patient_id: PatientId, changes: dict, action: str) -> OperationResult:
        """
        Apply ``changes`` optimistically, persist them, and restore the exact
        snapshot on failure.
        """
        patient = self.get(patient_id)
        if patient is None:
            return OperationResult.fail(FailureReason.NOT_FOUND, "Patient not found")
        if patient.is_pending:
            return OperationResult.fail(FailureReason.VALIDATION, "Patient is still being saved")

        snapshot = patient.model_copy()
        self._put(patient.model_copy(update=changes))

        remote = {
            field: value.value if isinstance(value, enum.Enum) else value
            for field, value in changes.items()
        }
        try:
            rows = await self.records.update({"id": patient_id, "owner_id": self.owner_id}, remote)
            if not rows:
                raise StoreError(f"patient {patient_id} not found in store")
        except StoreError as e:
            logger.error(f"Error during {action} of patient {patient_id}: {str(e)}")
            self._restore(snapshot)
            return OperationResult.fail(FailureReason.REMOTE, f"Patient could not be updated ({action})")

        stored = Patient.model_validate(rows[0])
        self._put(stored)
        return OperationResult.ok(stored)

    async def move(self, patient_id: PatientId, new_status: PatientStatus) -> OperationResult:
        """
        Move a patient to another column. Archival statuses archive; moving an
        archived record back to an active column un-archives it.
        """
        new_status = PatientStatus(new_status)
        if new_status in ARCHIVAL_STATUSES:
            return await self.archive(patient_id, new_status)

        patient = self.get(patient_id)
        if patient is None:
            return OperationResult.fail(FailureReason.NOT_FOUND, "Patient not found")

        changes = {"status": new_status}
        if new_status == PatientStatus.REMINDED:
            changes["reminded_at"] = _utcnow()
        if patient.archive_status == ArchiveStatus.ARCHIVED:
            changes["archive_status"] = ArchiveStatus.NOT_ARCHIVED
            changes["archived_at"] = None
        return await self._mutate(patient_id, changes, "move")

    async def archive(self, patient_id: PatientId, archive_type: PatientStatus) -> OperationResult:
        """
        Archive a patient with an archival outcome; status, archive_status and
        archived_at are always written together.
        """
        archive_type = PatientStatus(archive_type)
        if archive_type not in ARCHIVAL_STATUSES:
            return OperationResult.fail(
                FailureReason.VALIDATION,
                f"{archive_type.value} is not an archive status"
            )
        return await self._mutate(patient_id, {
            "status": archive_type,
            "archive_status": ArchiveStatus.ARCHIVED,
            "archived_at": _utcnow(),
        }, "archive")

    async def update_notes(self, patient_id: PatientId, text: Optional[str]) -> OperationResult:
        """Set a patient's notes; blank text clears them."""
        notes = (text or "").strip() or None
        return await self._mutate(patient_id, {"notes": notes}, "notes update")

    async def increment_email_count(self, patient_id: PatientId) -> OperationResult:
        """
        Count one more dispatched email. Refused without any remote call once
        the per-patient limit is reached.
        """
        patient = self.get(patient_id)
        if patient is None:
            return OperationResult.fail(FailureReason.NOT_FOUND, "Patient not found")
        if patient.email_sent_count >= MAX_EMAILS_PER_PATIENT:
            return OperationResult.fail(
                FailureReason.LIMIT,
                f"Email limit reached: at most {MAX_EMAILS_PER_PATIENT} emails per patient"
            )
        return await self._mutate(patient_id, {
            "email_sent_count": patient.email_sent_count + 1,
            "email_sent_at": _utcnow(),
        }, "email count")

    async def archived_counts(self) -> Dict[str, int]:
        """
        Count the owner's archived records per archival status.

        Raises:
            StoreError: If the store cannot be queried
        """
        rows = await self.records.select({
            "owner_id": self.owner_id,
            "archive_status": ArchiveStatus.ARCHIVED.value,
        })
        counts = {status.value: 0 for status in ARCHIVAL_STATUSES}
        for row in rows:
            if row["status"] in counts:
                counts[row["status"]] += 1
        return counts

    async def delete_archived(self) -> OperationResult:
        """
        Delete every archived record of the owner together with its PDF.

        PDF removal is best-effort; if the rows cannot be deleted the removed
        records are put back into the cache.
        """
        archival_values = [status.value for status in ARCHIVAL_STATUSES]
        removed = [patient for patient in self.patients if patient.status in ARCHIVAL_STATUSES]
        self.patients = [patient for patient in self.patients if patient.status not in ARCHIVAL_STATUSES]
        filters = {"owner_id": self.owner_id, "status": archival_values}

        try:
            stored = await self.records.select(filters)
            pdf_keys = sorted(
                {patient.pdf_file_path for patient in removed if patient.pdf_file_path}
                | {row["pdf_file_path"] for row in stored if row.get("pdf_file_path")}
            )
            await self._remove_pdfs(pdf_keys)
            deleted = await self.records.delete(filters)
        except StoreError as e:
            logger.error(f"Error deleting archived patients of {self.owner_id}: {str(e)}")
            for patient in removed:
                if self._index(patient.id) is None:
                    self.patients.append(patient)
            return OperationResult.fail(FailureReason.REMOTE, "Archived patients could not be deleted")

        for key in pdf_keys:
            self._pdf_urls.pop(key, None)
        logger.info(f"Deleted {deleted} archived patient(s) of {self.owner_id}")
        return OperationResult.ok(count=deleted)

    async def _remove_pdfs(self, keys: List[str]) -> None:
        if not keys:
            return
        try:
            await self.objects.remove(self.bucket, keys)
        except StorageError as e:
            logger.error(f"Could not remove {len(keys)} PDF(s) from {self.bucket}: {str(e)}")


class SessionRegistry:
    """
    One PatientState per signed-in account.

    Signing in twice reuses the existing state, so an account never holds
    more than one feed subscription.
    """
    def __init__(self, state_factory: Callable[[str], PatientState]):
        self.state_factory = state_factory
        self._states: Dict[str, PatientState] = {}

    async def sign_in(self, owner_id: str) -> PatientState:
        """
        Raises:
            StoreError: If the owner's records could not be loaded; the next
                sign-in retries the load
        """
        state = self._states.get(owner_id)
        if state is None:
            state = self.state_factory(owner_id)
            self._states[owner_id] = state
            logger.info(f"Session opened for {owner_id}")
        if not state.subscribed:
            state.start()
        if not state.loaded:
            result = await state.load()
            if not result.success:
                raise StoreError(result.error)
        return state

    def get(self, owner_id: str) -> Optional[PatientState]:
        return self._states.get(owner_id)

    def sign_out(self, owner_id: str) -> bool:
        state = self._states.pop(owner_id, None)
        if state is None:
            return False
        state.stop()
        logger.info(f"Session closed for {owner_id}")
        return True

    def close_all(self) -> None:
        for owner_id in list(self._states):
            self.sign_out(owner_id)
