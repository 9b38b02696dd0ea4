"""
Patient Model - One cost estimate being followed up on the board.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, func
from datetime import datetime, timezone
import enum

from ..database import Base


class PatientStatus(str, enum.Enum):
    """
    Board status of a patient record.

    ``sent`` and ``reminded`` are the active columns; ``appointment`` and
    ``no_appointment`` are the archival outcomes.
    """
    SENT = "sent"
    REMINDED = "reminded"
    APPOINTMENT = "appointment"
    NO_APPOINTMENT = "no_appointment"


class ArchiveStatus(str, enum.Enum):
    ARCHIVED = "archived"
    NOT_ARCHIVED = "not_archived"


ACTIVE_STATUSES = (PatientStatus.SENT, PatientStatus.REMINDED)
ARCHIVAL_STATUSES = (PatientStatus.APPOINTMENT, PatientStatus.NO_APPOINTMENT)

# Application policy, not enforced by the database
MAX_EMAILS_PER_PATIENT = 2


def _utcnow():
    return datetime.now(timezone.utc)


class PatientRecord(Base):
    """
    PatientRecord Model

    Fields:
    - id: Primary key assigned by the database
    - owner_id: Account that created the record
    - first_name / last_name: Patient name, last name required
    - email: Optional patient email address
    - pdf_file_path: Storage key of the attached cost estimate
    - status: Board status (see PatientStatus)
    - archive_status: archived / not_archived, written together with archived_at
    - created_at / reminded_at / archived_at: Workflow timestamps
    - notes: Free text
    - email_sent_count / email_sent_at: Reminder email bookkeeping
    """
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    pdf_file_path = Column(String, nullable=True)
    status = Column(String, nullable=False, default=PatientStatus.SENT.value, index=True)
    archive_status = Column(String, nullable=False, default=ArchiveStatus.NOT_ARCHIVED.value, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    reminded_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    email_sent_count = Column(Integer, nullable=False, default=0)
    email_sent_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PatientRecord(id={self.id}, last_name={self.last_name}, status={self.status})>"
