"""
Patient Schemas - Pydantic models for the board's records, inputs and responses.
"""
from typing import Optional, List, Union, Dict
from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
import re

from .models import PatientStatus, ArchiveStatus

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


class Patient(BaseModel):
    """
    Patient Schema - The cached, client-visible form of a patient row

    ``id`` is the database id, or a ``temp-...`` string while an optimistic
    insert is pending.
    """
    id: Union[int, str]
    owner_id: str
    first_name: Optional[str] = None
    last_name: str
    email: Optional[str] = None
    pdf_file_path: Optional[str] = None
    status: PatientStatus
    archive_status: ArchiveStatus = ArchiveStatus.NOT_ARCHIVED
    created_at: datetime
    reminded_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    notes: Optional[str] = None
    email_sent_count: int = 0
    email_sent_at: Optional[datetime] = None

    class Config:
        """Configuration for Pydantic model to enable ORM mode"""
        from_attributes = True

    @field_validator("created_at", "reminded_at", "archived_at", "email_sent_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands back naive timestamps
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_pending(self) -> bool:
        return isinstance(self.id, str)


class PdfAttachment(BaseModel):
    """A PDF uploaded together with a new patient."""
    filename: str
    content: bytes


class PatientCreate(BaseModel):
    """
    Patient Creation Schema - Input of the board's "new patient" form

    Fields:
    - first_name: Optional first name
    - last_name: Required, must not be blank
    - email: Optional, must look like an email address
    - pdf: Optional cost-estimate PDF
    """
    first_name: Optional[str] = None
    last_name: str
    email: Optional[str] = None
    pdf: Optional[PdfAttachment] = None

    @field_validator("first_name", "email")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("last_name")
    @classmethod
    def last_name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("last name is required")
        return value

    @field_validator("email")
    @classmethod
    def email_format(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_email(value):
            raise ValueError("invalid email format")
        return value


class StatusUpdate(BaseModel):
    status: PatientStatus

class ArchiveRequest(BaseModel):
    archive_type: PatientStatus = Field(..., description="appointment or no_appointment")

class NotesUpdate(BaseModel):
    notes: Optional[str] = None


class PatientView(Patient):
    """
    Patient Response Schema - A cached record plus derived presentation fields
    """
    name: str
    pdf_url: Optional[str] = None

class PatientEnvelope(BaseModel):
    success: bool = True
    patient: PatientView

class PatientListEnvelope(BaseModel):
    success: bool = True
    patients: List[PatientView]

class BoardEnvelope(BaseModel):
    """Active records grouped by column"""
    success: bool = True
    sort_by: str
    columns: Dict[str, List[PatientView]]

class ArchivedCountsEnvelope(BaseModel):
    success: bool = True
    counts: Dict[str, int]
    total: int

class DeleteArchivedEnvelope(BaseModel):
    success: bool = True
    deleted: int

class PdfLinkEnvelope(BaseModel):
    success: bool = True
    url: str
