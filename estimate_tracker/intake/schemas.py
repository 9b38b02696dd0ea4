"""
Intake Schemas - request and response bodies of the automation endpoint.

Field names are camelCase on the wire.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from ..patients.models import PatientStatus

class IntakePdf(BaseModel):
    """Base64 PDF, optionally prefixed with ``data:application/pdf;base64,``"""
    filename: str = ""
    data: str = ""

class IntakeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    email: Optional[str] = None
    status: Optional[PatientStatus] = None
    pdf: Optional[IntakePdf] = None

class IntakePatient(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    email: Optional[str] = None
    status: str
    pdf_url: Optional[str] = Field(None, alias="pdfUrl")
    created_at: str = Field(..., alias="createdAt")

class IntakeResponse(BaseModel):
    success: bool = True
    patient: IntakePatient
