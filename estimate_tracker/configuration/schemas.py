"""
Configuration Schemas - settings row updates and responses.
"""
from typing import Optional
from pydantic import BaseModel
from datetime import datetime

class ConfigurationUpdate(BaseModel):
    """
    Configuration Update Schema - partial update of the settings row

    Omitted fields are left unchanged; fields sent as ``null`` are cleared.
    """
    webhook_url: Optional[str] = None
    email_template_first: Optional[str] = None
    email_template_reminder: Optional[str] = None
    dentist_name: Optional[str] = None
    logo_url: Optional[str] = None

    class Config:
        extra = "forbid"

class ConfigurationResponse(BaseModel):
    id: int
    webhook_url: Optional[str] = None
    email_template_first: Optional[str] = None
    email_template_reminder: Optional[str] = None
    dentist_name: Optional[str] = None
    logo_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        """Configuration for Pydantic model to enable ORM mode"""
        from_attributes = True

class ConfigurationEnvelope(BaseModel):
    """``configuration`` is null until the first update"""
    success: bool = True
    configuration: Optional[ConfigurationResponse] = None
