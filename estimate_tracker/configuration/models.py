"""
System Configuration Model - the practice's single settings row.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, func
from datetime import datetime, timezone

from ..database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class SystemConfiguration(Base):
    """
    SystemConfiguration Model

    Fields:
    - webhook_url: Endpoint receiving the templated emails
    - email_template_first: Template of the first email
    - email_template_reminder: Template of the reminder email
    - dentist_name: Practice display name
    - logo_url: Public URL of the practice logo
    """
    __tablename__ = "system_configurations"

    id = Column(Integer, primary_key=True, index=True)
    webhook_url = Column(String, nullable=True)
    email_template_first = Column(Text, nullable=True)
    email_template_reminder = Column(Text, nullable=True)
    dentist_name = Column(String, nullable=True)
    logo_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<SystemConfiguration(id={self.id}, dentist_name={self.dentist_name})>"
