"""
Configuration Router - practice settings and logo.
"""
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session
import logging

from ..auth.dependencies import get_current_account, require_admin
from ..auth.models import Account
from ..config import settings
from ..database import get_db
from ..dependencies import get_object_store
from .logo import delete_logo, upload_logo
from .schemas import ConfigurationEnvelope, ConfigurationUpdate
from .service import get_configuration, update_configuration

# Set up logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/configuration", tags=["Configuration"])

@router.get("", response_model=ConfigurationEnvelope)
async def read_configuration(
    db: Session = Depends(get_db),
    current_account: Account = Depends(get_current_account)
):
    """
    Get the practice configuration.

    ``configuration`` is null until an admin saves it for the first time.
    """
    return ConfigurationEnvelope(configuration=get_configuration(db))

@router.put("", response_model=ConfigurationEnvelope)
async def put_configuration(
    updates: ConfigurationUpdate,
    db: Session = Depends(get_db),
    current_account: Account = Depends(require_admin)
):
    """
    Save configuration fields (admin only).

    - **webhook_url**: Endpoint receiving the email dispatch calls
    - **email_template_first** / **email_template_reminder**: Email bodies
    - **dentist_name**: Shown in the dashboard header
    """
    configuration = update_configuration(db, updates)
    return ConfigurationEnvelope(configuration=configuration)

@router.post("/logo", response_model=ConfigurationEnvelope)
async def post_logo(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    objects=Depends(get_object_store),
    current_account: Account = Depends(require_admin)
):
    """
    Upload a new practice logo (PNG, JPG, JPEG or SVG, at most 2MB).

    The previous logo is removed once the new one is stored.
    """
    data = await file.read()
    logo_url = await upload_logo(
        objects, settings.practice_assets_bucket, file.content_type, data
    )

    previous = get_configuration(db)
    if previous is not None and previous.logo_url:
        await delete_logo(objects, settings.practice_assets_bucket, previous.logo_url)

    configuration = update_configuration(db, ConfigurationUpdate(logo_url=logo_url))
    logger.info(f"Practice logo replaced by {current_account.id}")
    return ConfigurationEnvelope(configuration=configuration)

@router.delete("/logo", response_model=ConfigurationEnvelope)
async def remove_logo(
    db: Session = Depends(get_db),
    objects=Depends(get_object_store),
    current_account: Account = Depends(require_admin)
):
    """Remove the practice logo."""
    configuration = get_configuration(db)
    if configuration is not None and configuration.logo_url:
        await delete_logo(objects, settings.practice_assets_bucket, configuration.logo_url)
        configuration = update_configuration(db, ConfigurationUpdate(logo_url=None))
    return ConfigurationEnvelope(configuration=configuration)
