"""
Configuration Service - read and update the singleton settings row.

The row is created lazily by the first update and never deleted.
"""
from typing import Optional
from sqlalchemy.orm import Session
from fastapi import status
import logging

from ..exceptions import AppException
from .models import SystemConfiguration
from .schemas import ConfigurationUpdate

# Set up logging
logger = logging.getLogger(__name__)

def get_configuration(db: Session) -> Optional[SystemConfiguration]:
    """
    Get the settings row.

    Args:
        db: Database session

    Returns:
        The row, or None if nothing has been configured yet
    """
    return db.query(SystemConfiguration).order_by(SystemConfiguration.id).first()

def update_configuration(db: Session, updates: ConfigurationUpdate) -> SystemConfiguration:
    """
    Merge the supplied fields into the settings row, creating it if absent.

    Args:
        db: Database session
        updates: Fields to set; unset fields stay unchanged, explicit nulls clear

    Returns:
        SystemConfiguration: The full row after the update
    """
    update_data = updates.model_dump(exclude_unset=True)
    configuration = get_configuration(db)

    if configuration is None:
        configuration = SystemConfiguration(**update_data)
        db.add(configuration)
        action = "created"
    else:
        for field, value in update_data.items():
            setattr(configuration, field, value)
        action = "updated"

    try:
        db.commit()
        db.refresh(configuration)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating configuration: {str(e)}")
        raise AppException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while saving the configuration"
        )

    logger.info(f"Configuration {configuration.id} {action}: {sorted(update_data)}")
    return configuration
