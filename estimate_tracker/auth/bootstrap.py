"""
Bootstrap utilities for first admin creation.
Handles automatic creation of the first admin account from environment variables.
"""
import logging
from sqlalchemy.orm import Session
from ..config import settings
from .models import Account, RoleAssignment, UserRole
from .schemas import AccountCreate
from .service import create_account

logger = logging.getLogger(__name__)

def admin_exists(db: Session) -> bool:
    """
    Check if any account holds the admin role.
    """
    return db.query(RoleAssignment).filter(RoleAssignment.role == UserRole.ADMIN.value).count() > 0

def create_bootstrap_admin(db: Session) -> bool:
    """
    Create the first admin account from environment variables.

    Returns:
        bool: True if admin was created successfully, False otherwise
    """
    if not settings.bootstrap_admin_email or not settings.bootstrap_admin_password:
        logger.warning("Bootstrap admin credentials not provided in environment variables")
        return False

    existing = db.query(Account).filter(Account.email == settings.bootstrap_admin_email.lower()).first()
    if existing:
        logger.warning(f"Bootstrap failed: Email {settings.bootstrap_admin_email} already exists")
        return False

    try:
        account = create_account(db, AccountCreate(
            email=settings.bootstrap_admin_email,
            password=settings.bootstrap_admin_password,
            display_name="Praxis Admin",
            role=UserRole.ADMIN
        ))
    except Exception as e:
        logger.error(f"❌ Failed to create bootstrap admin: {str(e)}")
        db.rollback()
        return False

    logger.info(f"✅ Bootstrap admin created successfully: {account.email} (ID: {account.id})")
    return True

def bootstrap_admin_if_needed(db: Session) -> None:
    """
    Check if an admin exists and create the bootstrap admin if needed.
    This function should be called during application startup.
    """
    logger.info("🔍 Checking for existing admin accounts...")

    if admin_exists(db):
        logger.info("✅ Admin account found. Bootstrap not needed.")
        return

    if create_bootstrap_admin(db):
        logger.info("🎉 Bootstrap admin creation completed successfully!")
    else:
        logger.warning("⚠️  Bootstrap admin creation skipped.")
        logger.info("💡 To create the first admin, set BOOTSTRAP_ADMIN_EMAIL and BOOTSTRAP_ADMIN_PASSWORD in your .env file.")
