"""
Account Service - Business logic for sign-in and role administration.

Roles are membership rows in ``user_roles``; every predicate here ("is admin",
"first admin") is derived from that set.
"""
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from ..core.security import hash_password, verify_password
from .models import Account, RoleAssignment, UserRole
from .schemas import AccountCreate, AccountResponse
from .exceptions import (
    AccountNotFoundException,
    EmailAlreadyExistsException,
    InvalidCredentialsException
)

# Set up logging
logger = logging.getLogger(__name__)

def get_account(db: Session, account_id: str) -> Account:
    """
    Get an account by ID.

    Raises:
        AccountNotFoundException: If the account does not exist
    """
    account = db.query(Account).filter(Account.id == account_id).first()
    if not account:
        raise AccountNotFoundException()
    return account

def get_roles(db: Session, account_id: str) -> List[str]:
    """
    List the roles held by an account.

    Args:
        db: Database session
        account_id: Account ID

    Returns:
        List of role names, oldest assignment first
    """
    rows = (
        db.query(RoleAssignment)
        .filter(RoleAssignment.user_id == account_id)
        .order_by(RoleAssignment.created_at, RoleAssignment.id)
        .all()
    )
    return [row.role for row in rows]

def is_admin(db: Session, account_id: str) -> bool:
    """
    Check whether an account holds at least one admin role row.
    """
    return db.query(RoleAssignment).filter(
        RoleAssignment.user_id == account_id,
        RoleAssignment.role == UserRole.ADMIN.value
    ).first() is not None

def get_first_admin_id(db: Session) -> Optional[str]:
    """
    Find the account holding the oldest admin role assignment.

    Args:
        db: Database session

    Returns:
        The account ID, or None if no admin exists
    """
    row = (
        db.query(RoleAssignment)
        .filter(RoleAssignment.role == UserRole.ADMIN.value)
        .order_by(RoleAssignment.created_at, RoleAssignment.id)
        .first()
    )
    return row.user_id if row else None

def to_response(db: Session, account: Account) -> AccountResponse:
    """Build the API representation of an account with its roles."""
    roles = get_roles(db, account.id)
    return AccountResponse(
        id=account.id,
        email=account.email,
        display_name=account.display_name or account.email,
        roles=roles,
        is_admin=UserRole.ADMIN.value in roles,
        created_at=account.created_at
    )

def create_account(db: Session, account_data: AccountCreate) -> Account:
    """
    Create an account and give it its initial role.

    Args:
        db: Database session
        account_data: Validated creation payload

    Returns:
        Account: The created account

    Raises:
        EmailAlreadyExistsException: If the email is taken
    """
    email = account_data.email.lower()
    if db.query(Account).filter(Account.email == email).first():
        raise EmailAlreadyExistsException()

    account = Account(
        email=email,
        display_name=account_data.display_name,
        password_hash=hash_password(account_data.password)
    )
    account.roles.append(RoleAssignment(role=account_data.role.value))
    db.add(account)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise EmailAlreadyExistsException()
    db.refresh(account)
    logger.info(f"Account {account.id} created with role {account_data.role.value}")
    return account

def authenticate(db: Session, email: str, password: str) -> Account:
    """
    Check credentials.

    Raises:
        InvalidCredentialsException: If the email is unknown or the password is wrong
    """
    account = db.query(Account).filter(Account.email == email.lower()).first()
    if not account or not verify_password(password, account.password_hash):
        logger.warning(f"Failed sign-in attempt for {email}")
        raise InvalidCredentialsException()
    return account

def list_accounts(db: Session) -> List[AccountResponse]:
    """
    List every account with its roles, oldest first.
    """
    accounts = db.query(Account).order_by(Account.created_at, Account.email).all()
    return [to_response(db, account) for account in accounts]

def assign_role(db: Session, account_id: str, role: UserRole) -> List[str]:
    """
    Give an account a role. Assigning a role the account already holds is a no-op.

    Returns:
        The account's roles after the change

    Raises:
        AccountNotFoundException: If the account does not exist
    """
    get_account(db, account_id)
    if role.value not in get_roles(db, account_id):
        db.add(RoleAssignment(user_id=account_id, role=role.value))
        db.commit()
        logger.info(f"Role {role.value} assigned to account {account_id}")
    return get_roles(db, account_id)

def remove_role(db: Session, account_id: str, role: UserRole) -> List[str]:
    """
    Take a role away from an account.

    Returns:
        The account's roles after the change

    Raises:
        AccountNotFoundException: If the account does not exist
    """
    get_account(db, account_id)
    deleted = db.query(RoleAssignment).filter(
        RoleAssignment.user_id == account_id,
        RoleAssignment.role == role.value
    ).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"Role {role.value} removed from account {account_id}")
    return get_roles(db, account_id)
