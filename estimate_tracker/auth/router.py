"""
Authentication and user management routes.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
import logging

from ..core.security import create_access_token
from ..database import get_db
from ..dependencies import get_session_registry
from ..exceptions import AppException, StoreError
from ..patients.state import SessionRegistry
from .dependencies import get_current_account, require_admin
from .models import Account, UserRole
from .schemas import (
    AccountCreate, AccountEnvelope, AccountListResponse, LoginRequest, LoginResponse, RoleUpdate
)
from .service import (
    assign_role, authenticate, create_account, list_accounts, remove_role, to_response
)

# Set up logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])
users_router = APIRouter(prefix="/api/v1/users", tags=["User Management"])

# ============================================================================
# SESSION ROUTES
# ============================================================================

@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """
    Sign in with email and password.

    Opens the account's board session, which subscribes it to the change feed.
    """
    account = authenticate(db, credentials.email, credentials.password)
    token = create_access_token({"sub": account.id})
    try:
        await registry.sign_in(account.id)
    except StoreError as e:
        raise AppException(status.HTTP_502_BAD_GATEWAY, str(e))
    logger.info(f"Account {account.id} signed in")
    return LoginResponse(access_token=token, account=to_response(db, account))

@router.post("/logout")
async def logout(
    current_account: Account = Depends(get_current_account),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """
    Sign out: tears down the board session and its feed subscription.
    """
    closed = registry.sign_out(current_account.id)
    logger.info(f"Account {current_account.id} signed out (session open: {closed})")
    return {"success": True}

@router.get("/me", response_model=AccountEnvelope)
async def me(
    current_account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """The signed-in account with its roles."""
    return AccountEnvelope(user=to_response(db, current_account))

# ============================================================================
# USER MANAGEMENT ROUTES (admin only)
# ============================================================================

@users_router.get("", response_model=AccountListResponse)
async def get_users(
    db: Session = Depends(get_db),
    current_account: Account = Depends(require_admin)
):
    """List every account with its roles."""
    return AccountListResponse(users=list_accounts(db))

@users_router.post("", response_model=AccountEnvelope, status_code=201)
async def post_user(
    account_data: AccountCreate,
    db: Session = Depends(get_db),
    current_account: Account = Depends(require_admin)
):
    """Create an account with an initial role (``user`` by default)."""
    account = create_account(db, account_data)
    return AccountEnvelope(user=to_response(db, account))

@users_router.post("/{account_id}/roles", response_model=AccountListResponse)
async def post_user_role(
    account_id: str,
    role_update: RoleUpdate,
    db: Session = Depends(get_db),
    current_account: Account = Depends(require_admin)
):
    """Assign a role to an account."""
    assign_role(db, account_id, role_update.role)
    return AccountListResponse(users=list_accounts(db))

@users_router.delete("/{account_id}/roles/{role}", response_model=AccountListResponse)
async def delete_user_role(
    account_id: str,
    role: UserRole,
    db: Session = Depends(get_db),
    current_account: Account = Depends(require_admin)
):
    """Remove a role from an account."""
    remove_role(db, account_id, role)
    return AccountListResponse(users=list_accounts(db))
