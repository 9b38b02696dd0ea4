"""
FastAPI dependencies for authentication and authorization.
"""
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from ..core.security import verify_token
from ..database import get_db
from .exceptions import InvalidTokenException, RoleDeniedException
from .models import Account, UserRole
from .service import is_admin

# OAuth2 scheme for JWT token authentication
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)

def account_from_token(db: Session, token: str) -> Account:
    """
    Resolve the account a JWT token belongs to.

    Raises:
        InvalidTokenException: If the token is invalid or the account is gone
    """
    payload = verify_token(token) if token else None
    if not payload or not payload.get("sub"):
        raise InvalidTokenException()

    account = db.query(Account).filter(Account.id == payload["sub"]).first()
    if not account:
        raise InvalidTokenException("Account not found")
    return account

def get_current_account(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Account:
    """
    Get the signed-in account from the Authorization header.
    """
    return account_from_token(db, token)

def require_admin(current_account: Account = Depends(get_current_account), db: Session = Depends(get_db)) -> Account:
    """
    Require the signed-in account to hold the admin role.

    Raises:
        RoleDeniedException: If the account is not an admin
    """
    if not is_admin(db, current_account.id):
        raise RoleDeniedException(UserRole.ADMIN.value)
    return current_account
