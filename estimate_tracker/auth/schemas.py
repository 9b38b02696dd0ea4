"""
Account Schemas - Pydantic models for sign-in and user administration.
"""
from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from .models import UserRole

class LoginRequest(BaseModel):
    """
    Login Schema - Credentials posted to the login endpoint
    """
    email: EmailStr
    password: str

class AccountCreate(BaseModel):
    """
    Account Creation Schema - Used when an admin creates an account

    Fields:
    - email: Sign-in address
    - password: Plain text password (hashed before storage)
    - display_name: Optional display name
    - role: Initial role, ``user`` unless stated otherwise
    """
    email: EmailStr
    password: str = Field(..., min_length=6)
    display_name: Optional[str] = None
    role: UserRole = UserRole.USER

class RoleUpdate(BaseModel):
    """Role Assignment Schema"""
    role: UserRole

class AccountResponse(BaseModel):
    """
    Account Response Schema - An account together with its roles

    ``display_name`` falls back to the email address when unset.
    """
    id: str
    email: str
    display_name: str
    roles: List[str]
    is_admin: bool
    created_at: Optional[datetime] = None

class LoginResponse(BaseModel):
    """Token returned after a successful sign-in"""
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    account: AccountResponse

class AccountListResponse(BaseModel):
    """User management listing"""
    success: bool = True
    users: List[AccountResponse]

class AccountEnvelope(BaseModel):
    success: bool = True
    user: AccountResponse
