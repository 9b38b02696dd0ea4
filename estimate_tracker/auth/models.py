"""
Account and role models.

Roles are stored as membership rows rather than a column on the account: an
account may hold several roles, and "is admin" means at least one ``admin`` row.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid

from ..database import Base


class UserRole(str, enum.Enum):
    """Roles an account can hold."""
    ADMIN = "admin"
    USER = "user"


def _utcnow():
    return datetime.now(timezone.utc)


class Account(Base):
    """
    Account Model - A person who can sign in to the dashboard

    Fields:
    - id: UUID string primary key
    - email: Unique sign-in address
    - display_name: Optional name shown in user management
    - password_hash: Hashed password
    - created_at: When the account was created
    """
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    roles = relationship("RoleAssignment", back_populates="account", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Account(id={self.id}, email={self.email})>"


class RoleAssignment(Base):
    """
    RoleAssignment Model - One (account, role) pair
    """
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    account = relationship("Account", back_populates="roles")

    def __repr__(self):
        return f"<RoleAssignment(user_id={self.user_id}, role={self.role})>"
