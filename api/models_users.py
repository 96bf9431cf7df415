"""User accounts, role assignments (multi-row RBAC with optional expiry) and TOTP second factor."""
from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from api.models import Base


class User(Base):
    """Login identity for the back-office (web or Telegram)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=True)
    password_hash = Column(String(255), nullable=True)  # NULL for Telegram-only accounts
    telegram_id = Column(BigInteger, unique=True, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    roles = relationship(
        "UserRoleAssignment",
        back_populates="user",
        foreign_keys="UserRoleAssignment.user_id",
        order_by="UserRoleAssignment.id",
    )


class UserRoleAssignment(Base):
    """A user may hold several rows; only active, unexpired rows count."""
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    user = relationship("User", back_populates="roles", foreign_keys=[user_id])


class UserTwoFactor(Base):
    """TOTP second factor; the row exists from setup on, is_enabled only after a verified code."""
    __tablename__ = "user_2fa"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    secret = Column(String(64), nullable=True)
    is_enabled = Column(Boolean, nullable=False, default=False)
    backup_codes = Column(JSON, nullable=False, default=list)  # bcrypt hashes, consumed on use
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    user = relationship("User")
