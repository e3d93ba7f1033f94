"""SQLAlchemy ORM models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, LargeBinary, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from passkey_bridge.utils.clock import utcnow

# Reserved user id for authentication challenges issued before the caller's
# identity is known (discoverable-credential flow). Real user ids are UUIDs,
# so this can never name an actual user.
UNRESOLVED_USER_ID = "auto-discovery"


class ChallengeType(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class PasskeyStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class User(Base):
    """User table. Owned by the host application; read here for identity."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    passkey_credentials: Mapped[list["PasskeyCredential"]] = relationship(back_populates="user", cascade="all, delete-orphan")


class PasskeyCredential(Base):
    """WebAuthn passkey credential for passwordless authentication."""

    __tablename__ = "passkey_credentials"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # base64url credential id as reported by the authenticator
    credential_id: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PasskeyStatus.ACTIVE.value, index=True)
    transports: Mapped[str | None] = mapped_column(String(255), nullable=True)
    aaguid: Mapped[str | None] = mapped_column(String(36), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    backed_up: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # "metadata" is reserved on declarative classes, hence the attribute name
    metadata_json: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    last_used: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)

    user: Mapped["User"] = relationship(back_populates="passkey_credentials")


class PasskeyChallenge(Base):
    """Single-use challenge for one registration or authentication ceremony."""

    __tablename__ = "passkey_challenges"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    # Not a foreign key: may hold UNRESOLVED_USER_ID
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    challenge: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    registration_options: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
