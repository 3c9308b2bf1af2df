"""Domain models for Inboxsync.

This module defines the SQLAlchemy ORM models for the local inbox mirror.
Uniqueness constraints on external ids are what make every upsert idempotent.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class AccountStatus(str):
    """Connected account status values."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ChatType(str):
    """Chat type values."""

    DIRECT = "direct"
    GROUP = "group"


class MessageType(str):
    """Message type values inferred locally."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    ATTACHMENT = "attachment"


class SyncRunStatus(str):
    """Backfill run status values."""

    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class NetworkDistance(str):
    """Normalized network distance values."""

    SELF = "SELF"
    FIRST = "FIRST"
    SECOND = "SECOND"
    THIRD = "THIRD"
    OUT_OF_NETWORK = "OUT_OF_NETWORK"


# =============================================================================
# MODELS
# =============================================================================


class Account(Base):
    """Local mirror of one connected upstream messaging identity."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    external_account_id: Mapped[str] = mapped_column(String(128), nullable=False)

    status: Mapped[str] = mapped_column(
        Enum("connected", "disconnected", "error", name="account_status_enum"),
        nullable=False,
        default="connected",
    )
    # Provider user id of the owner, used for the outgoing-ownership fallback
    owner_provider_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("external_account_id", "provider", name="uq_account_ext"),
        Index("idx_account_owner", "owner"),
    )

    # Relationships
    chats: Mapped[list["Chat"]] = relationship(back_populates="account")
    contacts: Mapped[list["Contact"]] = relationship(back_populates="account")
    messages: Mapped[list["Message"]] = relationship(back_populates="account")
    owner_profile: Mapped[Optional["OwnerProfile"]] = relationship(
        back_populates="account"
    )


class Chat(Base):
    """Synchronized conversation thread. Never hard-deleted."""

    __tablename__ = "chats"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)

    type: Mapped[str] = mapped_column(
        Enum("direct", "group", name="chat_type_enum"),
        nullable=False,
        default="direct",
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_chat_ext"),
        Index("idx_chat_last_activity", "account_id", "last_activity_at"),
    )

    # Relationships
    account: Mapped["Account"] = relationship(back_populates="chats")
    attendees: Mapped[list["Attendee"]] = relationship(back_populates="chat")
    messages: Mapped[list["Message"]] = relationship(back_populates="chat")


class Contact(Base):
    """Known external identity, optionally profile-enriched."""

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)

    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    headline: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    profile_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    member_urn: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    occupation: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    network_distance: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_connection: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pending_invitation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    enrichment_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_enriched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_interaction_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_contact_ext"),
    )

    # Relationships
    account: Mapped["Account"] = relationship(back_populates="contacts")
    attendees: Mapped[list["Attendee"]] = relationship(back_populates="contact")


class Attendee(Base):
    """Membership record linking a participant to a chat."""

    __tablename__ = "attendees"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chats.id"), nullable=False
    )
    external_participant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    contact_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("contacts.id"), nullable=True
    )
    is_self: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("chat_id", "external_participant_id", name="uq_attendee_ext"),
        Index("idx_attendee_contact", "contact_id"),
    )

    # Relationships
    chat: Mapped["Chat"] = relationship(back_populates="attendees")
    contact: Mapped[Optional["Contact"]] = relationship(back_populates="attendees")


class Message(Base):
    """Messages. Chat linkage is nullable until reconciled."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False
    )
    chat_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("chats.id"), nullable=True
    )
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)

    sender_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="text")

    is_outgoing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    structured_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_msg_ext"),
        Index("idx_msg_chat_time", "chat_id", "sent_at"),
    )

    # Relationships
    account: Mapped["Account"] = relationship(back_populates="messages")
    chat: Mapped[Optional["Chat"]] = relationship(back_populates="messages")
    attachments: Mapped[list["Attachment"]] = relationship(back_populates="message")


class Attachment(Base):
    """Message attachments. At most one of blob reference / inline content is set."""

    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("messages.id"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)

    type: Mapped[str] = mapped_column(String(32), nullable=False, default="file")
    url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    filename: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    blob_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    blob_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    blob_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    inline_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unavailable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    width_px: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height_px: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    flags: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("message_id", "external_id", name="uq_attach_ext"),
    )

    # Relationships
    message: Mapped["Message"] = relationship(back_populates="attachments")


class SyncRun(Base):
    """Per-account backfill status record, keyed by (account, provider)."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[str] = mapped_column(
        Enum("idle", "syncing", "completed", "failed", name="sync_run_status_enum"),
        nullable=False,
        default="idle",
    )
    counters: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    current_step: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("account_id", "provider", name="uq_sync_run"),
    )


class OwnerProfile(Base):
    """The account owner's own profile. Never modeled as a Contact."""

    __tablename__ = "owner_profiles"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False, unique=True
    )

    provider_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    headline: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    profile_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    raw_profile: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Set on every refresh attempt, including failed ones
    refresh_attempted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    account: Mapped["Account"] = relationship(back_populates="owner_profile")


class ProfileView(Base):
    """Someone viewed the account owner's profile."""

    __tablename__ = "profile_views"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False
    )
    viewer_external_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    viewer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    viewer_headline: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    viewer_avatar_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    viewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "viewer_external_id", "viewed_at", name="uq_profile_view"
        ),
        Index("idx_profile_view_time", "account_id", "viewed_at"),
    )
