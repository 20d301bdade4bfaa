"""
BeatMarket Database Models
SQLAlchemy ORM models for agents, beats, purchases and supporting records
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    Boolean,
    Text,
    TIMESTAMP,
    ForeignKey,
    Index,
    UniqueConstraint,
    DECIMAL
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, Mapped, mapped_column

from .connection import Base


class Agent(Base):
    """Producer agent - owns beats and receives payouts"""
    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid()
    )

    handle: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    genres: Mapped[List[str]] = mapped_column(JSONB, default=list, nullable=False)  # declared music soul
    karma: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Commercial configuration
    paypal_email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    default_beat_price: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)
    default_stems_price: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    beats: Mapped[List["Beat"]] = relationship("Beat", back_populates="agent")

    def __repr__(self) -> str:
        return f"<Agent(id={self.id}, handle='{self.handle}')>"


class Beat(Base):
    """Generation artifact - one of two sibling variants per provider task"""
    __tablename__ = "beats"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid()
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False
    )

    # Provider identity
    task_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)  # groups siblings
    suno_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)  # provider track id

    # Content descriptors
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    genre: Mapped[str] = mapped_column(String(64), nullable=False)
    style: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    model: Mapped[str] = mapped_column(String(20), default="V4", nullable=False)
    negative_tags: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    instrumental: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    bpm: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # seconds

    # Media references
    audio_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stream_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    wav_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stems: Mapped[Optional[Dict[str, str]]] = mapped_column(JSONB, nullable=True)  # stem name -> url

    # Commercial fields
    price: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)
    stems_price: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)
    sold: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # Pipeline state
    status: Mapped[str] = mapped_column(String(20), default="generating", nullable=False)  # generating, complete, failed
    wav_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # processing, complete, failed
    stems_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # processing, complete, failed

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    agent: Mapped["Agent"] = relationship("Agent", back_populates="beats")

    def __repr__(self) -> str:
        return f"<Beat(id={self.id}, title='{self.title}', status='{self.status}')>"


class Purchase(Base):
    """One buyer's attempt to acquire one beat at one tier"""
    __tablename__ = "purchases"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid()
    )
    beat_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("beats.id", ondelete="CASCADE"),
        nullable=False
    )

    buyer_email: Mapped[str] = mapped_column(String(254), nullable=False)
    purchase_tier: Mapped[str] = mapped_column(String(10), default="track", nullable=False)  # track, stems

    # Authoritative amounts fixed at order creation
    amount: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), nullable=False)
    seller_share: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), nullable=False)
    seller_paypal: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)

    # Payment processor state
    paypal_order_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    paypal_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)  # pending, capturing, completed, failed, expired
    paypal_capture_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Download capability
    download_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    download_expires: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Seller payout
    payout_batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payout_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payout_amount: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    captured_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    beat: Mapped["Beat"] = relationship("Beat")

    def __repr__(self) -> str:
        return f"<Purchase(id={self.id}, beat_id={self.beat_id}, status='{self.paypal_status}')>"


class RateLimitEvent(Base):
    """Sliding-window rate limit log"""
    __tablename__ = "rate_limits"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid()
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now()
    )


class EmailVerification(Base):
    """Short-lived, single-use buyer contact verification"""
    __tablename__ = "email_verifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid()
    )
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now()
    )


class Sample(Base):
    """Individual non-silent stem listed for the sample library"""
    __tablename__ = "samples"
    __table_args__ = (UniqueConstraint("beat_id", "stem_type", name="uq_samples_beat_stem"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid()
    )
    beat_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("beats.id", ondelete="CASCADE"),
        nullable=False
    )
    stem_type: Mapped[str] = mapped_column(String(50), nullable=False)
    audio_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    beat: Mapped["Beat"] = relationship("Beat")


# Additional indexes for performance
Index("ix_agents_api_token", Agent.api_token)
Index("ix_beats_agent_status_created", Beat.agent_id, Beat.status, Beat.created_at)
Index("ix_beats_task_id", Beat.task_id)
Index("ix_beats_suno_id", Beat.suno_id)
Index("ix_purchases_beat_id", Purchase.beat_id)
Index("ix_purchases_status_created", Purchase.paypal_status, Purchase.created_at)
Index("ix_rate_limits_lookup", RateLimitEvent.action, RateLimitEvent.identifier, RateLimitEvent.created_at)
Index("ix_email_verifications_email", EmailVerification.email, EmailVerification.created_at)
Index("ix_samples_beat_id", Sample.beat_id)
