"""
ORM models for marketplace persistence.

WHAT: SQLAlchemy models for listings, matches and every deal artifact
WHY: All durable deal state lives in the shared relational store
HOW: Declarative models with unique constraints the engine relies on for idempotence
"""

from datetime import datetime
from uuid import uuid4
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON,
    ForeignKey, UniqueConstraint, Index, Enum as SQLEnum, text
)
from sqlalchemy.orm import relationship
import enum

from .database import Base


def _enum_values(enum_cls):
    # Persist enum values ("in_progress"), not member names
    return [member.value for member in enum_cls]


class ListingSide(str, enum.Enum):
    """Which side of the market a listing is on."""
    OFFERING = "offering"
    SEEKING = "seeking"

    @property
    def opposite(self) -> "ListingSide":
        return ListingSide.SEEKING if self is ListingSide.OFFERING else ListingSide.OFFERING


class DealStatus(str, enum.Enum):
    """Match / deal status values."""
    MATCHED = "matched"
    NEGOTIATING = "negotiating"
    PROPOSED = "proposed"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class MessageType(str, enum.Enum):
    """Message type values."""
    NEGOTIATION = "negotiation"
    PROPOSAL = "proposal"
    SYSTEM = "system"


class DisputeStatus(str, enum.Enum):
    """Dispute status values."""
    OPEN = "open"
    RESOLVED_REFUND = "resolved_refund"
    RESOLVED_COMPLETE = "resolved_complete"
    RESOLVED_SPLIT = "resolved_split"
    DISMISSED = "dismissed"


class Listing(Base):
    """
    Listing table - an agent's advertised offer or request in a category.

    WHAT: One side of a potential deal with structured params
    WHY: Input to the compatibility scorer and owner of deal participation
    HOW: Soft-deleted via active flag; partial unique index keeps one active
         listing per (agent, side, category)
    """
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    agent_id = Column(String(100), nullable=False)
    side = Column(SQLEnum(ListingSide, values_callable=_enum_values), nullable=False)
    category = Column(String(100), nullable=False)
    params = Column(JSON, nullable=False, default=dict)
    description = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    superseded_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_listing_side_category", "side", "category", "active"),
        Index(
            "uq_listing_active_triple", "agent_id", "side", "category",
            unique=True, sqlite_where=text("active = 1"),
        ),
    )

    def __repr__(self):
        return f"<Listing(id={self.id}, agent={self.agent_id}, side={self.side}, category={self.category})>"


class Match(Base):
    """
    Match table - a compatible listing pair and its deal state.

    WHAT: The deal record driven by the state machine
    WHY: Exactly one row per listing pair regardless of how often matching runs
    HOW: Canonical ordering (listing_a_id < listing_b_id) plus UNIQUE constraint
    """
    __tablename__ = "matches"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    listing_a_id = Column(String(36), ForeignKey("listings.id"), nullable=False)
    listing_b_id = Column(String(36), ForeignKey("listings.id"), nullable=False)
    overlap_summary = Column(JSON, nullable=False)
    status = Column(
        SQLEnum(DealStatus, values_callable=_enum_values),
        nullable=False,
        default=DealStatus.MATCHED,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)

    listing_a = relationship("Listing", foreign_keys=[listing_a_id])
    listing_b = relationship("Listing", foreign_keys=[listing_b_id])
    messages = relationship("Message", back_populates="match", order_by="Message.id")
    approvals = relationship("Approval", back_populates="match")
    completions = relationship("DealCompletion", back_populates="match")
    disputes = relationship("Dispute", back_populates="match", order_by="Dispute.created_at")

    __table_args__ = (
        UniqueConstraint("listing_a_id", "listing_b_id", name="unique_listing_pair"),
        Index("idx_match_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<Match(id={self.id}, status={self.status})>"


class Message(Base):
    """
    Message table - negotiation, proposal and system messages for a match.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(String(36), ForeignKey("matches.id"), nullable=False)
    sender_agent_id = Column(String(100), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(
        SQLEnum(MessageType, values_callable=_enum_values),
        nullable=False,
        default=MessageType.NEGOTIATION,
    )
    proposed_terms = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    match = relationship("Match", back_populates="messages")

    __table_args__ = (
        Index("idx_message_match", "match_id", "created_at"),
    )

    def __repr__(self):
        return f"<Message(id={self.id}, match={self.match_id}, type={self.message_type})>"


class Approval(Base):
    """
    Approval table - one participant's vote on the current proposal.

    HOW: UNIQUE (match_id, agent_id); writes are upserts so the latest vote wins
    """
    __tablename__ = "approvals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(String(36), ForeignKey("matches.id"), nullable=False)
    agent_id = Column(String(100), nullable=False)
    approved = Column(Boolean, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    match = relationship("Match", back_populates="approvals")

    __table_args__ = (
        UniqueConstraint("match_id", "agent_id", name="unique_match_approval"),
    )

    def __repr__(self):
        return f"<Approval(match={self.match_id}, agent={self.agent_id}, approved={self.approved})>"


class DealCompletion(Base):
    """
    DealCompletion table - a participant's confirmation that the work is done.
    """
    __tablename__ = "deal_completions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(String(36), ForeignKey("matches.id"), nullable=False)
    agent_id = Column(String(100), nullable=False)
    evidence = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    match = relationship("Match", back_populates="completions")

    __table_args__ = (
        UniqueConstraint("match_id", "agent_id", name="unique_match_completion"),
    )

    def __repr__(self):
        return f"<DealCompletion(match={self.match_id}, agent={self.agent_id})>"


class Dispute(Base):
    """
    Dispute table - a disagreement opened against an in-progress deal.

    HOW: Partial unique index allows at most one open dispute per match
    """
    __tablename__ = "disputes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    match_id = Column(String(36), ForeignKey("matches.id"), nullable=False)
    filed_by_agent_id = Column(String(100), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(
        SQLEnum(DisputeStatus, values_callable=_enum_values),
        nullable=False,
        default=DisputeStatus.OPEN,
    )
    resolved_by = Column(String(100), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution_note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    match = relationship("Match", back_populates="disputes")

    __table_args__ = (
        Index(
            "uq_dispute_open_per_match", "match_id",
            unique=True, sqlite_where=text("status = 'open'"),
        ),
    )

    def __repr__(self):
        return f"<Dispute(id={self.id}, match={self.match_id}, status={self.status})>"


class Notification(Base):
    """
    Notification table - persisted output of the default notification sink.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(100), nullable=False)
    type = Column(String(50), nullable=False)
    match_id = Column(String(36), nullable=True)
    from_agent_id = Column(String(100), nullable=True)
    summary = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_notifications_agent", "agent_id", "read"),
    )

    def __repr__(self):
        return f"<Notification(agent={self.agent_id}, type={self.type})>"
