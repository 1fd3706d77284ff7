"""
Pydantic API schemas for the marketplace endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and serialization at the HTTP boundary
HOW: Pydantic v2 models; responses are built from ORM rows via from_attributes
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

from ..core.config import settings
from ..core.models import ListingSide, DealStatus, MessageType, DisputeStatus
from .listing import OverlapSummary


# ========== Listings ==========

class CreateListingRequest(BaseModel):
    """Request to publish a listing. params are validated by the listing store."""
    side: str = Field(..., description="offering or seeking")
    category: str = Field(..., min_length=1, max_length=100, description="Market category")
    params: Dict[str, Any] = Field(default_factory=dict, description="Skills, rate range, remote preference")
    description: Optional[str] = Field(default=None, max_length=settings.MAX_TEXT_LENGTH)


class ListingResponse(BaseModel):
    """A listing as stored."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    agent_id: str
    side: ListingSide
    category: str
    params: Dict[str, Any]
    description: Optional[str] = None
    active: bool
    superseded_by: Optional[str] = None
    created_at: datetime


class MatchItem(BaseModel):
    """One resolved counterpart."""
    match_id: str
    created: bool
    counterpart: ListingResponse
    overlap: OverlapSummary


class ResolveMatchesResponse(BaseModel):
    listing_id: str
    matches: List[MatchItem]


class CreateListingResponse(BaseModel):
    listing: ListingResponse
    replaced_listing_id: Optional[str] = None
    matches: List[MatchItem] = Field(default_factory=list)


# ========== Deal actions ==========

class SendMessageRequest(BaseModel):
    """Negotiation message or proposal."""
    content: str = Field(..., min_length=1, max_length=settings.MAX_TEXT_LENGTH)
    message_type: str = Field(default="negotiation", description="negotiation or proposal")
    proposed_terms: Optional[Dict[str, Any]] = Field(default=None, description="Required for proposals")


class ApproveRequest(BaseModel):
    approved: bool = Field(..., description="True to approve, False to reject")


class CompleteRequest(BaseModel):
    evidence: str = Field(..., min_length=1, max_length=settings.MAX_TEXT_LENGTH)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=settings.MAX_TEXT_LENGTH)


class DisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=settings.MAX_TEXT_LENGTH)


class ResolveDisputeRequest(BaseModel):
    resolution: str = Field(..., description="resolved_complete, resolved_refund, resolved_split or dismissed")
    note: Optional[str] = Field(default=None)


class ActionResponse(BaseModel):
    """Result of a deal action."""
    match_id: str
    status: DealStatus = Field(..., description="Deal status after the action")
    outcome: str = Field(..., description="What happened, e.g. waiting, approved, rejected")
    message: str
    message_id: Optional[int] = None


# ========== Deal detail ==========

class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_agent_id: str
    content: str
    message_type: MessageType
    proposed_terms: Optional[Dict[str, Any]] = None
    created_at: datetime


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    agent_id: str
    approved: bool
    updated_at: datetime


class CompletionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    agent_id: str
    evidence: str
    created_at: datetime


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    match_id: str
    filed_by_agent_id: str
    reason: str
    status: DisputeStatus
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None
    created_at: datetime


class DisputeActionResponse(ActionResponse):
    dispute: DisputeResponse


class DisputeResolutionResponse(BaseModel):
    dispute: DisputeResponse
    deal_status: DealStatus


class DisputeListResponse(BaseModel):
    match_id: str
    disputes: List[DisputeResponse]


class DealResponse(BaseModel):
    """Full deal view for a participant."""
    id: str
    status: DealStatus
    overlap_summary: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    listing_a: ListingResponse
    listing_b: ListingResponse
    messages: List[MessageResponse]
    approvals: List[ApprovalResponse]
    completions: List[CompletionResponse]
    disputes: List[DisputeResponse]


# ========== Notifications ==========

class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    match_id: Optional[str] = None
    from_agent_id: Optional[str] = None
    summary: str
    read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    agent_id: str
    unread_count: int
    notifications: List[NotificationResponse]


# ========== Expiry ==========

class ExpiryRequest(BaseModel):
    """Body for the expiry sweep. Missing values fall back to configured defaults."""
    timeout_hours: Optional[float] = None
    limit: Optional[float] = None
    dry_run: bool = False


class ExpiredDealResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    created_at: datetime
    agent_a_id: str
    agent_b_id: str
    hours_stale: float


class ExpiryPreviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stale_count: int
    stale_deals: List[ExpiredDealResponse]
    timeout_hours: int
    dry_run: Optional[bool] = None


class ExpirySweepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expired_count: int
    expired_deals: List[ExpiredDealResponse]
    timeout_hours: int
    swept_at: datetime
