from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from decimal import Decimal
from datetime import datetime


# --- Users ---
class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9]+$")
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    sponsor_code: Optional[str] = None

    @field_validator("sponsor_code")
    @classmethod
    def blank_sponsor_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: str
    sponsor_id: Optional[int] = None
    membership_expiry: Optional[datetime] = None
    has_active_membership: bool = False
    total_earnings: Decimal = Decimal(0)
    created_at: Optional[datetime] = None


class UserStatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = Field(None, max_length=500)


# --- Payments ---
class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: str
    transaction_hash: str = Field(..., min_length=10, max_length=200)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


class PaymentResponse(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    currency: str
    transaction_hash: str
    status: str
    membership_extension: int
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CommissionResponse(BaseModel):
    id: int
    from_user_id: int
    to_user_id: int
    level: int
    amount: Decimal
    payment_id: int
    status: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentResultResponse(BaseModel):
    payment: PaymentResponse
    commissions: List[CommissionResponse] = []
    membership_expiry: Optional[datetime] = None


class PaymentDetailResponse(BaseModel):
    payment: PaymentResponse
    commissions: List[CommissionResponse] = []


class PaymentListResponse(BaseModel):
    items: List[PaymentResponse]
    total: int
    page: int
    limit: int


# --- Rooms ---
class RoomCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    topic: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    max_participants: int = Field(10, ge=2, le=10)
    requires_membership: bool = True


class RoomResponse(BaseModel):
    id: int
    name: str
    topic: str
    description: Optional[str] = None
    creator_id: int
    max_participants: int
    requires_membership: bool
    is_active: bool
    current_participants: int
    total_votings: int
    total_expulsions: int
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RoomMemberResponse(BaseModel):
    room_id: int
    user_id: int
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PresentMember(BaseModel):
    user_id: int
    username: str
    full_name: str
    joined_at: Optional[datetime] = None


# --- Moderation ---
class VotingCreate(BaseModel):
    target_id: int
    reason: str = Field(..., min_length=1, max_length=500)


class VoteCreate(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class VotingResponse(BaseModel):
    id: int
    room_id: int
    initiator_id: int
    target_id: int
    reason: str
    required_votes: int
    total_participants: int
    is_completed: bool
    result: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ActiveVotingResponse(BaseModel):
    id: int
    room_id: int
    initiator_id: int
    target_id: int
    reason: str
    required_votes: int
    total_participants: int
    current_votes: int
    has_voted: bool
    created_at: datetime
    expires_at: datetime


class ExpulsionResponse(BaseModel):
    id: int
    voting_id: int
    user_id: int
    room_id: int
    reason: str
    expelled_by: List[int]
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CastVoteResponse(BaseModel):
    voting_id: int
    current_votes: int
    required_votes: int
    resolved: bool
    expulsion: Optional[ExpulsionResponse] = None


class ModerationLogResponse(BaseModel):
    id: int
    type: str
    room_id: Optional[int] = None
    initiator_id: Optional[int] = None
    target_id: Optional[int] = None
    details: str
    meta: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ExpireResponse(BaseModel):
    expired: int
