"""
Request bodies for the CRM HTTP surface.

Create models carry the required fields; update models are all-optional and
are forwarded with `model_dump(exclude_unset=True)` so only the fields a
client actually sent reach the store.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from core.models import (
    DealStatus,
    EarningType,
    LeadStatus,
    NotificationType,
    Priority,
    PropertyStatus,
    PropertyType,
    RewardStatus,
    UserRole,
    UserStatus,
)


# --------------------------------------------------------------------------- #
# Auth
# --------------------------------------------------------------------------- #

class SignInRequest(BaseModel):
    email: str
    password: str


class PasswordChangeRequest(BaseModel):
    new_password: str


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[UserRole] = None
    email: Optional[str] = None


# --------------------------------------------------------------------------- #
# Listings, leads, deals
# --------------------------------------------------------------------------- #

class PropertyCreate(BaseModel):
    title: str
    description: Optional[str] = None
    type: PropertyType = PropertyType.APARTMENT
    status: PropertyStatus = PropertyStatus.DRAFT
    price: float = Field(0, ge=0)
    location: str = ""
    area_sqft: float = 0
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    images: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    is_offplan: bool = False
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None


class PropertyUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[PropertyType] = None
    status: Optional[PropertyStatus] = None
    price: Optional[float] = Field(None, ge=0)
    location: Optional[str] = None
    area_sqft: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    images: Optional[List[str]] = None
    features: Optional[List[str]] = None
    is_offplan: Optional[bool] = None
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None


class LeadCreate(BaseModel):
    name: str
    email: str = ""
    phone: str = ""
    source: str = ""
    status: LeadStatus = LeadStatus.NEW
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    preferred_type: Optional[PropertyType] = None
    preferred_location: Optional[str] = None
    notes: Optional[str] = None
    assigned_to: Optional[str] = None


class LeadUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    status: Optional[LeadStatus] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    preferred_type: Optional[PropertyType] = None
    preferred_location: Optional[str] = None
    notes: Optional[str] = None
    assigned_to: Optional[str] = None


class DealCreate(BaseModel):
    property_id: str
    lead_id: Optional[str] = None
    deal_value: float = Field(0, ge=0)
    commission_rate: float = Field(0, ge=0, le=100)
    commission_amount: Optional[float] = None
    status: DealStatus = DealStatus.PENDING
    closer_id: Optional[str] = None
    notes: Optional[str] = None


class DealUpdate(BaseModel):
    lead_id: Optional[str] = None
    deal_value: Optional[float] = Field(None, ge=0)
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    commission_amount: Optional[float] = None
    status: Optional[DealStatus] = None
    closer_id: Optional[str] = None
    notes: Optional[str] = None


# --------------------------------------------------------------------------- #
# Team
# --------------------------------------------------------------------------- #

class UserCreate(BaseModel):
    email: str
    full_name: str
    password: str
    role: UserRole = UserRole.USER
    phone: Optional[str] = None
    referred_by: Optional[str] = None


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    points_balance: Optional[int] = None


# --------------------------------------------------------------------------- #
# Notifications & announcements
# --------------------------------------------------------------------------- #

class NotificationCreate(BaseModel):
    recipient_id: str
    type: NotificationType = NotificationType.ANNOUNCEMENT
    title: str
    message: str
    priority: Priority = Priority.MEDIUM
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


class AnnouncementCreate(BaseModel):
    title: str
    message: str
    priority: Priority = Priority.MEDIUM
    expires_at: Optional[datetime] = None


# --------------------------------------------------------------------------- #
# Rewards & referrals
# --------------------------------------------------------------------------- #

class RewardCreate(BaseModel):
    title: str
    description: Optional[str] = None
    category: str = ""
    points_required: int = Field(0, ge=0)
    criteria_type: str = ""
    criteria_value: float = 0
    is_active: bool = True
    sort_order: int = 0


class RewardUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    points_required: Optional[int] = Field(None, ge=0)
    criteria_type: Optional[str] = None
    criteria_value: Optional[float] = None
    sort_order: Optional[int] = None


class RewardToggle(BaseModel):
    is_active: bool


class UserRewardUpdate(BaseModel):
    status: Optional[RewardStatus] = None
    progress: Optional[float] = Field(None, ge=0, le=100)
    notes: Optional[str] = None


class FulfillRequest(BaseModel):
    notes: Optional[str] = None


class ReferralEarningCreate(BaseModel):
    referrer_id: str
    referred_agent_id: str
    deal_id: Optional[str] = None
    earning_type: EarningType
    earning_amount: float = Field(..., ge=0)
