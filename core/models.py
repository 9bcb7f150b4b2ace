"""
core/models.py
--------------
Typed entity contracts shared by the remote store client, the cache store
and the HTTP surface.

All models are pydantic v2 models. Remote rows (dicts) are validated into
these on the way in; payloads go out as JSON-safe dicts. Relation fields
embedded by the remote service (creator, assignee, closer, ...) are optional
and unknown keys are ignored.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, model_validator


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps from the remote store are UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# --------------------------------------------------------------------------- #
# Closed tag sets
# --------------------------------------------------------------------------- #

class PropertyType(str, Enum):
    APARTMENT = "apartment"
    VILLA = "villa"
    TOWNHOUSE = "townhouse"
    PENTHOUSE = "penthouse"
    OFFICE = "office"
    RETAIL = "retail"
    LAND = "land"


class PropertyStatus(str, Enum):
    DRAFT = "draft"
    AVAILABLE = "available"
    UNDER_OFFER = "under_offer"
    SOLD = "sold"
    RENTED = "rented"
    ARCHIVED = "archived"


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    VIEWING_SCHEDULED = "viewing_scheduled"
    NEGOTIATING = "negotiating"
    WON = "won"
    LOST = "lost"
    ARCHIVED = "archived"


# Ordered sales funnel, terminal/archival states excluded
LEAD_PIPELINE: List[LeadStatus] = [
    LeadStatus.NEW,
    LeadStatus.CONTACTED,
    LeadStatus.QUALIFIED,
    LeadStatus.VIEWING_SCHEDULED,
    LeadStatus.NEGOTIATING,
    LeadStatus.WON,
]


class DealStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ActivityAction(str, Enum):
    PROPERTY_ADDED = "property_added"
    PROPERTY_UPDATED = "property_updated"
    PROPERTY_SOLD = "property_sold"
    PROPERTY_ARCHIVED = "property_archived"
    LEAD_ADDED = "lead_added"
    LEAD_UPDATED = "lead_updated"
    LEAD_CONVERTED = "lead_converted"
    LEAD_ARCHIVED = "lead_archived"
    DEAL_CREATED = "deal_created"
    DEAL_UPDATED = "deal_updated"
    DEAL_CLOSED = "deal_closed"
    LOGIN = "login"
    LOGOUT = "logout"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    PASSWORD_CHANGED = "password_changed"
    PROFILE_UPDATED = "profile_updated"


class EntityType(str, Enum):
    PROPERTY = "property"
    LEAD = "lead"
    DEAL = "deal"
    USER = "user"


class NotificationType(str, Enum):
    PROPERTY_ADDED = "property_added"
    PROPERTY_UPDATED = "property_updated"
    DEAL_CREATED = "deal_created"
    DEAL_UPDATED = "deal_updated"
    DEAL_CLOSED = "deal_closed"
    LEAD_ADDED = "lead_added"
    LEAD_ASSIGNED = "lead_assigned"
    LEAD_IMPORT = "lead_import"
    ANNOUNCEMENT = "announcement"
    PASSWORD_CHANGED = "password_changed"
    PROFILE_UPDATED = "profile_updated"
    USER_CREATED = "user_created"
    APPROVAL_REQUEST = "approval_request"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    PDF = "pdf"


class RewardStatus(str, Enum):
    LOCKED = "locked"
    AVAILABLE = "available"
    EARNED = "earned"
    FULFILLED = "fulfilled"


# Forward-only ordering of RewardStatus
REWARD_STATUS_RANK: Dict[RewardStatus, int] = {
    RewardStatus.LOCKED: 0,
    RewardStatus.AVAILABLE: 1,
    RewardStatus.EARNED: 2,
    RewardStatus.FULFILLED: 3,
}


class EarningType(str, Enum):
    SIGNUP_FEE = "signup_fee"
    COMMISSION_SHARE = "commission_share"


# --------------------------------------------------------------------------- #
# Base
# --------------------------------------------------------------------------- #

class Entity(BaseModel):
    """Base for every remote-backed record."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str


class UserRef(BaseModel):
    """Embedded user relation (creator, assignee, closer, sender, ...)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    avatar_url: Optional[str] = None


class PropertyRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: Optional[str] = None
    price: Optional[float] = None
    location: Optional[str] = None
    status: Optional[PropertyStatus] = None


class LeadRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


# --------------------------------------------------------------------------- #
# Core entities
# --------------------------------------------------------------------------- #

class User(Entity):
    email: str
    full_name: str
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    last_login: Optional[datetime] = None
    points_balance: int = 0
    referred_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class PropertyMedia(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: MediaType = MediaType.IMAGE
    url: str
    name: str
    size: int = 0
    uploaded_at: Optional[datetime] = None


class Property(Entity):
    title: str
    description: Optional[str] = None
    type: PropertyType = PropertyType.APARTMENT
    status: PropertyStatus = PropertyStatus.DRAFT
    price: float = 0
    location: str = ""
    area_sqft: float = 0
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    images: List[str] = Field(default_factory=list)
    videos: List[PropertyMedia] = Field(default_factory=list)
    documents: List[PropertyMedia] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    is_offplan: bool = False
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None
    created_by: str
    creator: Optional[UserRef] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Lead(Entity):
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
    assignee: Optional[UserRef] = None
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DealAttachment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    url: str
    name: str
    size: int = 0
    uploaded_at: Optional[datetime] = None


class Deal(Entity):
    property_id: str
    property: Optional[PropertyRef] = None
    lead_id: Optional[str] = None
    lead: Optional[LeadRef] = None
    deal_value: float = 0
    commission_rate: float = 0
    commission_amount: float = 0
    status: DealStatus = DealStatus.PENDING
    closer_id: str
    closer: Optional[UserRef] = None
    closed_at: Optional[datetime] = None
    notes: Optional[str] = None
    attachments: List[DealAttachment] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Activity(Entity):
    user_id: str
    user: Optional[UserRef] = None
    action: ActivityAction
    entity_type: EntityType
    entity_id: str
    entity_name: str = ""
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


# --------------------------------------------------------------------------- #
# Audit snapshots: tagged union keyed by entity_type
# --------------------------------------------------------------------------- #

class _Snapshot(BaseModel):
    # Diffs may carry keys outside the typed shape; keep them.
    model_config = ConfigDict(extra="allow")

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, exclude={"entity_type"})


class PropertySnapshot(_Snapshot):
    entity_type: Literal["property"] = "property"
    title: Optional[str] = None
    price: Optional[float] = None
    location: Optional[str] = None
    status: Optional[PropertyStatus] = None


class LeadSnapshot(_Snapshot):
    entity_type: Literal["lead"] = "lead"
    name: Optional[str] = None
    status: Optional[LeadStatus] = None
    source: Optional[str] = None
    assigned_to: Optional[str] = None


class DealSnapshot(_Snapshot):
    entity_type: Literal["deal"] = "deal"
    property: Optional[str] = None
    value: Optional[float] = None
    status: Optional[DealStatus] = None


class UserSnapshot(_Snapshot):
    entity_type: Literal["user"] = "user"
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None


class GenericSnapshot(_Snapshot):
    entity_type: str = "other"


_SNAPSHOT_TYPES = {"property", "lead", "deal", "user"}


def _snapshot_tag(value: Any) -> str:
    tag = value.get("entity_type") if isinstance(value, dict) else getattr(value, "entity_type", None)
    return tag if tag in _SNAPSHOT_TYPES else "other"


AuditSnapshot = Annotated[
    Union[
        Annotated[PropertySnapshot, Tag("property")],
        Annotated[LeadSnapshot, Tag("lead")],
        Annotated[DealSnapshot, Tag("deal")],
        Annotated[UserSnapshot, Tag("user")],
        Annotated[GenericSnapshot, Tag("other")],
    ],
    Discriminator(_snapshot_tag),
]


class AuditLog(Entity):
    user_id: str
    user: Optional[UserRef] = None
    action: str
    entity_type: str
    entity_id: str
    old_value: Optional[AuditSnapshot] = None
    new_value: Optional[AuditSnapshot] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _tag_snapshots(cls, data: Any) -> Any:
        """Stamp the log's entity_type onto untagged snapshot bags."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        tag = data.get("entity_type")
        if tag not in _SNAPSHOT_TYPES:
            tag = str(tag or "other")
        for key in ("old_value", "new_value"):
            bag = data.get(key)
            if isinstance(bag, dict):
                data[key] = {**bag, "entity_type": tag}
        return data


# --------------------------------------------------------------------------- #
# Notifications & announcements
# --------------------------------------------------------------------------- #

class Notification(Entity):
    type: NotificationType
    title: str
    message: str
    priority: Priority = Priority.MEDIUM
    recipient_id: str
    sender_id: Optional[str] = None
    sender: Optional[UserRef] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    read: bool = False
    created_at: Optional[datetime] = None


class Announcement(Entity):
    title: str
    message: str
    priority: Priority = Priority.MEDIUM
    created_by: str
    creator: Optional[UserRef] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or as_utc(self.expires_at) > as_utc(now)


# --------------------------------------------------------------------------- #
# Rewards & referrals
# --------------------------------------------------------------------------- #

class Reward(Entity):
    title: str
    description: Optional[str] = None
    category: str = ""
    points_required: int = 0
    criteria_type: str = ""
    criteria_value: float = 0
    is_active: bool = True
    sort_order: int = 0
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserReward(Entity):
    user_id: str
    reward_id: str
    reward: Optional[Reward] = None
    status: RewardStatus = RewardStatus.LOCKED
    progress: float = 0
    earned_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    fulfilled_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReferralEarning(Entity):
    referrer_id: str
    referred_agent_id: str
    deal_id: Optional[str] = None
    earning_type: EarningType
    earning_amount: float
    created_at: Optional[datetime] = None


class ReferredAgent(BaseModel):
    id: str
    full_name: str
    email: str
    avatar_url: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    deals_closed: int = 0
    total_earnings_generated: float = 0
    joined_at: Optional[datetime] = None


class ReferralSummary(BaseModel):
    total_referrals: int = 0
    total_earnings_lifetime: float = 0
    total_earnings_this_month: float = 0
    referred_agents: List[ReferredAgent] = Field(default_factory=list)


class RewardProgress(BaseModel):
    reward: Reward
    user_reward_id: Optional[str] = None
    status: RewardStatus
    progress: float
    points_needed: int = 0


# --------------------------------------------------------------------------- #
# Session & dashboard
# --------------------------------------------------------------------------- #

class DashboardStats(BaseModel):
    total_properties: int = 0
    properties_sold: int = 0
    team_size: int = 0
    active_leads: int = 0
    total_value: float = 0
    available_properties: int = 0


class Identity(BaseModel):
    """The resolved, authenticated account of the running session."""
    user: User
    access_token: Optional[str] = None

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def is_admin(self) -> bool:
        return self.user.is_admin
