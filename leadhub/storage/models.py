"""Domain records owned by the record store.

Each entity has a stored model plus ``*Create`` / ``*Update`` input models.
Update models only carry the fields a caller explicitly set, read back with
``model_dump(exclude_unset=True)``.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Enumerations
# ============================================================================


class UserRole(str, Enum):
    """Roles a CRM user can hold."""

    ADMIN = "admin"
    AGENT = "agent"
    ENGINEER = "engineer"


class LeadStatus(str, Enum):
    """Sales pipeline stage of a lead."""

    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


class LeadPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProductPriority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ProfitLevel(str, Enum):
    HIGH_PROFIT = "High Profit"
    STANDARD = "Standard"
    LOW_MARGIN = "Low Margin"


class InteractionType(str, Enum):
    """Kind of logged contact with a lead."""

    NOTE = "note"
    EMAIL = "email"
    CALL = "call"
    MEETING = "meeting"
    URGENT = "urgent"
    TEAM = "team"


# ============================================================================
# Users
# ============================================================================


class User(BaseModel):
    """A CRM user (sales agent, engineer or administrator)."""

    id: int
    name: str
    email: str
    username: str | None = None
    phone: str | None = None
    role: UserRole = UserRole.AGENT
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    username: str | None = None
    phone: str | None = None
    role: UserRole = UserRole.AGENT
    is_active: bool = True


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN)
    username: str | None = None
    phone: str | None = None
    role: UserRole | None = None
    is_active: bool | None = None


# ============================================================================
# Products
# ============================================================================


class Product(BaseModel):
    """An AI service offered in the product catalog."""

    id: int
    name: str
    price: str
    pitch: str | None = None
    talking_points: str | None = None
    agent_notes: str | None = None
    priority: ProductPriority = ProductPriority.MEDIUM
    profit_level: ProfitLevel = ProfitLevel.STANDARD
    tags: list[str] = Field(default_factory=list)
    display_order: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: str = Field(..., min_length=1)
    pitch: str | None = None
    talking_points: str | None = None
    agent_notes: str | None = None
    priority: ProductPriority = ProductPriority.MEDIUM
    profit_level: ProfitLevel = ProfitLevel.STANDARD
    tags: list[str] = Field(default_factory=list)
    display_order: int = 0
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    price: str | None = Field(default=None, min_length=1)
    pitch: str | None = None
    talking_points: str | None = None
    agent_notes: str | None = None
    priority: ProductPriority | None = None
    profit_level: ProfitLevel | None = None
    tags: list[str] | None = None
    display_order: int | None = None
    is_active: bool | None = None


# ============================================================================
# Leads
# ============================================================================


class Lead(BaseModel):
    """A sales lead moving through the pipeline.

    ``product_ids`` holds the products the lead is interested in.
    ``assigned_to`` is the sales agent, ``assigned_engineer`` the engineer
    delivering the work; both are user ids or None when unassigned.
    """

    id: int
    name: str
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    status: LeadStatus = LeadStatus.NEW
    source: str | None = None
    value: float | None = Field(default=None, allow_inf_nan=False)
    assigned_to: int | None = None
    assigned_engineer: int | None = None
    notes: str | None = None
    priority: LeadPriority = LeadPriority.MEDIUM
    score: int = 0
    engineering_progress: int = 0
    engineering_notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    follow_up_date: datetime | None = None
    last_contacted_at: datetime | None = None
    product_ids: list[int] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class LeadCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN)
    phone: str | None = None
    company: str | None = None
    status: LeadStatus = LeadStatus.NEW
    source: str | None = None
    value: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    assigned_to: int | None = None
    assigned_engineer: int | None = None
    notes: str | None = None
    priority: LeadPriority = LeadPriority.MEDIUM
    score: int = Field(default=0, ge=0, le=100)
    engineering_progress: int = Field(default=0, ge=0, le=100)
    engineering_notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    follow_up_date: datetime | None = None
    product_ids: list[int] = Field(default_factory=list)


class LeadUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN)
    phone: str | None = None
    company: str | None = None
    status: LeadStatus | None = None
    source: str | None = None
    value: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    assigned_to: int | None = None
    assigned_engineer: int | None = None
    notes: str | None = None
    priority: LeadPriority | None = None
    score: int | None = Field(default=None, ge=0, le=100)
    engineering_progress: int | None = Field(default=None, ge=0, le=100)
    engineering_notes: str | None = None
    tags: list[str] | None = None
    follow_up_date: datetime | None = None
    last_contacted_at: datetime | None = None
    product_ids: list[int] | None = None


class LeadFilters(BaseModel):
    """Filters accepted when listing leads."""

    status: LeadStatus | None = None
    assigned_to: int | None = None
    source: str | None = None
    priority: LeadPriority | None = None
    search: str | None = None


# ============================================================================
# Interactions
# ============================================================================


class Interaction(BaseModel):
    """A logged contact (call, email, note...) with a lead."""

    id: int
    lead_id: int
    user_id: int | None = None
    type: InteractionType = InteractionType.NOTE
    text: str
    created_at: datetime = Field(default_factory=_utcnow)


class InteractionCreate(BaseModel):
    type: InteractionType = InteractionType.NOTE
    text: str = Field(..., min_length=1)


class InteractionUpdate(BaseModel):
    type: InteractionType | None = None
    text: str | None = Field(default=None, min_length=1)


# ============================================================================
# Analytics
# ============================================================================


class StatusCount(BaseModel):
    status: LeadStatus
    count: int


class MonthlyRevenue(BaseModel):
    month: str
    revenue: float


class AnalyticsSummary(BaseModel):
    """Aggregate pipeline metrics."""

    total_leads: int
    conversion_rate: float = Field(description="Percentage of leads won")
    pipeline_value: float = Field(description="Value of leads not yet won or lost")
    active_projects: int
    leads_by_status: list[StatusCount]
    revenue_by_month: list[MonthlyRevenue]
