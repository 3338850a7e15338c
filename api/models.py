# =============================================================================
# models.py — CRM records, form payloads and summary shapes
#
# Pydantic v2 models define what comes IN (form drafts and partial updates)
# and what goes OUT (stored records, statistics, search pages).
#
# Python code uses snake_case attributes; the JSON surface uses the camelCase
# names the front-end forms send (companyName, followUpDate, ...). Both are
# accepted on input.
#
# Drafts only enforce SHAPE (a number is a number, a date parses). Business
# rules such as "budget must be positive" live in validation.py so that every
# broken field is reported at once instead of failing on the first one.
# =============================================================================

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CrmModel(BaseModel):
    """Base for every model: camelCase aliases, enums stored as plain strings."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


# ─── Enumerations ─────────────────────────────────────────────────────────────

class EntityStatus(str, Enum):
    CLIENT = "client"
    PROSPECT = "prospect"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MissionStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


class MissionType(str, Enum):
    AUDIT_LEGAL = "audit_legal"
    PCA = "pca"
    FORMATION = "formation"
    ATTESTATION = "attestation"
    OTHER = "other"


class OpportunityStage(str, Enum):
    PROSPECTION = "prospection"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


class OpportunityType(str, Enum):
    SPONTANEOUS = "spontaneous"
    TECHNICAL = "technical"
    TENDER = "tender"


class InteractionType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    VISIT = "visit"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ─── Entities (companies: clients and prospects) ──────────────────────────────

class Address(CrmModel):
    street: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = "Burkina Faso"


class EntityDraft(CrmModel):
    """
    Entity form payload.

    No `score` field: the score is derived from revenue, employees and status
    whenever the record is written.
    """

    company_name: str = ""
    sector: str = ""
    region: str = ""
    revenue: Optional[int] = Field(default=None, description="Annual turnover, whole currency units.")
    employees: Optional[int] = Field(default=None, description="Headcount.")
    status: EntityStatus = EntityStatus.PROSPECT
    priority: Priority = Priority.MEDIUM
    description: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Address = Field(default_factory=Address)


class EntityUpdate(CrmModel):
    """Partial entity update. Only fields present in the payload are applied."""

    company_name: Optional[str] = None
    sector: Optional[str] = None
    region: Optional[str] = None
    revenue: Optional[int] = None
    employees: Optional[int] = None
    status: Optional[EntityStatus] = None
    priority: Optional[Priority] = None
    description: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[Address] = None


class Entity(EntityDraft):
    id: str
    score: int = Field(ge=0, le=100)
    created_at: datetime
    updated_at: datetime


# ─── Contacts ─────────────────────────────────────────────────────────────────

class ContactDraft(CrmModel):
    name: str = ""
    entity_id: str = ""
    role: str = ""
    email: str = ""
    phone: str = ""
    whatsapp: Optional[str] = None
    is_primary: bool = False


class ContactUpdate(CrmModel):
    name: Optional[str] = None
    entity_id: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    is_primary: Optional[bool] = None


class Contact(ContactDraft):
    id: str
    created_at: datetime
    updated_at: datetime


# ─── Missions ─────────────────────────────────────────────────────────────────

class MissionDraft(CrmModel):
    title: str = ""
    description: str = ""
    type: MissionType = MissionType.AUDIT_LEGAL
    entity_id: str = ""
    status: MissionStatus = MissionStatus.DRAFT
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: int = 0
    actual_cost: int = 0
    assigned_users: List[str] = Field(default_factory=list)


class MissionUpdate(CrmModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[MissionType] = None
    entity_id: Optional[str] = None
    status: Optional[MissionStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[int] = None
    actual_cost: Optional[int] = None
    assigned_users: Optional[List[str]] = None


class Mission(MissionDraft):
    id: str
    start_date: date
    profitability: int = Field(description="(budget - actualCost) / budget x 100, stored at write time.")
    created_at: datetime
    updated_at: datetime


# ─── Opportunities ────────────────────────────────────────────────────────────

class OpportunityDraft(CrmModel):
    title: str = ""
    description: str = ""
    type: OpportunityType = OpportunityType.SPONTANEOUS
    entity_id: str = ""
    value: int = 0
    probability: int = 50
    stage: OpportunityStage = OpportunityStage.PROSPECTION
    deadline: Optional[date] = None
    expected_close_date: Optional[date] = None


class OpportunityUpdate(CrmModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[OpportunityType] = None
    entity_id: Optional[str] = None
    value: Optional[int] = None
    probability: Optional[int] = None
    stage: Optional[OpportunityStage] = None
    deadline: Optional[date] = None
    expected_close_date: Optional[date] = None


class Opportunity(OpportunityDraft):
    id: str
    deadline: date
    weighted_value: int = Field(description="round(value x probability / 100), stored at write time.")
    requires_approval: bool = Field(description="value above the approval threshold at write time.")
    created_at: datetime
    updated_at: datetime


# ─── Interactions ─────────────────────────────────────────────────────────────

class InteractionDraft(CrmModel):
    type: InteractionType = InteractionType.CALL
    subject: str = ""
    description: str = ""
    outcome: Optional[str] = None
    entity_id: str = ""
    contact_id: Optional[str] = None
    date: Optional[datetime] = Field(default=None, description="When it happened. Defaults to the write time.")
    duration: Optional[int] = Field(default=None, description="Minutes. Required for calls.")
    follow_up_required: bool = False
    follow_up_date: Optional[datetime] = None


class InteractionUpdate(CrmModel):
    type: Optional[InteractionType] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    outcome: Optional[str] = None
    entity_id: Optional[str] = None
    contact_id: Optional[str] = None
    date: Optional[datetime] = None
    duration: Optional[int] = None
    follow_up_required: Optional[bool] = None
    follow_up_date: Optional[datetime] = None


class Interaction(InteractionDraft):
    id: str
    date: datetime
    created_at: datetime
    updated_at: datetime


# ─── Scoring ──────────────────────────────────────────────────────────────────

class ScoreRequest(CrmModel):
    revenue: Optional[int] = None
    employees: Optional[int] = None
    status: EntityStatus = EntityStatus.PROSPECT


class ScoreBreakdown(CrmModel):
    """The three bands that make up a score, plus the capped total."""

    revenue_band: int
    employees_band: int
    status_band: int
    score: int = Field(ge=0, le=100)


# ─── Statistics ───────────────────────────────────────────────────────────────

class EntityStatistics(CrmModel):
    total: int
    clients: int
    prospects: int
    average_score: int
    by_priority: Dict[str, int]


class MissionStatistics(CrmModel):
    total: int
    active: int
    completed: int
    average_profitability: int
    total_budget: int
    total_actual_cost: int
    overall_profitability: int


class OpportunityStatistics(CrmModel):
    total: int
    active: int
    won: int
    lost: int
    total_value: int
    weighted_value: int
    average_probability: int
    conversion_rate: int
    average_deal_size: int


class InteractionStatistics(CrmModel):
    total: int
    today: int
    follow_up_required: int
    overdue_follow_ups: int
    by_type: Dict[str, int]
    average_duration: int


class ContactStatistics(CrmModel):
    total: int
    primary: int
    with_whatsapp: int = Field(alias="withWhatsApp")
    entities_covered: int


class DashboardResponse(CrmModel):
    entities: EntityStatistics
    contacts: ContactStatistics
    missions: MissionStatistics
    opportunities: OpportunityStatistics
    interactions: InteractionStatistics
    generated_at: datetime


# ─── Search, sort and pagination ──────────────────────────────────────────────

T = TypeVar("T")


class SortSpec(CrmModel):
    field: str
    direction: SortDirection = SortDirection.ASC


class SearchRequest(CrmModel):
    search_term: str = ""
    filters: Dict[str, Any] = Field(default_factory=dict)
    sort: Optional[SortSpec] = None
    page: int = Field(default=0, ge=0)
    size: Optional[int] = Field(default=None, ge=1)


class FilterStats(CrmModel):
    total_items: int
    filtered_items: int
    is_filtered: bool
    filter_ratio: float


class ValueRange(CrmModel):
    min: float
    max: float


class Page(CrmModel, Generic[T]):
    content: List[T]
    page: int
    size: int
    total_elements: int
    total_pages: int


class SearchResponse(CrmModel, Generic[T]):
    results: Page[T]
    stats: FilterStats


# ─── Operations ───────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    """Liveness probe body."""

    status: str = "ok"
    version: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    error: str
    message: str
    fields: Dict[str, str] = Field(default_factory=dict)
