# models.py
"""Pydantic models for GTM Command Center records."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LeadStage(str, Enum):
    """Pipeline stages, in board order."""

    PROSPECT = "Prospect"
    RESEARCHED = "Researched"
    CONTACTED = "Contacted"
    MEETING = "Meeting"
    PROPOSAL = "Proposal"
    WON = "Won"
    LOST = "Lost"


LEAD_STAGES: List[LeadStage] = list(LeadStage)


class ExpansionDirection(str, Enum):
    """Market expansion direction of a startup."""

    FRANCE_TO_US = "FRANCE_TO_US"
    US_TO_FRANCE = "US_TO_FRANCE"
    OTHER = "OTHER"


class IcpFit(str, Enum):
    """How well a lead matches the ideal customer profile."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ActivityType(str, Enum):
    """Kinds of logged touches with a lead."""

    EMAIL = "email"
    LINKEDIN = "linkedin"
    CALL = "call"
    MEETING = "meeting"
    NOTE = "note"


class Record(BaseModel):
    """Base for rows returned by the data service; unknown columns are ignored."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)


class Startup(Record):
    """A startup whose go-to-market is being planned."""

    id: str = Field(..., description="Startup id")
    user_id: str = Field(default="", description="Owning user id")
    name: str = Field(..., description="Startup name")
    website: Optional[str] = Field(default=None, description="Startup website")
    direction: ExpansionDirection = Field(
        default=ExpansionDirection.OTHER, description="Expansion direction"
    )
    notes: Optional[str] = Field(default=None, description="Free-form context")
    created_at: Optional[datetime] = Field(default=None)


class ICPProfile(Record):
    """Ideal customer profile and GTM strategy for a startup."""

    id: Optional[str] = Field(default=None, description="Profile id")
    startup_id: Optional[str] = Field(default=None, description="Owning startup id")
    name: str = Field(default="", description="Profile name")
    region: str = Field(default="", description="Target region")
    notes: Optional[str] = None

    # Strategy
    market_summary: Optional[str] = None
    key_segments: Optional[str] = None
    competitors: Optional[str] = None
    buying_motion: Optional[str] = None
    risks_landmines: Optional[str] = None

    # Structured ICP
    icp_company: Optional[dict] = None
    icp_persona: Optional[dict] = None
    icp_triggers: Optional[dict] = None

    # Execution & messaging
    value_props: Optional[str] = None
    messaging_framework: Optional[str] = None
    outbound_sequences: Optional[str] = None
    meddic_insights: Optional[str] = None
    expansion_guidance: Optional[str] = None

    created_at: Optional[datetime] = None


class OutboundDraft(BaseModel):
    """An AI-written outreach message waiting to be sent."""

    subject: Optional[str] = None
    body: str = Field(default="", description="Message body")
    type: ActivityType = Field(default=ActivityType.EMAIL, description="email or linkedin")
    generated_at: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True)


class Lead(Record):
    """A contact at a target account."""

    id: str = Field(..., description="Lead id")
    startup_id: Optional[str] = None
    contact_name: str = Field(default="", description="Contact full name")
    title: Optional[str] = None
    seniority: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None
    phone: Optional[str] = None
    persona: Optional[str] = None
    company_name: Optional[str] = None
    website: Optional[str] = None
    hq_country: Optional[str] = None
    company_type: Optional[str] = None
    industry: Optional[str] = None
    employees_min: Optional[int] = None
    employees_max: Optional[int] = None
    cloud_env: Optional[str] = None
    direction: Optional[str] = None
    icp_fit: Optional[IcpFit] = None
    segment: Optional[str] = None
    stage: LeadStage = Field(default=LeadStage.PROSPECT, description="Pipeline stage")
    last_touch_at: Optional[datetime] = None
    last_touch_type: Optional[str] = None
    account_summary: Optional[str] = None
    personalized_hook: Optional[str] = None
    pain_hypothesis: Optional[str] = None
    source: Optional[str] = None

    active_draft: Optional[OutboundDraft] = None

    # Live enrichment
    funding_status: Optional[str] = None
    tech_stack: Optional[List[str]] = None
    recent_news: Optional[str] = None
    hiring_trends: Optional[str] = None

    raw_data: Optional[Any] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Activity(Record):
    """A logged touch with a lead."""

    id: Optional[str] = None
    lead_id: Optional[str] = None
    activity_type: ActivityType = Field(..., description="Kind of touch")
    direction: str = Field(default="outbound", description="outbound or inbound")
    subject: Optional[str] = None
    body: Optional[str] = None
    done_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
