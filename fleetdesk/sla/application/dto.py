"""
SLA Application DTOs
=====================

Data Transfer Objects for the STS API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Enum values are validated here, at the
boundary, so the engine can trust its input.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fleetdesk.config import (
    TicketChannel, TicketEventType, TicketSeverity, TicketStatus
)
from fleetdesk.sla.domain import ensure_utc


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for opening a ticket."""
    component_id: str = Field(..., min_length=1, description="Component the ticket is about")
    severity: TicketSeverity = Field(..., description="Ticket severity")
    channel: TicketChannel = Field(..., description="Reporting channel")
    description: str = Field(..., min_length=5, description="Free-text description")
    assigned_to_id: Optional[str] = Field(None, description="Initial assignee")
    case_id: Optional[str] = Field(None, description="Linked case / work order")

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class TicketUpdateRequest(BaseModel):
    """
    Request model for PATCH /tickets/{id}.

    ``assigned_to_id`` is only applied when present in the payload; an
    explicit null removes the assignee.
    """
    status: Optional[TicketStatus] = None
    assigned_to_id: Optional[str] = None

    @property
    def has_assignment(self) -> bool:
        return "assigned_to_id" in self.model_fields_set


class CommentCreateRequest(BaseModel):
    """Request model for adding a comment to a ticket."""
    message: str = Field(..., min_length=1, description="Comment text")
    is_response: bool = Field(default=False, description="Counts as a response to the reporter")

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class SlaPolicyItem(BaseModel):
    """One SLA policy row in a bulk upsert."""
    component_id: str = Field(..., min_length=1)
    severity: TicketSeverity
    response_minutes: int = Field(..., ge=1, description="Max minutes to first response")
    resolution_minutes: int = Field(..., ge=1, description="Max accumulated minutes to resolution")
    pause_statuses: Optional[List[TicketStatus]] = Field(
        None,
        description="Statuses that stop the resolution clock (default: WAITING_VENDOR)"
    )


class SlaPolicyUpsertRequest(BaseModel):
    """Request model for PUT /sla-policies."""
    items: List[SlaPolicyItem] = Field(..., description="Policies to create or update")


class MaintenanceWindowCreateRequest(BaseModel):
    """Request model for declaring a maintenance window."""
    component_id: Optional[str] = Field(None, description="Component, or null for the whole tenant")
    start_at: datetime
    end_at: datetime
    reason: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def normalise_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_range(self) -> "MaintenanceWindowCreateRequest":
        """Ensure end_at is after start_at."""
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Response model for a ticket."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    component_id: str
    severity: TicketSeverity
    channel: TicketChannel
    description: str
    status: TicketStatus
    opened_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    breach_response: bool = False
    breach_resolution: bool = False
    response_minutes: Optional[int] = None
    resolution_minutes: Optional[int] = None
    assigned_to_id: Optional[str] = None
    case_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class TicketEventResponse(BaseModel):
    """Response model for a ticket event."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    ticket_id: str
    type: TicketEventType
    status: Optional[TicketStatus] = None
    message: Optional[str] = None
    created_at: datetime
    created_by_id: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class SLAEvaluationResponse(BaseModel):
    """SLA evaluation plus the live progress of running clocks."""
    policy_applies: bool = Field(..., description="Whether an SLA policy matched the ticket")
    response_minutes: Optional[int] = None
    resolution_minutes: Optional[int] = None
    breach_response: bool = False
    breach_resolution: bool = False
    response_progress: Optional[float] = Field(None, description="0-1, until first response")
    resolution_progress: Optional[float] = Field(None, description="0-1, until close")
    response_near_breach: bool = False
    resolution_near_breach: bool = False


class TicketDetailResponse(BaseModel):
    """Response model for GET /tickets/{id}."""
    ticket: TicketResponse
    events: List[TicketEventResponse] = Field(default_factory=list)
    sla: SLAEvaluationResponse


class TicketListResponse(BaseModel):
    """Response model for ticket listings."""
    items: List[TicketResponse] = Field(default_factory=list)


class SlaPolicyResponse(BaseModel):
    """Response model for an SLA policy."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    tenant_id: str
    component_id: str
    severity: TicketSeverity
    response_minutes: int
    resolution_minutes: int
    pause_statuses: List[TicketStatus] = Field(default_factory=list)

    @field_validator("pause_statuses", mode="before")
    @classmethod
    def sort_statuses(cls, v: Any) -> Any:
        if isinstance(v, (set, frozenset)):
            return sorted(v, key=lambda s: str(s))
        return v


class SlaPolicyListResponse(BaseModel):
    items: List[SlaPolicyResponse] = Field(default_factory=list)


class MaintenanceWindowResponse(BaseModel):
    """Response model for a maintenance window."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    tenant_id: str
    component_id: Optional[str] = None
    start_at: datetime
    end_at: datetime
    reason: Optional[str] = None


class MaintenanceWindowListResponse(BaseModel):
    items: List[MaintenanceWindowResponse] = Field(default_factory=list)


class ForceCloseResponse(BaseModel):
    """Response model for the case-driven forced close."""
    closed: int = Field(..., description="Number of tickets closed")
    ticket_ids: List[str] = Field(default_factory=list)


class RecomputeResponse(BaseModel):
    """Response model for a tenant-wide SLA recompute."""
    tickets_evaluated: int
    flags_changed: int


class ComponentSeverityCompliance(BaseModel):
    """Compliance figures for one (component, severity) pair."""
    component_id: str
    severity: TicketSeverity
    total: int
    response_compliance: int = Field(..., description="Percentage of tickets without response breach")
    resolution_compliance: int = Field(..., description="Percentage of tickets without resolution breach")


class DashboardSummary(BaseModel):
    """Summary statistics for the SLA dashboard."""
    total_tickets: int
    open_tickets: int
    closed_tickets: int
    response_breaches: int
    resolution_breaches: int
    response_compliance: int
    resolution_compliance: int
    avg_response_minutes: int
    avg_resolution_minutes: int


class DashboardResponse(BaseModel):
    """Response model for the SLA dashboard."""
    start: datetime
    end: datetime
    summary: DashboardSummary
    by_component_severity: List[ComponentSeverityCompliance] = Field(default_factory=list)
