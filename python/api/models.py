"""
Pydantic request/response schemas for the Shelter Matching API

Transforms the matching-core dataclasses into Pydantic models for API
validation and serialization.
"""

from datetime import date, datetime
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from database.models import District, Gender, HealthStatus, MissingStatus
from matching.models import SearchStatus


# ============================================
# REQUESTS
# ============================================

class PersonFields(BaseModel):
    """Fields recorded for a person registered at a shelter.

    Detailed validation (blocked characters, NIC format) is applied by
    the registry service so both API and internal callers share it.
    """
    full_name: str = Field(..., min_length=2, max_length=200, description="Full name")
    age: int = Field(..., ge=0, le=120, description="Age in years")
    gender: Gender = Field(..., description="MALE, FEMALE or OTHER")
    nic: Optional[str] = Field(default=None, max_length=20, description="National identity card number")
    photo_url: Optional[str] = Field(default=None, max_length=500)
    contact_number: Optional[str] = Field(default=None, max_length=20)
    health_status: HealthStatus = Field(default=HealthStatus.HEALTHY)
    special_notes: Optional[str] = Field(default=None, max_length=2000)


class PersonRegistrationRequest(PersonFields):
    """Request schema for registering a person at a shelter."""
    shelter_id: UUID = Field(..., description="Shelter the person is registered at")


class BulkRegistrationRequest(BaseModel):
    """Several persons registered at one shelter in a single request."""
    shelter_id: UUID
    persons: List[PersonFields] = Field(..., min_length=1, max_length=500)


class DuplicateCheckRequest(BaseModel):
    """Names about to be registered in bulk at a shelter."""
    shelter_id: UUID
    names: List[str] = Field(..., min_length=1, max_length=500)


class ConfirmMatchRequest(BaseModel):
    """Request schema for confirming a person/report match."""
    person_id: UUID
    missing_report_id: UUID
    confidence: float = Field(..., description="Confidence shown to staff (0-100)")
    confirmed_by: Optional[str] = Field(default=None, max_length=200, description="Staff member, for the audit trail")


class MissingReportRequest(BaseModel):
    """Request schema for filing a missing-person report."""
    full_name: str = Field(..., min_length=2, max_length=200)
    age: int = Field(..., ge=0, le=120)
    gender: Gender
    nic: Optional[str] = Field(default=None, max_length=20)
    photo_url: Optional[str] = Field(default=None, max_length=500)
    last_seen_location: str = Field(..., min_length=1, max_length=200)
    last_seen_district: Optional[District] = None
    last_seen_date: Optional[date] = None
    clothing: Optional[str] = Field(default=None, max_length=500)
    reporter_name: str = Field(..., min_length=2, max_length=200)
    reporter_phone: str = Field(..., max_length=20)
    alt_contact: Optional[str] = Field(default=None, max_length=20)


class ReportUpdateRequest(BaseModel):
    """Edits to a missing report; omitted fields are left unchanged.

    An empty string clears photo_url, clothing or alt_contact.
    """
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    age: Optional[int] = Field(default=None, ge=0, le=120)
    gender: Optional[Gender] = None
    nic: Optional[str] = Field(default=None, max_length=20)
    photo_url: Optional[str] = Field(default=None, max_length=500)
    last_seen_location: Optional[str] = Field(default=None, min_length=1, max_length=200)
    last_seen_district: Optional[District] = None
    last_seen_date: Optional[date] = None
    clothing: Optional[str] = Field(default=None, max_length=500)
    reporter_name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    reporter_phone: Optional[str] = Field(default=None, max_length=20)
    alt_contact: Optional[str] = Field(default=None, max_length=20)


# ============================================
# RESPONSES
# ============================================

class ConfidenceBreakdownResponse(BaseModel):
    """Confidence score breakdown per matching dimension."""
    overall: float = Field(..., description="Overall confidence score (0-100)")
    name: float = Field(default=0.0, description="Name similarity score (0-100)")
    age: float = Field(default=0.0, description="Age proximity score (0-100)")
    gender: float = Field(default=0.0, description="Gender match score (0-100)")
    nic_match: bool = Field(default=False, description="Whether the NIC matched exactly")


class PotentialMatchResponse(BaseModel):
    """A missing report proposed for manual confirmation."""
    missing_report_id: UUID
    poster_code: str
    full_name: str
    age: int
    gender: Gender
    photo_url: Optional[str] = None
    last_seen_location: str
    last_seen_district: Optional[str] = None
    reporter_name: str
    reporter_phone: str
    match_score: int = Field(..., ge=0, le=100)
    confidence: ConfidenceBreakdownResponse
    reasons: List[str] = Field(default_factory=list)


class RegistrationResponse(BaseModel):
    """Response schema for person registration."""
    person_id: UUID
    shelter_id: UUID
    full_name: str
    created_at: datetime
    matches: List[PotentialMatchResponse] = Field(
        default_factory=list,
        description="Open missing reports that may describe this person"
    )


class BulkRegistrationResponse(BaseModel):
    """Response schema for bulk registration, one entry per person in input order."""
    count: int = Field(..., ge=0)
    persons: List[RegistrationResponse] = Field(default_factory=list)


class DuplicateCheckResponse(BaseModel):
    duplicates: List[str] = Field(default_factory=list, description="Names already registered at the shelter")


class ConfirmedMatchResponse(BaseModel):
    """Response schema for a recorded match."""
    match_id: UUID
    person_id: UUID
    missing_report_id: UUID
    confidence: float
    confirmed_at: datetime
    confirmed_by: Optional[str] = None
    report_status: MissingStatus


class MissingReportResponse(BaseModel):
    """Public view of a missing report."""
    id: UUID
    poster_code: str
    full_name: str
    age: int
    gender: Gender
    nic: Optional[str] = None
    photo_url: Optional[str] = None
    last_seen_location: str
    last_seen_district: Optional[str] = None
    last_seen_date: Optional[date] = None
    clothing: Optional[str] = None
    reporter_name: str
    reporter_phone: str
    alt_contact: Optional[str] = None
    status: MissingStatus
    created_at: datetime


class MissingReportListResponse(BaseModel):
    total: int = Field(..., ge=0)
    reports: List[MissingReportResponse] = Field(default_factory=list)


class ReporterReportsResponse(BaseModel):
    """Reports filed by one anonymous reporter, newest first."""
    total: int = Field(..., ge=0)
    reports: List[MissingReportResponse] = Field(default_factory=list)


class ShelterInfo(BaseModel):
    name: str
    code: str
    district: str
    contact_number: Optional[str] = None


class PersonInfo(BaseModel):
    """Sheltered person as shown in public search results."""
    id: UUID
    full_name: str
    age: int
    gender: Gender
    nic: Optional[str] = None
    photo_url: Optional[str] = None
    shelter: ShelterInfo
    created_at: datetime


class PersonDetailResponse(BaseModel):
    """Staff view of a registered person."""
    status: SearchStatus
    person: PersonInfo
    health_status: HealthStatus
    contact_number: Optional[str] = None
    special_notes: Optional[str] = None
    missing_report: Optional[MissingReportResponse] = None


class PersonSearchResult(BaseModel):
    """Search result for a sheltered person, with any linked report."""
    kind: Literal["person"] = "person"
    id: str
    status: SearchStatus
    similarity_score: float = Field(..., ge=0.0, le=1.0)
    person: PersonInfo
    missing_report: Optional[MissingReportResponse] = None


class MissingReportSearchResult(BaseModel):
    """Search result for a missing report with no sheltered person attached."""
    kind: Literal["missing_report"] = "missing_report"
    id: str
    status: SearchStatus
    similarity_score: float = Field(..., ge=0.0, le=1.0)
    missing_report: MissingReportResponse


SearchResult = Annotated[
    Union[PersonSearchResult, MissingReportSearchResult],
    Field(discriminator="kind")
]


class SearchResponse(BaseModel):
    """Response schema for the unified search endpoint."""
    search_type: str
    total: int = Field(..., ge=0)
    results: List[SearchResult] = Field(default_factory=list)
    processing_time_ms: int = Field(..., ge=0)


class DatabaseHealth(BaseModel):
    healthy: bool
    latency_ms: float
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="healthy or degraded")
    database: DatabaseHealth
    version: str
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
