"""
Value objects exchanged by the matching core.

ORM rows never leave a datastore session; the finder, search engine and
recorder return these plain dataclasses instead.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from database.models import Gender, MissingStatus, MissingReport, Person


class SearchStatus(str, Enum):
    """Unified status label attached to every search result"""
    SHELTERED = "SHELTERED"
    FOUND_AND_SHELTERED = "FOUND_AND_SHELTERED"
    MISSING = "MISSING"
    FOUND = "FOUND"


class ResultKind(str, Enum):
    """Discriminant of a unified search result"""
    PERSON = "person"
    MISSING_REPORT = "missing_report"


@dataclass
class PersonCandidate:
    """Attributes of a newly registered person, used to look for matches"""
    full_name: str
    age: int
    gender: Gender
    nic: Optional[str] = None


@dataclass
class ConfidenceBreakdown:
    """Composite score and its components"""
    overall: float
    name_score: float = 0.0
    age_score: float = 0.0
    gender_score: float = 0.0
    nic_match: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": round(self.overall, 2),
            "name": round(self.name_score, 2),
            "age": round(self.age_score, 2),
            "gender": round(self.gender_score, 2),
            "nic_match": self.nic_match,
        }


@dataclass
class PotentialMatch:
    """A missing report proposed to shelter staff for manual confirmation"""
    missing_report_id: uuid.UUID
    poster_code: str
    full_name: str
    age: int
    gender: Gender
    last_seen_location: str
    reporter_name: str
    reporter_phone: str
    created_at: datetime
    confidence: ConfidenceBreakdown
    reasons: List[str] = field(default_factory=list)
    photo_url: Optional[str] = None
    last_seen_district: Optional[str] = None
    last_seen_date: Optional[date] = None

    @property
    def match_score(self) -> int:
        return int(round(self.confidence.overall))


@dataclass
class ShelterSummary:
    name: str
    code: str
    district: str
    contact_number: Optional[str] = None


@dataclass
class ReportSummary:
    """Public view of a missing report"""
    id: uuid.UUID
    poster_code: str
    full_name: str
    age: int
    gender: Gender
    status: MissingStatus
    last_seen_location: str
    reporter_name: str
    reporter_phone: str
    created_at: datetime
    nic: Optional[str] = None
    photo_url: Optional[str] = None
    last_seen_district: Optional[str] = None
    last_seen_date: Optional[date] = None
    clothing: Optional[str] = None
    alt_contact: Optional[str] = None

    @classmethod
    def from_row(cls, report: MissingReport) -> "ReportSummary":
        return cls(
            id=report.id,
            poster_code=report.poster_code,
            full_name=report.full_name,
            age=report.age,
            gender=report.gender,
            status=report.status,
            last_seen_location=report.last_seen_location,
            reporter_name=report.reporter_name,
            reporter_phone=report.reporter_phone,
            created_at=report.created_at,
            nic=report.nic,
            photo_url=report.photo_url,
            last_seen_district=report.last_seen_district.value if report.last_seen_district else None,
            last_seen_date=report.last_seen_date,
            clothing=report.clothing,
            alt_contact=report.alt_contact,
        )


@dataclass
class PersonHit:
    """Payload of a 'person' search result"""
    id: uuid.UUID
    full_name: str
    age: int
    gender: Gender
    created_at: datetime
    shelter: ShelterSummary
    nic: Optional[str] = None
    photo_url: Optional[str] = None
    # Report folded into this result by a confirmed match or a shared NIC
    linked_report: Optional[ReportSummary] = None
    kind: ResultKind = field(default=ResultKind.PERSON, init=False)

    @classmethod
    def from_row(cls, person: Person, linked_report: Optional[MissingReport] = None) -> "PersonHit":
        shelter = person.shelter
        return cls(
            id=person.id,
            full_name=person.full_name,
            age=person.age,
            gender=person.gender,
            created_at=person.created_at,
            shelter=ShelterSummary(
                name=shelter.name,
                code=shelter.code,
                district=shelter.district.value,
                contact_number=shelter.contact_number,
            ),
            nic=person.nic,
            photo_url=person.photo_url,
            linked_report=ReportSummary.from_row(linked_report) if linked_report else None,
        )


@dataclass
class MissingReportHit:
    """Payload of a 'missing_report' search result"""
    report: ReportSummary
    kind: ResultKind = field(default=ResultKind.MISSING_REPORT, init=False)


@dataclass
class UnifiedResult:
    """One entry of a unified search, tagged by kind"""
    status: SearchStatus
    payload: Union[PersonHit, MissingReportHit]
    similarity_score: float = 0.0
    exact_name_match: bool = False

    @property
    def kind(self) -> ResultKind:
        return self.payload.kind

    @property
    def id(self) -> str:
        if isinstance(self.payload, PersonHit):
            return f"person-{self.payload.id}"
        return f"missing-{self.payload.report.id}"

    @property
    def created_at(self) -> datetime:
        if isinstance(self.payload, PersonHit):
            return self.payload.created_at
        return self.payload.report.created_at


@dataclass
class PersonDetail:
    """Staff view of one registered person"""
    person: PersonHit
    status: SearchStatus
    health_status: str
    contact_number: Optional[str] = None
    special_notes: Optional[str] = None


@dataclass
class ConfirmedMatch:
    """Result of recording a staff-confirmed match"""
    id: uuid.UUID
    person_id: uuid.UUID
    missing_report_id: uuid.UUID
    confidence: float
    confirmed_at: datetime
    report_status: MissingStatus
    confirmed_by: Optional[str] = None
