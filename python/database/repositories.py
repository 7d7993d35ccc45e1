"""
Repository Pattern for Shelter Matching Database Operations

Provides clean data access layer with proper typing and error handling.
Repositories work on a caller-supplied Session and never commit; the
caller owns the transaction boundary.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import select, func, and_, case
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError

from database.models import (
    Shelter,
    Person,
    MissingReport,
    Match,
    AuditLog,
    AuditAction,
    MissingStatus,
    normalize_name,
    normalize_nic,
    generate_poster_code
)
from text_utils import escape_like

logger = logging.getLogger(__name__)

# Attempts at drawing an unused poster code before giving up
POSTER_CODE_ATTEMPTS = 10

EDITABLE_REPORT_FIELDS = frozenset({
    'full_name', 'age', 'gender', 'nic', 'photo_url', 'last_seen_location',
    'last_seen_district', 'last_seen_date', 'clothing', 'reporter_name',
    'reporter_phone', 'alt_contact',
})


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


def _name_contains(column, query: str):
    """Case-insensitive substring condition with LIKE wildcards escaped."""
    pattern = f"%{escape_like(query.strip())}%"
    return column.ilike(pattern, escape="\\")


def _exact_name_first(normalized_column, query: str):
    """Sort key putting exact normalized full-name matches ahead of the rest."""
    return case((normalized_column == normalize_name(query), 0), else_=1)


# ============================================
# SHELTER REPOSITORY
# ============================================

class ShelterRepository:
    """Repository for shelter operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, shelter_data: Dict[str, Any]) -> Shelter:
        """
        Create a new shelter.

        Raises:
            DuplicateEntityError: If a shelter with the same code exists
        """
        try:
            shelter = Shelter(**shelter_data)
            self.session.add(shelter)
            self.session.flush()
            logger.debug(f"Created shelter: {shelter.id} ({shelter.code})")
            return shelter
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Shelter already exists: {e}")

    def get_by_id(self, shelter_id: UUID) -> Optional[Shelter]:
        return self.session.get(Shelter, shelter_id)

    def get_by_code(self, code: str) -> Optional[Shelter]:
        query = select(Shelter).where(Shelter.code == code)
        return self.session.execute(query).scalar_one_or_none()


# ============================================
# PERSON REPOSITORY
# ============================================

class PersonRepository:
    """Repository for persons registered at shelters.

    shelter_id is never updated once recorded; a person moving
    to another shelter is registered again.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, person_data: Dict[str, Any]) -> Person:
        """
        Register a person.

        Args:
            person_data: Dictionary containing Person fields

        Returns:
            Created Person instance
        """
        person_data['normalized_name'] = normalize_name(person_data.get('full_name'))
        person_data['nic'] = normalize_nic(person_data.get('nic')) or None

        person = Person(**person_data)
        self.session.add(person)
        self.session.flush()

        logger.debug(f"Registered person: {person.id} at shelter {person.shelter_id}")
        return person

    def get_by_id(self, person_id: UUID, include_deleted: bool = False) -> Optional[Person]:
        """
        Get person by ID.

        Args:
            person_id: UUID of the person
            include_deleted: If True, include soft-deleted persons
        """
        query = select(Person).where(Person.id == person_id)
        if not include_deleted:
            query = query.where(Person.is_deleted == False)
        return self.session.execute(query).scalar_one_or_none()

    def search_by_name(self, query: str, limit: int = 50) -> List[Person]:
        """
        Case-insensitive substring search on full name.

        Exact full-name matches come first so the limit never cuts them
        off, then newest first.

        Args:
            query: Name fragment (wildcards are matched literally)
            limit: Maximum rows to return
        """
        stmt = (
            select(Person)
            .where(
                and_(
                    Person.is_deleted == False,
                    _name_contains(Person.full_name, query)
                )
            )
            .options(joinedload(Person.shelter))
            .order_by(_exact_name_first(Person.normalized_name, query), Person.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).unique().scalars().all())

    def search_by_nic(self, nic: str, limit: int = 10) -> List[Person]:
        """Exact, case-insensitive NIC match, newest first."""
        stmt = (
            select(Person)
            .where(
                and_(
                    Person.is_deleted == False,
                    func.upper(Person.nic) == normalize_nic(nic)
                )
            )
            .options(joinedload(Person.shelter))
            .order_by(Person.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).unique().scalars().all())

    def list_normalized_names(self, shelter_id: UUID) -> Dict[str, str]:
        """
        Names already registered at a shelter.

        Returns:
            Mapping of normalized name to the name as registered
        """
        stmt = (
            select(Person.normalized_name, Person.full_name)
            .where(
                and_(
                    Person.shelter_id == shelter_id,
                    Person.is_deleted == False
                )
            )
        )
        return {row.normalized_name: row.full_name for row in self.session.execute(stmt)}


# ============================================
# MISSING REPORT REPOSITORY
# ============================================

class MissingReportRepository:
    """Repository for missing-person reports."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, report_data: Dict[str, Any]) -> MissingReport:
        """
        File a missing report and assign it a poster code.

        The unique constraint on poster_code still guards against a
        concurrent writer drawing the same code; callers retry on
        IntegrityError.

        Raises:
            DuplicateEntityError: If no unused poster code could be drawn
        """
        report_data['normalized_name'] = normalize_name(report_data.get('full_name'))
        report_data['nic'] = normalize_nic(report_data.get('nic')) or None
        report_data['poster_code'] = self._allocate_poster_code()

        report = MissingReport(**report_data)
        self.session.add(report)
        self.session.flush()

        logger.debug(f"Filed missing report: {report.id} ({report.poster_code})")
        return report

    def _allocate_poster_code(self) -> str:
        for _ in range(POSTER_CODE_ATTEMPTS):
            code = generate_poster_code()
            taken = self.session.execute(
                select(MissingReport.id).where(MissingReport.poster_code == code)
            ).first()
            if taken is None:
                return code
            logger.debug(f"Poster code collision on {code}, drawing again")
        raise DuplicateEntityError("Could not allocate an unused poster code")

    def get_by_id(self, report_id: UUID, include_deleted: bool = False) -> Optional[MissingReport]:
        query = select(MissingReport).where(MissingReport.id == report_id)
        if not include_deleted:
            query = query.where(MissingReport.is_deleted == False)
        return self.session.execute(query).scalar_one_or_none()

    def get_by_poster_code(self, poster_code: str) -> Optional[MissingReport]:
        query = select(MissingReport).where(
            and_(
                MissingReport.poster_code == poster_code.strip().upper(),
                MissingReport.is_deleted == False
            )
        )
        return self.session.execute(query).scalar_one_or_none()

    def list_open(self, offset: int = 0, limit: Optional[int] = 100) -> Tuple[List[MissingReport], int]:
        """
        List reports still in MISSING status, newest first.

        Args:
            offset: Pagination offset
            limit: Maximum results (None for all)

        Returns:
            Tuple of (reports list, total count)
        """
        conditions = and_(
            MissingReport.status == MissingStatus.MISSING,
            MissingReport.is_deleted == False
        )

        count_query = select(func.count(MissingReport.id)).where(conditions)
        total = self.session.execute(count_query).scalar_one()

        query = (
            select(MissingReport)
            .where(conditions)
            .order_by(MissingReport.created_at.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        return list(self.session.execute(query).scalars().all()), total

    def list_by_reporter(self, anonymous_user_id: str) -> List[MissingReport]:
        """Every report filed by one anonymous reporter, newest first, whatever its status."""
        query = (
            select(MissingReport)
            .where(
                and_(
                    MissingReport.anonymous_user_id == anonymous_user_id,
                    MissingReport.is_deleted == False
                )
            )
            .order_by(MissingReport.created_at.desc())
        )
        return list(self.session.execute(query).scalars().all())

    def update(self, report: MissingReport, changes: Dict[str, Any]) -> MissingReport:
        """
        Apply edits to a report.

        Poster code, status and ownership cannot be changed here; the
        normalized name and NIC follow the edited values.

        Raises:
            ValueError: If changes names a field that cannot be edited
        """
        locked = set(changes) - EDITABLE_REPORT_FIELDS
        if locked:
            raise ValueError(f"Fields cannot be edited: {sorted(locked)}")

        for name, value in changes.items():
            setattr(report, name, value)
        if 'full_name' in changes:
            report.normalized_name = normalize_name(report.full_name)
        if 'nic' in changes:
            report.nic = normalize_nic(report.nic) or None

        self.session.flush()
        return report

    def search_by_name(self, query: str, limit: int = 50) -> List[MissingReport]:
        """Case-insensitive substring search on full name, exact matches first, then newest."""
        stmt = (
            select(MissingReport)
            .where(
                and_(
                    MissingReport.is_deleted == False,
                    _name_contains(MissingReport.full_name, query)
                )
            )
            .order_by(_exact_name_first(MissingReport.normalized_name, query), MissingReport.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def search_by_nic(self, nic: str, limit: int = 10) -> List[MissingReport]:
        """Exact, case-insensitive NIC match, newest first."""
        stmt = (
            select(MissingReport)
            .where(
                and_(
                    MissingReport.is_deleted == False,
                    func.upper(MissingReport.nic) == normalize_nic(nic)
                )
            )
            .order_by(MissingReport.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def mark_found(self, report_id: UUID, found_at: Optional[datetime] = None) -> MissingReport:
        """
        Move a report to FOUND.

        Idempotent: a report already FOUND keeps its original found_at.

        Raises:
            EntityNotFoundError: If the report does not exist
        """
        report = self.get_by_id(report_id)
        if report is None:
            raise EntityNotFoundError(f"Missing report not found: {report_id}")

        if report.status != MissingStatus.FOUND:
            report.status = MissingStatus.FOUND
            report.found_at = found_at or datetime.now(timezone.utc)
            self.session.flush()
        return report


# ============================================
# MATCH REPOSITORY
# ============================================

class MatchRepository:
    """Repository for confirmed person/report matches."""

    def __init__(self, session: Session):
        self.session = session

    def get_for_pair(self, person_id: UUID, missing_report_id: UUID) -> Optional[Match]:
        query = select(Match).where(
            and_(
                Match.person_id == person_id,
                Match.missing_report_id == missing_report_id
            )
        )
        return self.session.execute(query).scalar_one_or_none()

    def exists(self, person_id: UUID, missing_report_id: UUID) -> bool:
        return self.get_for_pair(person_id, missing_report_id) is not None

    def create(
        self,
        person_id: UUID,
        missing_report_id: UUID,
        confidence: float,
        confirmed_by: Optional[str] = None
    ) -> Match:
        """
        Record a confirmed match.

        Raises:
            IntegrityError: From flush, if the pair is already recorded
        """
        match = Match(
            person_id=person_id,
            missing_report_id=missing_report_id,
            confidence=confidence,
            confirmed_by=confirmed_by
        )
        self.session.add(match)
        self.session.flush()
        return match

    def count(self, person_id: Optional[UUID] = None, missing_report_id: Optional[UUID] = None) -> int:
        conditions = []
        if person_id:
            conditions.append(Match.person_id == person_id)
        if missing_report_id:
            conditions.append(Match.missing_report_id == missing_report_id)

        query = select(func.count(Match.id))
        if conditions:
            query = query.where(and_(*conditions))
        return self.session.execute(query).scalar_one()

    def linked_reports(self, person_ids: List[UUID]) -> Dict[UUID, List[MissingReport]]:
        """Reports confirmed against each of the given persons."""
        if not person_ids:
            return {}

        query = (
            select(Match.person_id, MissingReport)
            .join(MissingReport, Match.missing_report_id == MissingReport.id)
            .where(
                and_(
                    Match.person_id.in_(person_ids),
                    MissingReport.is_deleted == False
                )
            )
            .order_by(Match.confirmed_at.desc())
        )
        linked: Dict[UUID, List[MissingReport]] = {}
        for person_id, report in self.session.execute(query):
            linked.setdefault(person_id, []).append(report)
        return linked


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: Optional[str] = None,
        actor: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: Type of action
            resource_type: Type of resource affected
            resource_id: ID of resource
            actor: Who performed the action (staff id, anonymous reporter id)
            details: Additional details

        Returns:
            Created AuditLog
        """
        log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor=actor,
            details=details
        )
        self.session.add(log)
        self.session.flush()
        return log

    def search(
        self,
        action: Optional[AuditAction] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100
    ) -> List[AuditLog]:
        """Audit entries matching the filters, newest first."""
        conditions = []
        if action:
            conditions.append(AuditLog.action == action)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == resource_id)

        query = select(AuditLog)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(AuditLog.timestamp.desc()).limit(limit)
        return list(self.session.execute(query).scalars().all())
