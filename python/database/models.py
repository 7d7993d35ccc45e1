"""
SQLAlchemy ORM Models for the Shelter Matching Service

Tables:
1. shelters - Registered relief shelters (staff portal tenants)
2. persons - Persons registered at a shelter ("sheltered persons")
3. missing_reports - Missing-person reports filed by the public
4. matches - Staff-confirmed pairings of a person and a missing report
5. audit_logs - Audit trail of registrations, reports and confirmations

Column types are kept portable (Uuid, JSON, Enum) so the same schema runs on
PostgreSQL in production and on SQLite in the test suite.
"""

import re
import secrets
import unicodedata
import uuid
from datetime import datetime, date, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, Date, Text,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, Enum, JSON, Uuid
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class Gender(str, PyEnum):
    """Gender as captured on registration and report forms"""
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class HealthStatus(str, PyEnum):
    """Health status recorded by shelter staff"""
    HEALTHY = "HEALTHY"
    MINOR_INJURIES = "MINOR_INJURIES"
    REQUIRES_CARE = "REQUIRES_CARE"
    CRITICAL = "CRITICAL"


class MissingStatus(str, PyEnum):
    """Lifecycle of a missing-person report"""
    MISSING = "MISSING"
    FOUND = "FOUND"


class District(str, PyEnum):
    """Administrative districts of Sri Lanka"""
    COLOMBO = "Colombo"
    GAMPAHA = "Gampaha"
    KALUTARA = "Kalutara"
    KANDY = "Kandy"
    MATALE = "Matale"
    NUWARA_ELIYA = "Nuwara Eliya"
    GALLE = "Galle"
    MATARA = "Matara"
    HAMBANTOTA = "Hambantota"
    JAFFNA = "Jaffna"
    KILINOCHCHI = "Kilinochchi"
    MANNAR = "Mannar"
    VAVUNIYA = "Vavuniya"
    MULLAITIVU = "Mullaitivu"
    BATTICALOA = "Batticaloa"
    AMPARA = "Ampara"
    TRINCOMALEE = "Trincomalee"
    KURUNEGALA = "Kurunegala"
    PUTTALAM = "Puttalam"
    ANURADHAPURA = "Anuradhapura"
    POLONNARUWA = "Polonnaruwa"
    BADULLA = "Badulla"
    MONARAGALA = "Monaragala"
    RATNAPURA = "Ratnapura"
    KEGALLE = "Kegalle"


class AuditAction(str, PyEnum):
    """Type of audit action"""
    REGISTER_PERSON = "REGISTER_PERSON"
    FILE_REPORT = "FILE_REPORT"
    CONFIRM_MATCH = "CONFIRM_MATCH"
    MARK_FOUND = "MARK_FOUND"
    UPDATE_REPORT = "UPDATE_REPORT"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False
    )


class SoftDeleteMixin:
    """Mixin for soft delete support"""
    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )


# ============================================
# CORE MODELS
# ============================================

class Shelter(Base, TimestampMixin):
    """
    A relief shelter. Persons are registered against exactly one shelter.
    """
    __tablename__ = "shelters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Human-readable code staff use to sign in (e.g. "COL-014")
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    district: Mapped[District] = mapped_column(Enum(District), nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    contact_person: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    contact_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    persons: Mapped[List["Person"]] = relationship(
        "Person",
        back_populates="shelter",
        lazy="select"
    )

    def __repr__(self) -> str:
        return f"<Shelter(id={self.id}, code='{self.code}')>"


class Person(Base, TimestampMixin, SoftDeleteMixin):
    """
    A person registered at a shelter by its staff.

    Append-only: re-registration at another shelter creates a new row, so
    shelter_id is never updated once recorded.
    """
    __tablename__ = "persons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    normalized_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[Gender] = mapped_column(Enum(Gender), nullable=False)
    # Canonical upper-case NIC (9 digits + V/X, or 12 digits)
    nic: Mapped[Optional[str]] = mapped_column(String(12), nullable=True, index=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    contact_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    health_status: Mapped[HealthStatus] = mapped_column(
        Enum(HealthStatus),
        nullable=False,
        default=HealthStatus.HEALTHY
    )
    special_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    shelter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("shelters.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    shelter: Mapped["Shelter"] = relationship("Shelter", back_populates="persons")
    matches: Mapped[List["Match"]] = relationship(
        "Match",
        back_populates="person",
        lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint('age >= 0 AND age <= 120', name='ck_person_age_range'),
        Index('ix_person_shelter_name', 'shelter_id', 'normalized_name'),
    )

    def __repr__(self) -> str:
        return f"<Person(id={self.id}, name='{self.full_name}', shelter={self.shelter_id})>"


class MissingReport(Base, TimestampMixin, SoftDeleteMixin):
    """
    A missing-person report filed by a member of the public.

    The poster code is assigned once at creation and is globally unique.
    """
    __tablename__ = "missing_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    normalized_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[Gender] = mapped_column(Enum(Gender), nullable=False)
    nic: Mapped[Optional[str]] = mapped_column(String(12), nullable=True, index=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Last seen
    last_seen_location: Mapped[str] = mapped_column(String(200), nullable=False)
    last_seen_district: Mapped[Optional[District]] = mapped_column(Enum(District), nullable=True)
    last_seen_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    clothing: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Reporter contact
    reporter_name: Mapped[str] = mapped_column(String(200), nullable=False)
    reporter_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    alt_contact: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    # Client-generated identifier of the anonymous reporter who owns the report
    anonymous_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    status: Mapped[MissingStatus] = mapped_column(
        Enum(MissingStatus),
        nullable=False,
        default=MissingStatus.MISSING,
        index=True
    )
    poster_code: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)
    found_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    matches: Mapped[List["Match"]] = relationship(
        "Match",
        back_populates="missing_report",
        lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint('age >= 0 AND age <= 120', name='ck_report_age_range'),
        Index('ix_report_status_created', 'status', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<MissingReport(id={self.id}, poster='{self.poster_code}', status={self.status})>"


class Match(Base):
    """
    A confirmed pairing of a sheltered person and a missing report.

    At most one row per (person, report) pair.
    """
    __tablename__ = "matches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("persons.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    missing_report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("missing_reports.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    confirmed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    confirmed_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    person: Mapped["Person"] = relationship("Person", back_populates="matches")
    missing_report: Mapped["MissingReport"] = relationship(
        "MissingReport",
        back_populates="matches"
    )

    __table_args__ = (
        UniqueConstraint('person_id', 'missing_report_id', name='uq_match_person_report'),
        CheckConstraint('confidence >= 0 AND confidence <= 100', name='ck_match_confidence_range'),
    )

    def __repr__(self) -> str:
        return f"<Match(person={self.person_id}, report={self.missing_report_id}, confidence={self.confidence})>"


class AuditLog(Base):
    """
    Audit trail for writes performed through the service.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
        index=True
    )
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_audit_resource', 'resource_type', 'resource_id'),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action={self.action}, resource={self.resource_type}:{self.resource_id})>"


# ============================================
# HELPER FUNCTIONS
# ============================================

NIC_PATTERN = re.compile(r'^(\d{9}[VX]|\d{12})$')
POSTER_CODE_PATTERN = re.compile(r'^MP\d{5}$')


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a name for storage-side comparisons.

    Applies NFC composition, collapses whitespace and case-folds. Combining
    marks are kept: they carry vowel signs in Sinhala and Tamil names.

    Args:
        name: The name to normalize (can be None)

    Returns:
        Normalized name string, or empty string if name is None/empty
    """
    if not name:
        return ""

    normalized = unicodedata.normalize('NFC', name)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip().casefold()


def normalize_nic(nic: Optional[str]) -> str:
    """
    Normalize a NIC number: strip surrounding whitespace and upper-case.

    Args:
        nic: The NIC to normalize (can be None)

    Returns:
        Upper-cased NIC, or empty string if nic is None/empty
    """
    if not nic:
        return ""
    return nic.strip().upper()


def generate_poster_code() -> str:
    """Generate a shareable poster code, e.g. MP04217."""
    return "MP" + "".join(secrets.choice("0123456789") for _ in range(5))
