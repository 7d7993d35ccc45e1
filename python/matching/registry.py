"""
Registry Service

Write-side operations that surround matching: registering persons at a
shelter (one at a time or in bulk), checking a batch of names for
duplicates, and filing, editing and resolving missing reports. Like the
other components it receives a session provider at construction and
translates SQLAlchemy failures into DatastoreError.

Usage:
    registry = RegistryService(db_provider, config)
    person = registry.register_person(shelter_id, registration)
    matches = finder.find_matches(registration.candidate())
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config_manager import ConfigManager, get_config
from database.models import AuditAction, District, Gender, HealthStatus, POSTER_CODE_PATTERN, normalize_name
from database.monitoring import query_timer
from database.repositories import (
    AuditRepository,
    DuplicateEntityError,
    MatchRepository,
    MissingReportRepository,
    PersonRepository,
    ShelterRepository,
)
from matching.errors import DatastoreError, RecordNotFoundError
from matching.models import PersonCandidate, PersonDetail, PersonHit, ReportSummary, SearchStatus
from text_utils import sanitize_for_logging
from validators import (
    InputValidationError,
    validate_age,
    validate_gender,
    validate_name,
    validate_nic,
    validate_phone,
)

logger = logging.getLogger(__name__)

# Whole-transaction retries when a concurrent writer takes the same poster code
FILE_REPORT_ATTEMPTS = 3


class NotReportOwnerError(Exception):
    """Raised when someone other than the reporter tries to edit or resolve a report."""
    pass


@dataclass
class PersonRegistration:
    """Fields captured by shelter staff on the registration form"""
    full_name: str
    age: int
    gender: Gender
    nic: Optional[str] = None
    photo_url: Optional[str] = None
    contact_number: Optional[str] = None
    health_status: HealthStatus = HealthStatus.HEALTHY
    special_notes: Optional[str] = None

    def candidate(self) -> PersonCandidate:
        return PersonCandidate(
            full_name=self.full_name,
            age=self.age,
            gender=self.gender,
            nic=self.nic,
        )


@dataclass
class MissingReportForm:
    """Fields supplied by a member of the public filing a report"""
    full_name: str
    age: int
    gender: Gender
    last_seen_location: str
    reporter_name: str
    reporter_phone: str
    nic: Optional[str] = None
    photo_url: Optional[str] = None
    last_seen_district: Optional[District] = None
    last_seen_date: Optional[date] = None
    clothing: Optional[str] = None
    alt_contact: Optional[str] = None


@dataclass
class ReportUpdate:
    """Edits to a missing report; None leaves a field unchanged"""
    full_name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[Gender] = None
    nic: Optional[str] = None
    photo_url: Optional[str] = None
    last_seen_location: Optional[str] = None
    last_seen_district: Optional[District] = None
    last_seen_date: Optional[date] = None
    clothing: Optional[str] = None
    reporter_name: Optional[str] = None
    reporter_phone: Optional[str] = None
    alt_contact: Optional[str] = None


@dataclass
class RegisteredPerson:
    id: uuid.UUID
    shelter_id: uuid.UUID
    full_name: str
    created_at: datetime


class RegistryService:
    """Registers persons and manages missing reports."""

    def __init__(self, db_provider, config: Optional[ConfigManager] = None):
        self._db = db_provider
        self.config = config or get_config()

    # ------------------------------------------------------------------
    # Persons
    # ------------------------------------------------------------------

    def register_person(self, shelter_id: uuid.UUID, registration: PersonRegistration) -> RegisteredPerson:
        """
        Register a person at a shelter.

        Args:
            shelter_id: Shelter the person is staying at
            registration: Form fields

        Returns:
            The registered person

        Raises:
            InputValidationError: If a field is invalid
            RecordNotFoundError: If the shelter does not exist
            DatastoreError: If the datastore could not be written
        """
        [registered] = self._register(shelter_id, [self._person_fields(shelter_id, registration)])
        logger.info("Registered person %s at shelter %s", registered.id, shelter_id)
        return registered

    def register_bulk(self, shelter_id: uuid.UUID, registrations: List[PersonRegistration]) -> List[RegisteredPerson]:
        """
        Register a batch of persons at one shelter in a single transaction.

        Every entry is validated before anything is written; one invalid
        entry rejects the whole batch, with the error field prefixed by
        its position (e.g. ``persons[3].age``).

        Returns:
            The registered persons, in input order
        """
        if not registrations:
            raise InputValidationError(
                "At least one person is required",
                field="persons",
                code="PERSONS_REQUIRED",
                suggestion="Submit one or more persons to register"
            )

        rows = []
        for index, registration in enumerate(registrations):
            try:
                rows.append(self._person_fields(shelter_id, registration))
            except InputValidationError as e:
                raise InputValidationError(
                    str(e),
                    field=f"persons[{index}].{e.field}",
                    code=e.code,
                    suggestion=e.suggestion
                ) from e

        registered = self._register(shelter_id, rows, bulk=True)
        logger.info("Registered %d person(s) at shelter %s", len(registered), shelter_id)
        return registered

    def _person_fields(self, shelter_id: uuid.UUID, registration: PersonRegistration) -> Dict[str, Any]:
        iv_config = self.config.input_validation
        return {
            'full_name': validate_name(registration.full_name, iv_config),
            'age': validate_age(registration.age),
            'gender': validate_gender(registration.gender),
            'nic': validate_nic(registration.nic),
            'photo_url': registration.photo_url,
            'contact_number': validate_phone(registration.contact_number, field="contact_number", required=False),
            'health_status': registration.health_status,
            'special_notes': registration.special_notes,
            'shelter_id': shelter_id,
        }

    def _register(self, shelter_id: uuid.UUID, rows: List[Dict[str, Any]], bulk: bool = False) -> List[RegisteredPerson]:
        try:
            with query_timer("register_person"):
                with self._db.session_scope() as session:
                    shelter = ShelterRepository(session).get_by_id(shelter_id)
                    if shelter is None:
                        raise RecordNotFoundError(f"Shelter not found: {shelter_id}")

                    persons = PersonRepository(session)
                    audit = AuditRepository(session)
                    registered = []
                    for row in rows:
                        person = persons.create(row)
                        audit.log(
                            action=AuditAction.REGISTER_PERSON,
                            resource_type="person",
                            resource_id=str(person.id),
                            actor=shelter.code,
                            details={"bulk": True} if bulk else None,
                        )
                        registered.append(RegisteredPerson(
                            id=person.id,
                            shelter_id=person.shelter_id,
                            full_name=person.full_name,
                            created_at=person.created_at,
                        ))
        except SQLAlchemyError as e:
            logger.error("Person registration failed: %s", type(e).__name__)
            raise DatastoreError("Person could not be registered") from e
        return registered

    def get_person(self, person_id: uuid.UUID) -> PersonDetail:
        """
        Staff view of a registered person, with the report confirmed against them.

        Raises:
            RecordNotFoundError: If the person does not exist
        """
        try:
            with self._db.session_scope() as session:
                person = PersonRepository(session).get_by_id(person_id)
                if person is None:
                    raise RecordNotFoundError(f"Person not found: {person_id}")
                linked = MatchRepository(session).linked_reports([person.id]).get(person.id, [])
                detail = PersonDetail(
                    person=PersonHit.from_row(person, linked[0] if linked else None),
                    status=SearchStatus.FOUND_AND_SHELTERED if linked else SearchStatus.SHELTERED,
                    health_status=person.health_status.value,
                    contact_number=person.contact_number,
                    special_notes=person.special_notes,
                )
        except SQLAlchemyError as e:
            logger.error("Person lookup failed: %s", type(e).__name__)
            raise DatastoreError("Person could not be loaded") from e
        return detail

    def check_duplicates(self, shelter_id: uuid.UUID, names: List[str]) -> List[str]:
        """
        Names in a batch that are already registered at the shelter.

        Names are compared after trimming and case-folding.

        Returns:
            The submitted names (as given) that are duplicates, in input order
        """
        try:
            with self._db.session_scope() as session:
                if ShelterRepository(session).get_by_id(shelter_id) is None:
                    raise RecordNotFoundError(f"Shelter not found: {shelter_id}")
                registered = PersonRepository(session).list_normalized_names(shelter_id)
        except SQLAlchemyError as e:
            logger.error("Duplicate check failed: %s", type(e).__name__)
            raise DatastoreError("Duplicate check could not be completed") from e

        return [name for name in names if normalize_name(name) and normalize_name(name) in registered]

    # ------------------------------------------------------------------
    # Missing reports
    # ------------------------------------------------------------------

    def file_report(self, form: MissingReportForm, anonymous_user_id: Optional[str] = None) -> ReportSummary:
        """
        File a missing report and assign it a poster code.

        Args:
            form: Report fields
            anonymous_user_id: Identifier of the reporter, required later to
                mark the report as found

        Raises:
            InputValidationError: If a field is invalid
            DatastoreError: If the datastore could not be written
        """
        iv_config = self.config.input_validation
        fields = {
            'full_name': validate_name(form.full_name, iv_config),
            'age': validate_age(form.age),
            'gender': validate_gender(form.gender),
            'nic': validate_nic(form.nic),
            'photo_url': form.photo_url,
            'last_seen_location': self._require_text(form.last_seen_location, "last_seen_location"),
            'last_seen_district': form.last_seen_district,
            'last_seen_date': form.last_seen_date,
            'clothing': form.clothing,
            'reporter_name': validate_name(form.reporter_name, iv_config, field="reporter_name"),
            'reporter_phone': validate_phone(form.reporter_phone),
            'alt_contact': validate_phone(form.alt_contact, field="alt_contact", required=False),
            'anonymous_user_id': anonymous_user_id,
        }

        for attempt in range(1, FILE_REPORT_ATTEMPTS + 1):
            try:
                with query_timer("file_report"):
                    with self._db.session_scope() as session:
                        report = MissingReportRepository(session).create(dict(fields))
                        AuditRepository(session).log(
                            action=AuditAction.FILE_REPORT,
                            resource_type="missing_report",
                            resource_id=str(report.id),
                            actor=anonymous_user_id,
                            details={"poster_code": report.poster_code},
                        )
                        summary = ReportSummary.from_row(report)
                break
            except IntegrityError as e:
                logger.warning("Poster code collision on commit (attempt %d/%d)", attempt, FILE_REPORT_ATTEMPTS)
                if attempt == FILE_REPORT_ATTEMPTS:
                    raise DatastoreError("Missing report could not be filed") from e
            except DuplicateEntityError as e:
                raise DatastoreError("Missing report could not be filed") from e
            except SQLAlchemyError as e:
                logger.error("Missing report filing failed: %s", type(e).__name__)
                raise DatastoreError("Missing report could not be filed") from e

        logger.info(
            "Filed missing report %s for '%s'",
            summary.poster_code, sanitize_for_logging(summary.full_name)
        )
        return summary

    def get_report_by_poster_code(self, poster_code: str) -> ReportSummary:
        """
        Look up a report by its poster code (e.g. MP04217).

        Raises:
            InputValidationError: If the code is malformed
            RecordNotFoundError: If no report has that code
        """
        code = (poster_code or "").strip().upper()
        if not POSTER_CODE_PATTERN.match(code):
            raise InputValidationError(
                f"Invalid poster code: '{sanitize_for_logging(poster_code)}'",
                field="poster_code",
                code="INVALID_POSTER_CODE",
                suggestion="Poster codes are MP followed by 5 digits, e.g. MP04217"
            )

        try:
            with self._db.session_scope() as session:
                report = MissingReportRepository(session).get_by_poster_code(code)
                summary = ReportSummary.from_row(report) if report else None
        except SQLAlchemyError as e:
            logger.error("Poster lookup failed: %s", type(e).__name__)
            raise DatastoreError("Missing report could not be loaded") from e

        if summary is None:
            raise RecordNotFoundError(f"No missing report with poster code {code}")
        return summary

    def list_open_reports(self, offset: int = 0, limit: int = 50) -> Tuple[List[ReportSummary], int]:
        """Reports still MISSING, newest first, with the total count."""
        try:
            with query_timer("list_open_reports"):
                with self._db.session_scope() as session:
                    reports, total = MissingReportRepository(session).list_open(offset=offset, limit=limit)
                    summaries = [ReportSummary.from_row(r) for r in reports]
        except SQLAlchemyError as e:
            logger.error("Listing open reports failed: %s", type(e).__name__)
            raise DatastoreError("Missing reports could not be listed") from e
        return summaries, total

    def list_reports_for_reporter(self, anonymous_user_id: Optional[str]) -> List[ReportSummary]:
        """
        Every report the anonymous reporter has filed, newest first.

        Raises:
            InputValidationError: If no reporter identifier was supplied
        """
        if not anonymous_user_id:
            raise InputValidationError(
                "Reporter identifier is required",
                field="X-Anonymous-User-Id",
                code="REPORTER_ID_REQUIRED",
                suggestion="Send the identifier used when the reports were filed"
            )

        try:
            with self._db.session_scope() as session:
                reports = MissingReportRepository(session).list_by_reporter(anonymous_user_id)
                return [ReportSummary.from_row(r) for r in reports]
        except SQLAlchemyError as e:
            logger.error("Listing reporter's reports failed: %s", type(e).__name__)
            raise DatastoreError("Missing reports could not be listed") from e

    def update_report(self, report_id: uuid.UUID, anonymous_user_id: Optional[str],
                      update: ReportUpdate) -> ReportSummary:
        """
        Edit a report on behalf of the reporter who filed it.

        Only the fields set on ``update`` change. An empty string clears an
        optional text field. The poster code never changes.

        Raises:
            InputValidationError: If a field is invalid or nothing was changed
            RecordNotFoundError: If the report does not exist
            NotReportOwnerError: If the caller did not file the report
        """
        changes = self._report_changes(update)

        try:
            with query_timer("update_report"):
                with self._db.session_scope() as session:
                    repo = MissingReportRepository(session)
                    report = self._owned_report(repo, report_id, anonymous_user_id)
                    report = repo.update(report, changes)
                    AuditRepository(session).log(
                        action=AuditAction.UPDATE_REPORT,
                        resource_type="missing_report",
                        resource_id=str(report.id),
                        actor=anonymous_user_id,
                        details={"fields": sorted(changes)},
                    )
                    summary = ReportSummary.from_row(report)
        except SQLAlchemyError as e:
            logger.error("Updating report failed: %s", type(e).__name__)
            raise DatastoreError("Missing report could not be updated") from e

        logger.info("Report %s edited by its reporter (%s)", summary.poster_code, ", ".join(sorted(changes)))
        return summary

    def _report_changes(self, update: ReportUpdate) -> Dict[str, Any]:
        iv_config = self.config.input_validation
        changes: Dict[str, Any] = {}

        if update.full_name is not None:
            changes['full_name'] = validate_name(update.full_name, iv_config)
        if update.age is not None:
            changes['age'] = validate_age(update.age)
        if update.gender is not None:
            changes['gender'] = validate_gender(update.gender)
        if update.nic is not None:
            changes['nic'] = validate_nic(update.nic)
        if update.last_seen_location is not None:
            changes['last_seen_location'] = self._require_text(update.last_seen_location, "last_seen_location")
        if update.last_seen_district is not None:
            changes['last_seen_district'] = update.last_seen_district
        if update.last_seen_date is not None:
            changes['last_seen_date'] = update.last_seen_date
        if update.reporter_name is not None:
            changes['reporter_name'] = validate_name(update.reporter_name, iv_config, field="reporter_name")
        if update.reporter_phone is not None:
            changes['reporter_phone'] = validate_phone(update.reporter_phone)
        if update.alt_contact is not None:
            changes['alt_contact'] = validate_phone(update.alt_contact, field="alt_contact", required=False)
        for name in ('photo_url', 'clothing'):
            value = getattr(update, name)
            if value is not None:
                changes[name] = value.strip() or None

        if not changes:
            raise InputValidationError(
                "No changes supplied",
                field="body",
                code="NO_CHANGES",
                suggestion="Provide at least one field to update"
            )
        return changes

    @staticmethod
    def _owned_report(repo: MissingReportRepository, report_id: uuid.UUID, anonymous_user_id: Optional[str]):
        report = repo.get_by_id(report_id)
        if report is None:
            raise RecordNotFoundError(f"Missing report not found: {report_id}")
        if not anonymous_user_id or report.anonymous_user_id != anonymous_user_id:
            raise NotReportOwnerError("Only the reporter can change this report")
        return report

    def mark_report_found(self, report_id: uuid.UUID, anonymous_user_id: Optional[str]) -> ReportSummary:
        """
        Mark a report as found on behalf of the reporter who filed it.

        Raises:
            RecordNotFoundError: If the report does not exist
            NotReportOwnerError: If the caller did not file the report
            DatastoreError: If the datastore could not be written
        """
        try:
            with self._db.session_scope() as session:
                repo = MissingReportRepository(session)
                self._owned_report(repo, report_id, anonymous_user_id)
                report = repo.mark_found(report_id, found_at=datetime.now(timezone.utc))
                AuditRepository(session).log(
                    action=AuditAction.MARK_FOUND,
                    resource_type="missing_report",
                    resource_id=str(report.id),
                    actor=anonymous_user_id,
                )
                summary = ReportSummary.from_row(report)
        except SQLAlchemyError as e:
            logger.error("Marking report found failed: %s", type(e).__name__)
            raise DatastoreError("Missing report could not be updated") from e

        logger.info("Report %s marked found by its reporter", summary.poster_code)
        return summary

    @staticmethod
    def _require_text(value: Optional[str], field: str) -> str:
        stripped = (value or "").strip()
        if not stripped:
            raise InputValidationError(
                f"{field} is required",
                field=field,
                code="FIELD_REQUIRED",
                suggestion=f"Provide a value for {field}"
            )
        return stripped
