"""
Match Confirmation Recorder

Records a staff-confirmed pairing of a sheltered person with a missing
report. In the same transaction the report moves to FOUND and an audit
entry is written. A pair can only be confirmed once: repeats raise
ConflictError and leave exactly one Match row.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database.models import AuditAction
from database.monitoring import query_timer
from database.repositories import (
    AuditRepository,
    MatchRepository,
    MissingReportRepository,
    PersonRepository,
)
from matching.errors import ConflictError, DatastoreError, RecordNotFoundError
from matching.models import ConfirmedMatch
from validators import validate_confidence

logger = logging.getLogger(__name__)


class MatchConfirmationRecorder:
    """Persists confirmed matches."""

    def __init__(self, db_provider):
        self._db = db_provider

    def confirm(
        self,
        person_id: UUID,
        missing_report_id: UUID,
        confidence: float,
        confirmed_by: Optional[str] = None
    ) -> ConfirmedMatch:
        """
        Confirm that a person and a missing report are the same individual.

        Args:
            person_id: Registered person
            missing_report_id: Missing report being resolved
            confidence: Match confidence shown to staff (0-100)
            confirmed_by: Staff member or shelter code, for the audit trail

        Returns:
            Snapshot of the recorded match

        Raises:
            InputValidationError: If confidence is out of range
            RecordNotFoundError: If the person or report does not exist
            ConflictError: If the pair has already been confirmed
            DatastoreError: If the datastore could not be written
        """
        confidence = validate_confidence(confidence)

        try:
            with query_timer("confirm_match"):
                with self._db.session_scope() as session:
                    person = PersonRepository(session).get_by_id(person_id)
                    if person is None:
                        raise RecordNotFoundError(f"Person not found: {person_id}")

                    report_repo = MissingReportRepository(session)
                    report = report_repo.get_by_id(missing_report_id)
                    if report is None:
                        raise RecordNotFoundError(f"Missing report not found: {missing_report_id}")

                    match_repo = MatchRepository(session)
                    if match_repo.exists(person_id, missing_report_id):
                        raise ConflictError(
                            f"Person {person_id} is already matched to report {missing_report_id}"
                        )

                    match = match_repo.create(person_id, missing_report_id, confidence, confirmed_by)
                    report = report_repo.mark_found(missing_report_id, found_at=datetime.now(timezone.utc))

                    AuditRepository(session).log(
                        action=AuditAction.CONFIRM_MATCH,
                        resource_type="match",
                        resource_id=str(match.id),
                        actor=confirmed_by,
                        details={
                            "person_id": str(person_id),
                            "missing_report_id": str(missing_report_id),
                            "poster_code": report.poster_code,
                            "confidence": confidence,
                        }
                    )

                    snapshot = ConfirmedMatch(
                        id=match.id,
                        person_id=match.person_id,
                        missing_report_id=match.missing_report_id,
                        confidence=match.confidence,
                        confirmed_at=match.confirmed_at,
                        report_status=report.status,
                        confirmed_by=match.confirmed_by,
                    )
        except IntegrityError as e:
            # A concurrent confirmation won the race on the unique constraint
            logger.warning(
                "Duplicate match rejected by datastore: person=%s report=%s",
                person_id, missing_report_id
            )
            raise ConflictError(
                f"Person {person_id} is already matched to report {missing_report_id}"
            ) from e
        except SQLAlchemyError as e:
            logger.error("Failed to record match: %s", type(e).__name__)
            raise DatastoreError("Match could not be recorded") from e

        logger.info(
            "Match confirmed: person=%s report=%s confidence=%.1f",
            person_id, missing_report_id, confidence
        )
        return snapshot
