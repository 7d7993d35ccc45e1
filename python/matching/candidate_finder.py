"""
Match Candidate Finder

Given a newly registered person, proposes open missing-person reports that
may describe the same individual, for shelter staff to confirm by hand.

Scoring:
- NIC equality (both present, case-insensitive) ranks a report ahead of
  every other candidate with an overall score of 100
- Otherwise a weighted composite of name similarity, age proximity and
  gender equality, scaled to 0-100
- Reports whose name similarity is under the configured floor are skipped
  unless the NIC matched

The finder is read-only. Datastore failures are logged and yield an empty
list, so registration never fails because matching could not run.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config_manager import ConfigManager, get_config
from database.models import MissingReport, normalize_nic
from database.monitoring import query_timer
from database.repositories import MissingReportRepository
from matching.models import ConfidenceBreakdown, PersonCandidate, PotentialMatch
from matching.similarity import name_similarity
from text_utils import sanitize_for_logging
from validators import validate_age, validate_gender, validate_name, validate_nic

logger = logging.getLogger(__name__)


class MatchCandidateFinder:
    """Scores open missing reports against a registration candidate."""

    def __init__(self, db_provider, config: Optional[ConfigManager] = None):
        """
        Args:
            db_provider: DatabaseSessionProvider used for each lookup
            config: Configuration manager (loaded from config.yaml if omitted)
        """
        self._db = db_provider
        self.config = config or get_config()
        self._matching = self.config.matching

    def validate_candidate(self, candidate: PersonCandidate) -> PersonCandidate:
        """Validate a candidate and return a cleaned copy.

        Raises:
            InputValidationError: If any attribute is invalid
        """
        return PersonCandidate(
            full_name=validate_name(candidate.full_name, self.config.input_validation),
            age=validate_age(candidate.age),
            gender=validate_gender(candidate.gender),
            nic=validate_nic(candidate.nic),
        )

    def find_matches(self, candidate: PersonCandidate) -> List[PotentialMatch]:
        """
        Find open missing reports that may describe the candidate.

        Args:
            candidate: Attributes of the registered person

        Returns:
            At most max_candidates matches: NIC matches first, then by
            overall score descending, ties broken by most recent report

        Raises:
            InputValidationError: If the candidate is invalid
        """
        candidate = self.validate_candidate(candidate)

        try:
            with query_timer("find_matches"):
                with self._db.session_scope() as session:
                    reports, _ = MissingReportRepository(session).list_open(limit=None)
                    matches = []
                    for report in reports:
                        match = self._evaluate(candidate, report)
                        if match is not None:
                            matches.append(match)
        except SQLAlchemyError as e:
            logger.error(
                "Candidate lookup failed for '%s': %s",
                sanitize_for_logging(candidate.full_name), type(e).__name__
            )
            return []

        # Reports arrive newest first; the sort is stable so recency breaks ties
        matches.sort(key=lambda m: (m.confidence.nic_match, m.confidence.overall), reverse=True)
        matches = matches[:self._matching.max_candidates]

        logger.info(
            "Found %d candidate(s) for '%s'",
            len(matches), sanitize_for_logging(candidate.full_name)
        )
        return matches

    def _evaluate(self, candidate: PersonCandidate, report: MissingReport) -> Optional[PotentialMatch]:
        """Score one report; None if it is not a plausible match."""
        reasons: List[str] = []

        nic_match = bool(
            candidate.nic and report.nic
            and normalize_nic(candidate.nic) == normalize_nic(report.nic)
        )
        if nic_match:
            reasons.append("NIC matches exactly")

        name_score = name_similarity(candidate.full_name, report.full_name)
        if name_score < self._matching.name_similarity_floor and not nic_match:
            return None
        if name_score >= self._matching.name_similarity_floor:
            reasons.append(f"Name similarity: {round(name_score * 100)}%")

        age_diff = abs(candidate.age - report.age)
        age_score = self.age_score(age_diff)
        if age_diff == 0:
            reasons.append("Age matches exactly")
        elif age_diff <= self._matching.age_tolerance_years:
            reasons.append(f"Age within {age_diff} year(s)")

        gender_score = 1.0 if candidate.gender == report.gender else 0.0
        if gender_score:
            reasons.append("Gender matches")

        weights = self._matching.weights
        composite = 100.0 * (
            weights['name'] * name_score
            + weights['age'] * age_score
            + weights['gender'] * gender_score
        )
        overall = 100.0 if nic_match else composite

        if overall < self._matching.min_relevance_score:
            return None

        return PotentialMatch(
            missing_report_id=report.id,
            poster_code=report.poster_code,
            full_name=report.full_name,
            age=report.age,
            gender=report.gender,
            last_seen_location=report.last_seen_location,
            reporter_name=report.reporter_name,
            reporter_phone=report.reporter_phone,
            created_at=report.created_at,
            confidence=ConfidenceBreakdown(
                overall=overall,
                name_score=name_score * 100,
                age_score=age_score * 100,
                gender_score=gender_score * 100,
                nic_match=nic_match,
            ),
            reasons=reasons,
            photo_url=report.photo_url,
            last_seen_district=report.last_seen_district.value if report.last_seen_district else None,
            last_seen_date=report.last_seen_date,
        )

    def age_score(self, age_diff: int) -> float:
        """Full credit within the tolerance band, then linear decay to zero."""
        tolerance = self._matching.age_tolerance_years
        if age_diff <= tolerance:
            return 1.0
        return max(0.0, 1.0 - (age_diff - tolerance) / self._matching.age_decay_years)
