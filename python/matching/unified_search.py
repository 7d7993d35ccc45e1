"""
Unified Search Engine

Public search across both datasets: persons registered at shelters and
missing-person reports. Each result is tagged with its kind and a unified
status:

    Person without a confirmed match  -> SHELTERED
    Person with a confirmed match     -> FOUND_AND_SHELTERED
    Report in MISSING status          -> MISSING
    Report in FOUND status            -> FOUND

A report confirmed against a returned person, or sharing that person's NIC,
is folded into the person's result instead of being listed separately.

Name results put exact full-name matches first, then order by creation time,
newest first. A datastore failure raises SearchFailedError; an empty list
always means "no matches".
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from config_manager import ConfigManager, get_config
from database.models import MissingReport, MissingStatus, Person, normalize_name
from database.monitoring import query_timer
from database.repositories import MatchRepository, MissingReportRepository, PersonRepository
from matching.errors import InputValidationError, SearchFailedError
from matching.models import (
    MissingReportHit,
    PersonHit,
    ReportSummary,
    SearchStatus,
    UnifiedResult,
)
from matching.similarity import name_similarity
from text_utils import sanitize_for_logging
from validators import validate_nic, validate_search_query

logger = logging.getLogger(__name__)


class SearchType(str, Enum):
    NAME = "name"
    NIC = "nic"


def _recency_key(result: UnifiedResult) -> datetime:
    created = result.created_at
    # SQLite hands back naive timestamps
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


class UnifiedSearchEngine:
    """Searches sheltered persons and missing reports in one call."""

    def __init__(self, db_provider, config: Optional[ConfigManager] = None):
        """
        Args:
            db_provider: DatabaseSessionProvider used for each search
            config: Configuration manager (loaded from config.yaml if omitted)
        """
        self._db = db_provider
        self.config = config or get_config()
        self._search = self.config.search

    def search(self, search_type, query: Optional[str] = None, nic: Optional[str] = None) -> List[UnifiedResult]:
        """
        Dispatch to name or NIC search.

        Args:
            search_type: "name" or "nic"
            query: Name fragment (name search); NIC if nic is omitted
            nic: NIC number (NIC search)

        Raises:
            InputValidationError: Unknown search type or invalid input
            SearchFailedError: If the datastore could not be queried
        """
        try:
            kind = SearchType(str(getattr(search_type, 'value', search_type)).lower())
        except ValueError:
            raise InputValidationError(
                f"Unknown search type: '{sanitize_for_logging(str(search_type))}'",
                field="type",
                code="INVALID_SEARCH_TYPE",
                suggestion="Use 'name' or 'nic'"
            )

        if kind is SearchType.NIC:
            return self.search_by_nic(nic if nic is not None else query)
        return self.search_by_name(query)

    def search_by_name(self, query: Optional[str]) -> List[UnifiedResult]:
        """
        Case-insensitive substring search on full names.

        Args:
            query: Name fragment, at least min_query_length characters after trimming

        Returns:
            Up to name_result_limit results, exact full-name matches first,
            then newest first

        Raises:
            InputValidationError: If the query is too short
            SearchFailedError: If the datastore could not be queried
        """
        query = validate_search_query(query, self._search.min_query_length)
        fetch_limit = self._search.candidate_fetch_limit

        try:
            with query_timer("search_by_name"):
                with self._db.session_scope() as session:
                    persons = PersonRepository(session).search_by_name(query, fetch_limit)
                    reports = MissingReportRepository(session).search_by_name(query, fetch_limit)
                    results = self._merge(session, persons, reports, query)
        except SQLAlchemyError as e:
            logger.error(
                "Name search failed for '%s': %s",
                sanitize_for_logging(query), type(e).__name__
            )
            raise SearchFailedError("Name search could not be completed") from e

        results.sort(key=_recency_key, reverse=True)
        results.sort(key=lambda r: r.exact_name_match, reverse=True)
        results = results[:self._search.name_result_limit]

        logger.info(
            "Name search '%s': %d result(s) from %d person(s), %d report(s)",
            sanitize_for_logging(query), len(results), len(persons), len(reports)
        )
        return results

    def search_by_nic(self, nic: Optional[str]) -> List[UnifiedResult]:
        """
        Exact, case-insensitive NIC search.

        Args:
            nic: NIC in either format (9 digits + V/X, or 12 digits)

        Returns:
            Up to nic_result_limit results, newest first

        Raises:
            InputValidationError: If the NIC is malformed
            SearchFailedError: If the datastore could not be queried
        """
        canonical = validate_nic(nic, required=True)
        limit = self._search.nic_result_limit

        try:
            with query_timer("search_by_nic"):
                with self._db.session_scope() as session:
                    persons = PersonRepository(session).search_by_nic(canonical, limit)
                    reports = MissingReportRepository(session).search_by_nic(canonical, limit)
                    results = self._merge(session, persons, reports)
        except SQLAlchemyError as e:
            # NICs are personal data; only the outcome is logged
            logger.error("NIC search failed: %s", type(e).__name__)
            raise SearchFailedError("NIC search could not be completed") from e

        results.sort(key=_recency_key, reverse=True)
        results = results[:limit]

        logger.info("NIC search: %d result(s)", len(results))
        return results

    def _merge(
        self,
        session,
        persons: List[Person],
        reports: List[MissingReport],
        query: Optional[str] = None
    ) -> List[UnifiedResult]:
        """Build tagged results, folding linked reports into their persons."""
        confirmed = MatchRepository(session).linked_reports([p.id for p in persons])
        reports_by_nic: Dict[str, MissingReport] = {}
        for report in reports:
            if report.nic and report.nic not in reports_by_nic:
                reports_by_nic[report.nic] = report

        normalized_query = normalize_name(query) if query else None
        used_report_ids: Set = set()
        results: List[UnifiedResult] = []

        for person in persons:
            linked = confirmed.get(person.id, [])
            linked_report = linked[0] if linked else None
            if linked_report is None and person.nic:
                linked_report = reports_by_nic.get(person.nic)
            if linked_report is not None:
                used_report_ids.add(linked_report.id)

            # Matches against soft-deleted reports do not count
            status = SearchStatus.FOUND_AND_SHELTERED if linked else SearchStatus.SHELTERED
            results.append(self._build(
                status, PersonHit.from_row(person, linked_report), person.full_name, normalized_query
            ))

        for report in reports:
            if report.id in used_report_ids:
                continue
            status = SearchStatus.FOUND if report.status == MissingStatus.FOUND else SearchStatus.MISSING
            results.append(self._build(
                status, MissingReportHit(report=ReportSummary.from_row(report)),
                report.full_name, normalized_query
            ))

        return results

    @staticmethod
    def _build(status, payload, full_name: str, normalized_query: Optional[str]) -> UnifiedResult:
        if normalized_query is None:
            # NIC hits are exact by definition
            return UnifiedResult(status=status, payload=payload, similarity_score=1.0)
        return UnifiedResult(
            status=status,
            payload=payload,
            similarity_score=name_similarity(normalized_query, full_name),
            exact_name_match=normalize_name(full_name) == normalized_query,
        )
