"""
Matching Package for the Shelter Matching Service

This package provides:
- Name similarity scoring
- Match candidate finding for newly registered persons
- Unified search across sheltered persons and missing reports
- Recording of staff-confirmed matches
- Registration of persons and filing of missing reports
"""

from matching.errors import (
    MatchingError,
    InputValidationError,
    DatastoreError,
    SearchFailedError,
    ConflictError,
    RecordNotFoundError,
)
from matching.models import (
    PersonCandidate,
    ConfidenceBreakdown,
    PotentialMatch,
    SearchStatus,
    ResultKind,
    PersonHit,
    MissingReportHit,
    ReportSummary,
    UnifiedResult,
    ConfirmedMatch,
)
from matching.similarity import name_similarity
from matching.candidate_finder import MatchCandidateFinder
from matching.unified_search import UnifiedSearchEngine, SearchType
from matching.confirmation import MatchConfirmationRecorder
from matching.registry import (
    RegistryService,
    PersonRegistration,
    MissingReportForm,
    RegisteredPerson,
    NotReportOwnerError,
)

__all__ = [
    # Errors
    'MatchingError',
    'InputValidationError',
    'DatastoreError',
    'SearchFailedError',
    'ConflictError',
    'RecordNotFoundError',
    # Value objects
    'PersonCandidate',
    'ConfidenceBreakdown',
    'PotentialMatch',
    'SearchStatus',
    'ResultKind',
    'PersonHit',
    'MissingReportHit',
    'ReportSummary',
    'UnifiedResult',
    'ConfirmedMatch',
    # Components
    'name_similarity',
    'MatchCandidateFinder',
    'UnifiedSearchEngine',
    'SearchType',
    'MatchConfirmationRecorder',
    'RegistryService',
    'PersonRegistration',
    'MissingReportForm',
    'RegisteredPerson',
    'NotReportOwnerError',
]
