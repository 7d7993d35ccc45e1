"""
Error taxonomy for the matching core.

Raw SQLAlchemy exceptions are translated into these types at the component
boundary and never escape the public operations.
"""

from validators import InputValidationError


class MatchingError(Exception):
    """Base exception for matching-core errors."""
    pass


class DatastoreError(MatchingError):
    """Raised when the datastore cannot be reached or a query fails."""
    pass


class SearchFailedError(DatastoreError):
    """Raised when a public search could not be completed.

    Distinct from an empty result list, which means "no matches".
    """
    pass


class ConflictError(MatchingError):
    """Raised when a person/report pair has already been confirmed."""
    pass


class RecordNotFoundError(MatchingError):
    """Raised when a referenced person, report or shelter does not exist."""
    pass


__all__ = [
    'MatchingError',
    'InputValidationError',
    'DatastoreError',
    'SearchFailedError',
    'ConflictError',
    'RecordNotFoundError',
]
