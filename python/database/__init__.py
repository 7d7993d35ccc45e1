"""
Database Package for the Shelter Matching Service

This package provides:
- SQLAlchemy ORM models for shelters, persons, missing reports and matches
- An injectable session provider with transactional session scopes
- Repository pattern for data access
- Query timing and datastore health checks
"""

from database.models import (
    Base,
    Shelter,
    Person,
    MissingReport,
    Match,
    AuditLog,
    Gender,
    HealthStatus,
    MissingStatus,
    District,
    AuditAction,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    create_test_provider,
)
from database.monitoring import (
    query_timer,
    get_db_metrics,
    reset_metrics,
    configure_monitoring,
    check_health,
    DatastoreHealth,
)

__all__ = [
    # Base
    'Base',
    # Models
    'Shelter',
    'Person',
    'MissingReport',
    'Match',
    'AuditLog',
    # Enums
    'Gender',
    'HealthStatus',
    'MissingStatus',
    'District',
    'AuditAction',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    # Testing support
    'create_test_provider',
    # Monitoring
    'query_timer',
    'get_db_metrics',
    'reset_metrics',
    'configure_monitoring',
    'check_health',
    'DatastoreHealth',
]
