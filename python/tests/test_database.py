"""
Unit tests for database models, connection settings and monitoring.

Uses an in-memory SQLite database for fast testing.
"""

import logging
import re
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from database.connection import DatabaseSessionProvider, DatabaseSettings
from database.models import (
    AuditAction,
    Gender,
    MissingStatus,
    normalize_name,
    normalize_nic,
    generate_poster_code
)
from database.repositories import MissingReportRepository
from database.monitoring import (
    check_health,
    configure_monitoring,
    get_db_metrics,
    query_timer,
    reset_metrics
)
from config_manager import MonitoringConfig


class TestNormalizationFunctions:
    """Tests for name and NIC normalization functions."""

    def test_normalize_name_basic(self):
        assert normalize_name("Nimal Perera") == "nimal perera"
        assert normalize_name("  Nimal   Perera  ") == "nimal perera"

    def test_normalize_name_keeps_marks(self):
        """Vowel signs are part of Sinhala spelling and must survive."""
        assert normalize_name("සුනිල්") == "සුනිල්"
        assert normalize_name("José") == "josé"

    def test_normalize_name_empty(self):
        assert normalize_name("") == ""
        assert normalize_name(None) == ""

    def test_normalize_nic(self):
        assert normalize_nic(" 123456789v ") == "123456789V"
        assert normalize_nic(None) == ""

    def test_poster_code_format(self):
        for _ in range(50):
            assert re.fullmatch(r"MP\d{5}", generate_poster_code())


class TestEnums:
    def test_string_values(self):
        assert Gender("MALE") is Gender.MALE
        assert MissingStatus.FOUND.value == "FOUND"
        assert AuditAction.CONFIRM_MATCH == "CONFIRM_MATCH"


class TestDatabaseSettings:
    def test_default_url_is_postgres(self):
        settings = DatabaseSettings(host="db", port=5433, database="relief", user="u", password="p")
        assert settings.get_url() == "postgresql+psycopg2://u:p@db:5433/relief"
        assert settings.pool_options()["pool_pre_ping"] is True

    def test_explicit_url_wins(self):
        settings = DatabaseSettings(url="sqlite://")
        assert settings.get_url() == "sqlite://"
        assert settings.pool_options() == {}

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///relief.db")
        monkeypatch.setenv("DB_POOL_SIZE", "9")
        monkeypatch.setenv("DB_ECHO", "TRUE")

        settings = DatabaseSettings.from_env()

        assert settings.get_url() == "sqlite:///relief.db"
        assert settings.pool_size == 9
        assert settings.echo is True


class TestSessionProvider:
    def test_session_scope_rolls_back(self, db_provider):
        with pytest.raises(RuntimeError):
            with db_provider.session_scope() as session:
                MissingReportRepository(session).create({
                    'full_name': 'Nimal Perera',
                    'age': 34,
                    'gender': Gender.MALE,
                    'last_seen_location': 'Kaduwela',
                    'reporter_name': 'Kamala',
                    'reporter_phone': '0771234567',
                })
                raise RuntimeError("abort")

        with db_provider.session_scope() as session:
            assert MissingReportRepository(session).list_open()[1] == 0

    def test_lazy_init(self, engine):
        provider = DatabaseSessionProvider(settings=DatabaseSettings(url="sqlite://"), engine=engine)
        with provider.session_scope():
            pass
        assert provider.engine is engine

    def test_reinit_after_close_builds_fresh_engine(self):
        provider = DatabaseSessionProvider(settings=DatabaseSettings(url="sqlite://"))
        provider.init()
        first = provider.engine

        provider.close()
        assert provider.initialized is False

        provider.init()
        try:
            assert provider.engine is not first
        finally:
            provider.close()

    def test_injected_engine_kept_and_listeners_not_duplicated(self, engine):
        provider = DatabaseSessionProvider(settings=DatabaseSettings(url="sqlite://"), engine=engine)

        with patch.object(event, "listen", wraps=event.listen) as listen:
            provider.init()
            provider.close()
            provider.init()

        assert provider.engine is engine
        # one connect and one checkout listener
        assert listen.call_count == 2


@pytest.fixture
def clean_metrics():
    reset_metrics()
    configure_monitoring()
    yield
    reset_metrics()
    configure_monitoring()


@pytest.mark.usefixtures("clean_metrics")
class TestMonitoring:
    def test_records_operation(self):
        with query_timer("search_by_name"):
            pass

        stats = get_db_metrics("search_by_name")
        assert stats["count"] == 1
        assert stats["errors"] == 0

    def test_records_errors_and_reraises(self):
        with pytest.raises(ValueError):
            with query_timer("find_matches"):
                raise ValueError("boom")

        assert get_db_metrics("find_matches")["errors"] == 1

    def test_slow_query_logged(self, caplog):
        configure_monitoring(MonitoringConfig(slow_query_threshold_ms=-1, warning_threshold_ms=-1))

        with caplog.at_level(logging.WARNING, logger="database.monitoring"):
            with query_timer("confirm_match"):
                pass

        assert "SLOW QUERY: confirm_match" in caplog.text
        assert get_db_metrics("confirm_match")["slow_queries"] == 1

    def test_unknown_operation(self):
        assert get_db_metrics("never_run") == {}

    def test_check_health(self, db_provider):
        health = check_health(db_provider)
        assert health.healthy is True
        assert health.error is None
        assert health.to_dict()["latency_ms"] >= 0

    def test_check_health_failure(self):
        provider = MagicMock()
        provider.session_scope.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

        health = check_health(provider)

        assert health.healthy is False
        assert health.error == "OperationalError"
