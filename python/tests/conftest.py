"""
Shared fixtures: an in-memory SQLite datastore injected through
create_test_provider, plus factories for shelters, persons and reports.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import create_test_provider
from database.models import District, Gender, MissingStatus
from database.repositories import MissingReportRepository, PersonRepository, ShelterRepository

CONFIG_FILE = Path(__file__).parent.parent / "config.yaml"

# Fixed reference point so tests can order rows explicitly
BASE_TIME = datetime(2025, 11, 30, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    """Provider over a fresh in-memory schema."""
    provider = create_test_provider(engine=engine)
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def config():
    return ConfigManager(str(CONFIG_FILE))


@pytest.fixture
def shelter_id(db_provider):
    with db_provider.session_scope() as session:
        shelter = ShelterRepository(session).create({
            'name': 'Kelaniya Temple Relief Centre',
            'code': 'GAM-001',
            'district': District.GAMPAHA,
            'contact_number': '0112911234',
        })
        return shelter.id


@pytest.fixture
def make_report(db_provider):
    """Factory inserting a missing report; minutes_ago orders created_at."""
    def _make(full_name="Nimal Perera", age=34, gender=Gender.MALE, nic=None,
              status=MissingStatus.MISSING, minutes_ago=0, **extra):
        data = {
            'full_name': full_name,
            'age': age,
            'gender': gender,
            'nic': nic,
            'status': status,
            'last_seen_location': 'Kaduwela bridge',
            'reporter_name': 'Kamala Perera',
            'reporter_phone': '0771234567',
            'created_at': BASE_TIME - timedelta(minutes=minutes_ago),
        }
        data.update(extra)
        with db_provider.session_scope() as session:
            report = MissingReportRepository(session).create(data)
            return report.id
    return _make


@pytest.fixture
def make_person(db_provider, shelter_id):
    """Factory registering a person at the test shelter."""
    def _make(full_name="Nimal Perera", age=34, gender=Gender.MALE, nic=None, minutes_ago=0, **extra):
        data = {
            'full_name': full_name,
            'age': age,
            'gender': gender,
            'nic': nic,
            'shelter_id': shelter_id,
            'created_at': BASE_TIME - timedelta(minutes=minutes_ago),
        }
        data.update(extra)
        with db_provider.session_scope() as session:
            person = PersonRepository(session).create(data)
            return person.id
    return _make
