"""
Shared fixtures: a temp-file SQLite database per test, seeded users, and the
issuance services wired to it.
"""

import sys
from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import OfficeDefaultsConfig
from database.connection import DatabaseSettings, create_test_provider
from database.models import UserRole
from database.repositories import UserRepository
from issuance.audit_service import AuditService
from issuance.config_service import ConfigService
from issuance.document_service import DocumentService
from issuance.inputs import DocumentInput, ItemInput, ResidentInput
from security_logger import reset_security_logger

# 10:00 in Jakarta, 15 October 2025
ISSUE_TIME = datetime(2025, 10, 15, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_provider(tmp_path):
    """Provider bound to a fresh SQLite file with all tables created."""
    url = f"sqlite:///{tmp_path / 'registry.db'}"
    engine = create_engine(url, connect_args={"check_same_thread": False})
    provider = create_test_provider(engine=engine, settings=DatabaseSettings(url=url))
    provider.init()
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def users(db_provider):
    """One administrator, two operators and a reporting officer; returns their ids."""
    accounts = {
        "admin": {"full_name": "Admin Satu", "registration_number": "80010001",
                  "role": UserRole.SUPER_ADMIN},
        "operator_a": {"full_name": "Operator A", "registration_number": "90010001",
                       "role": UserRole.OPERATOR},
        "operator_b": {"full_name": "Operator B", "registration_number": "90010002",
                       "role": UserRole.OPERATOR},
        "officer": {"full_name": "Petugas Pelapor", "registration_number": "85010001",
                    "role": UserRole.OPERATOR, "rank": "AIPTU"},
    }
    ids = {}
    with db_provider.session_scope() as session:
        repo = UserRepository(session)
        for key, data in accounts.items():
            ids[key] = repo.create(data).id
    return ids


@pytest.fixture
def office_defaults():
    return OfficeDefaultsConfig(
        number_format="SKH/%d/%s/TUK.7.2.1/%d",
        last_number=0,
        archive_duration_days=30,
        timezone="Asia/Jakarta",
    )


@pytest.fixture
def audit_service(db_provider):
    return AuditService(db_provider)


@pytest.fixture
def config_service(db_provider, office_defaults, audit_service):
    return ConfigService(db_provider, defaults=office_defaults, ttl_seconds=0,
                         audit_service=audit_service)


@pytest.fixture
def document_service(db_provider, config_service, audit_service):
    return DocumentService(db_provider, config_service, audit_service,
                           max_attempts=3, retry_wait_seconds=0)


@pytest.fixture(autouse=True)
def fresh_security_logger():
    reset_security_logger()
    yield
    reset_security_logger()


def make_input(officer_id, full_name="Siti Aminah", birth_date=date(1990, 5, 17),
               items=("KTP",), **overrides):
    """Build a valid DocumentInput."""
    data = DocumentInput(
        resident=ResidentInput(
            full_name=full_name,
            birth_date=birth_date,
            place_of_birth="Jakarta",
            gender="Perempuan",
            occupation="Pedagang",
            address="Jl. Merdeka No. 1",
        ),
        items=[ItemInput(item_name=name, description=f"{name} hilang") for name in items],
        reporting_officer_id=officer_id,
        loss_location="Pasar Baru",
    )
    for key, value in overrides.items():
        setattr(data, key, value)
    return data


@pytest.fixture
def document_input(users):
    """Factory for valid inputs reported by the seeded officer."""
    def factory(**kwargs):
        return make_input(users["officer"], **kwargs)
    return factory
