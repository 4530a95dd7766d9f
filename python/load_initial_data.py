#!/usr/bin/env python3
"""
First-Run Setup Script for the Lost Document Registry

Prepares an empty database:
- Creates all tables
- Writes the office configuration defaults from config.yaml
- Creates the first administrator account
- Sample operator accounts (optional, for development)

Refuses to run twice: once setup is complete, settings are changed through
the API and users through the user tooling.

Usage:
    python load_initial_data.py --admin-name "Budi Santoso" --admin-nrp 80010001 [--with-samples]
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import List, Optional

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from config_manager import get_config, setup_logging
from database.connection import DatabaseSessionProvider, init_db, close_db
from database.models import AuditAction, User, UserRole
from database.repositories import UserRepository
from issuance.audit_service import AuditService
from issuance.config_service import ConfigService
from issuance.errors import ValidationError

logger = logging.getLogger(__name__)

SAMPLE_OPERATORS = [
    {"full_name": "Operator Piket I", "registration_number": "90010001", "rank": "BRIPDA", "team": "I"},
    {"full_name": "Operator Piket II", "registration_number": "90010002", "rank": "BRIPDA", "team": "II"},
    {"full_name": "Operator Piket III", "registration_number": "90010003", "rank": "BRIPDA", "team": "III"},
]


class SetupAlreadyCompleteError(Exception):
    """Raised when first-run setup is attempted on a configured registry."""


def load_sample_operators(session) -> int:
    """Create the sample operator accounts that do not exist yet."""
    repo = UserRepository(session)
    created = 0
    for operator in SAMPLE_OPERATORS:
        if repo.get_by_registration_number(operator["registration_number"]) is None:
            repo.create({**operator, "role": UserRole.OPERATOR, "position": "Operator"})
            created += 1
    return created


def run_setup(
    db: DatabaseSessionProvider,
    admin_name: str,
    admin_registration_number: str,
    admin_rank: Optional[str] = None,
    with_samples: bool = False
) -> User:
    """
    Perform first-run setup.

    Args:
        db: Initialized database provider
        admin_name: Full name of the first administrator
        admin_registration_number: Personnel registration number (NRP)
        admin_rank: Rank printed on documents
        with_samples: Also create sample operator accounts

    Returns:
        The administrator account

    Raises:
        SetupAlreadyCompleteError: If the registry was already set up
        ValidationError: If the administrator fields are blank
    """
    if not admin_name.strip() or not admin_registration_number.strip():
        raise ValidationError("Administrator name and registration number are required",
                              field="admin", code="REQUIRED")

    db.create_tables()
    audit = AuditService(db)
    config_service = ConfigService(db, audit_service=audit, ttl_seconds=0)
    if config_service.load_config().setup_complete:
        raise SetupAlreadyCompleteError("Setup has already been completed")

    with db.session_scope() as session:
        admin = UserRepository(session).create({
            "full_name": admin_name.strip(),
            "registration_number": admin_registration_number.strip(),
            "rank": admin_rank,
            "role": UserRole.SUPER_ADMIN,
            "position": UserRole.SUPER_ADMIN.value,
        })
        samples = load_sample_operators(session) if with_samples else 0

    office = config_service.initialize_defaults(mark_setup_complete=True)

    audit.record(AuditAction.USER_CREATED, admin.id,
                 f"Created administrator {admin.registration_number}",
                 resource_type="user", resource_id=admin.id)
    audit.record(AuditAction.SYSTEM_SETUP, admin.id,
                 f"Initial setup for {office.office_name or 'office'}",
                 resource_type="settings", extra={"sample_operators": samples})

    logger.info("Administrator created: id=%s nrp=%s", admin.id, admin.registration_number)
    if with_samples:
        logger.info("Sample operators created: %d", samples)
    return admin


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="First-run setup for the lost document registry")
    parser.add_argument("--admin-name", required=True, help="Full name of the first administrator")
    parser.add_argument("--admin-nrp", required=True, help="Administrator registration number")
    parser.add_argument("--admin-rank", default=None, help="Administrator rank")
    parser.add_argument("--with-samples", action="store_true", help="Include sample operators for development")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    config = get_config()
    setup_logging(config)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=" * 50)
    logger.info("Lost Document Registry Setup")
    logger.info("=" * 50)

    try:
        db = init_db(echo=config.database.echo)
        run_setup(db, args.admin_name, args.admin_nrp, args.admin_rank, args.with_samples)
    except SetupAlreadyCompleteError as e:
        logger.error("%s; change settings through the API instead", e)
        return 1
    except ValidationError as e:
        logger.error("Invalid input: %s", e)
        return 2
    finally:
        close_db()

    logger.info("Setup complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
