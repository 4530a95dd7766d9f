"""
Tests for the cached office configuration provider.
"""

import pytest
from sqlalchemy import select

from config_manager import OfficeDefaultsConfig
from database.models import AuditAction, AuditLog
from database.repositories import ConfigRepository
from issuance.config_service import ConfigService, parse_office_config, defaults_as_rows
from issuance.errors import ConfigurationError, ValidationError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cached_service(db_provider, office_defaults, clock):
    return ConfigService(db_provider, defaults=office_defaults, ttl_seconds=60, clock=clock)


def write_raw(db_provider, values):
    with db_provider.session_scope() as session:
        ConfigRepository(session).upsert_many(values)


class TestParsing:
    """Stored strings to OfficeConfig."""

    def test_defaults_parse(self, office_defaults):
        config = parse_office_config(defaults_as_rows(office_defaults))
        assert config.number_format == "SKH/%d/%s/TUK.7.2.1/%d"
        assert config.archive_duration_days == 30
        assert config.tzinfo.key == "Asia/Jakarta"
        assert config.setup_complete is False

    def test_letterhead_padded_to_three_lines(self):
        rows = defaults_as_rows(OfficeDefaultsConfig(letterhead=["KEPOLISIAN NEGARA"]))
        assert parse_office_config(rows).letterhead == ("KEPOLISIAN NEGARA", "", "")

    @pytest.mark.parametrize("key,value", [
        ("archive_duration_days", "0"),
        ("archive_duration_days", "thirty"),
        ("last_number", "-1"),
        ("timezone", "Mars/Olympus_Mons"),
        ("number_format", "SKH/%d/%d/%d"),
    ])
    def test_unusable_values_rejected(self, office_defaults, key, value):
        rows = defaults_as_rows(office_defaults)
        rows[key] = value
        with pytest.raises(ConfigurationError):
            parse_office_config(rows)


class TestCaching:
    """TTL cache and invalidation on write."""

    def test_served_from_cache_within_ttl(self, cached_service, db_provider, clock):
        assert cached_service.load_config().archive_duration_days == 30
        write_raw(db_provider, {"archive_duration_days": "45"})

        clock.now += 30
        assert cached_service.load_config().archive_duration_days == 30

    def test_reloaded_after_ttl(self, cached_service, db_provider, clock):
        cached_service.load_config()
        write_raw(db_provider, {"archive_duration_days": "45"})

        clock.now += 61
        assert cached_service.load_config().archive_duration_days == 45

    def test_save_invalidates_immediately(self, cached_service, clock):
        cached_service.load_config()
        saved = cached_service.save_config({"archive_duration_days": "14"}, actor_id=None)
        assert saved.archive_duration_days == 14
        assert cached_service.load_config().archive_duration_days == 14

    def test_stored_values_override_defaults(self, cached_service, db_provider):
        write_raw(db_provider, {"office_name": "Polsek Menteng"})
        assert cached_service.load_config().office_name == "Polsek Menteng"


class TestSaveConfig:
    """Validated writes."""

    def test_unknown_key_rejected(self, config_service):
        with pytest.raises(ValidationError) as exc_info:
            config_service.save_config({"setup_complete": "false"})
        assert exc_info.value.code == "UNKNOWN_SETTING"

    def test_invalid_template_rejected_and_not_stored(self, config_service):
        with pytest.raises(ValidationError) as exc_info:
            config_service.save_config({"number_format": "SKH/%s/%d"})
        assert exc_info.value.code == "INVALID_SETTING"
        assert config_service.load_config().number_format == "SKH/%d/%s/TUK.7.2.1/%d"

    def test_save_is_audited(self, config_service, users, db_provider):
        config_service.save_config({"timezone": "Asia/Makassar"}, actor_id=users["admin"])
        with db_provider.session_scope() as session:
            log = session.execute(select(AuditLog)).scalar_one()
            assert log.action == AuditAction.SETTINGS_UPDATED
            assert log.user_id == users["admin"]
            assert "timezone" in log.detail

    def test_initialize_defaults_marks_setup(self, config_service, db_provider):
        config = config_service.initialize_defaults()
        assert config.setup_complete is True
        with db_provider.session_scope() as session:
            stored = ConfigRepository(session).get_all()
        assert stored["number_format"] == "SKH/%d/%s/TUK.7.2.1/%d"
        assert stored["setup_complete"] == "true"
