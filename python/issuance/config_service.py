"""
Office configuration provider.

Reads the key/value ``system_configs`` rows, overlays them on the process
defaults from config.yaml, and caches the parsed result for a short TTL.
Writes invalidate the cache before returning, so the next read in any
worker sees the new values.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config_manager import OfficeDefaultsConfig, get_config
from database.connection import DatabaseSessionProvider
from database.models import AuditAction
from database.repositories import ConfigRepository
from issuance.errors import ConfigurationError, ValidationError
from issuance.sequence import validate_number_format

logger = logging.getLogger(__name__)

# Stored configuration keys
NUMBER_FORMAT = "number_format"
LAST_NUMBER = "last_number"
ARCHIVE_DURATION_DAYS = "archive_duration_days"
TIMEZONE = "timezone"
OFFICE_NAME = "office_name"
LETTER_PLACE = "letter_place"
LETTERHEAD_LINES = ("letterhead_line_1", "letterhead_line_2", "letterhead_line_3")
SETUP_COMPLETE = "setup_complete"

EDITABLE_KEYS = frozenset(
    (NUMBER_FORMAT, LAST_NUMBER, ARCHIVE_DURATION_DAYS, TIMEZONE,
     OFFICE_NAME, LETTER_PLACE) + LETTERHEAD_LINES
)


@dataclass(frozen=True)
class OfficeConfig:
    """Parsed, validated office configuration snapshot."""
    number_format: str
    last_number: int
    archive_duration_days: int
    timezone: str
    office_name: str = ""
    letter_place: str = ""
    letterhead: Tuple[str, ...] = ()
    setup_complete: bool = False

    @property
    def tzinfo(self) -> ZoneInfo:
        return load_timezone(self.timezone)

    def to_dict(self) -> Dict[str, object]:
        return {
            NUMBER_FORMAT: self.number_format,
            LAST_NUMBER: self.last_number,
            ARCHIVE_DURATION_DAYS: self.archive_duration_days,
            TIMEZONE: self.timezone,
            OFFICE_NAME: self.office_name,
            LETTER_PLACE: self.letter_place,
            "letterhead": list(self.letterhead),
            SETUP_COMPLETE: self.setup_complete,
        }


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown office timezone: {name!r}") from e


def _parse_int(raw: str, key: str, minimum: int) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{key} must be at least {minimum}, got {value}")
    return value


def defaults_as_rows(defaults: OfficeDefaultsConfig) -> Dict[str, str]:
    """Render process defaults as stored string values."""
    rows = {
        NUMBER_FORMAT: defaults.number_format,
        LAST_NUMBER: str(defaults.last_number),
        ARCHIVE_DURATION_DAYS: str(defaults.archive_duration_days),
        TIMEZONE: defaults.timezone,
        OFFICE_NAME: defaults.office_name,
        LETTER_PLACE: defaults.letter_place,
    }
    for index, key in enumerate(LETTERHEAD_LINES):
        rows[key] = defaults.letterhead[index] if index < len(defaults.letterhead) else ""
    return rows


def parse_office_config(rows: Dict[str, str]) -> OfficeConfig:
    """
    Parse stored string values into an OfficeConfig.

    Raises:
        ConfigurationError: If any value is unusable
    """
    number_format = rows.get(NUMBER_FORMAT, "")
    validate_number_format(number_format)
    timezone_name = rows.get(TIMEZONE, "")
    load_timezone(timezone_name)

    return OfficeConfig(
        number_format=number_format,
        last_number=_parse_int(rows.get(LAST_NUMBER, "0"), LAST_NUMBER, 0),
        archive_duration_days=_parse_int(rows.get(ARCHIVE_DURATION_DAYS, ""), ARCHIVE_DURATION_DAYS, 1),
        timezone=timezone_name,
        office_name=rows.get(OFFICE_NAME, ""),
        letter_place=rows.get(LETTER_PLACE, ""),
        letterhead=tuple(rows.get(key, "") for key in LETTERHEAD_LINES),
        setup_complete=rows.get(SETUP_COMPLETE, "").lower() == "true",
    )


class ConfigService:
    """
    Cached office configuration provider.

    Usage:
        config_service = ConfigService(db_provider)
        office = config_service.load_config()
        tz = office.tzinfo
    """

    def __init__(
        self,
        db_provider: DatabaseSessionProvider,
        defaults: Optional[OfficeDefaultsConfig] = None,
        ttl_seconds: Optional[float] = None,
        audit_service=None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            db_provider: Database session provider
            defaults: Values used for keys that have no stored row
            ttl_seconds: Cache lifetime; 0 disables caching
            audit_service: Records SETTINGS_UPDATED entries when given
            clock: Monotonic time source (overridable in tests)
        """
        app_config = get_config()
        self._db = db_provider
        self._defaults = defaults or app_config.office
        self._ttl = app_config.issuance.config_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._audit = audit_service
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[OfficeConfig] = None
        self._loaded_at = 0.0

    def _read(self) -> OfficeConfig:
        with self._db.session_scope() as session:
            stored = ConfigRepository(session).get_all()
        rows = defaults_as_rows(self._defaults)
        rows.update(stored)
        return parse_office_config(rows)

    def load_config(self) -> OfficeConfig:
        """
        Return the current configuration, served from cache within the TTL.

        Raises:
            ConfigurationError: If stored values are unusable
        """
        # Held across the read so an invalidation cannot be overwritten by a stale load
        with self._lock:
            if self._cached is not None and self._clock() - self._loaded_at < self._ttl:
                return self._cached
            config = self._read()
            self._cached = config
            self._loaded_at = self._clock()
            logger.debug("Office configuration loaded")
            return config

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._loaded_at = 0.0

    def save_config(self, updates: Dict[str, str], actor_id: Optional[int] = None) -> OfficeConfig:
        """
        Validate and store configuration changes.

        Args:
            updates: Mapping of editable keys to new string values
            actor_id: Administrator making the change (for the audit trail)

        Returns:
            The configuration as it reads after the write

        Raises:
            ValidationError: Unknown key or unusable value
        """
        unknown = sorted(set(updates) - EDITABLE_KEYS)
        if unknown:
            raise ValidationError(
                f"Unknown configuration keys: {unknown}",
                field="settings",
                code="UNKNOWN_SETTING",
                suggestion=f"Editable keys: {sorted(EDITABLE_KEYS)}"
            )
        values = {key: "" if value is None else str(value) for key, value in updates.items()}

        with self._db.session_scope() as session:
            repo = ConfigRepository(session)
            rows = defaults_as_rows(self._defaults)
            rows.update(repo.get_all())
            rows.update(values)
            try:
                parse_office_config(rows)
            except ConfigurationError as e:
                raise ValidationError(str(e), field="settings", code="INVALID_SETTING") from e
            repo.upsert_many(values)

        self.invalidate()
        logger.info("Office configuration updated: %s", sorted(values))

        if self._audit is not None:
            self._audit.record(
                AuditAction.SETTINGS_UPDATED,
                actor_id,
                f"Updated settings: {', '.join(sorted(values))}",
                resource_type="settings"
            )
        return self.load_config()

    def initialize_defaults(self, mark_setup_complete: bool = True) -> OfficeConfig:
        """Write default rows for every missing key (first-run setup)."""
        with self._db.session_scope() as session:
            repo = ConfigRepository(session)
            stored = repo.get_all()
            missing = {
                key: value for key, value in defaults_as_rows(self._defaults).items()
                if key not in stored
            }
            if mark_setup_complete:
                missing[SETUP_COMPLETE] = "true"
            if missing:
                repo.upsert_many(missing)
        self.invalidate()
        return self.load_config()
