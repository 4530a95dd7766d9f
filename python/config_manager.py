"""
Configuration Management Module
Loads and validates process configuration from config.yaml

Office settings that administrators edit at runtime (numbering template,
archive duration, letterhead) live in the database; the values here are
the defaults used until they are set.
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration"""
    url: str = "sqlite:///./lost_documents.db"
    echo: bool = False


@dataclass
class OfficeDefaultsConfig:
    """Initial office settings written on first setup"""
    number_format: str = "SKH/%d/%s/TUK.7.2.1/%d"
    last_number: int = 0
    archive_duration_days: int = 30
    timezone: str = "Asia/Jakarta"
    office_name: str = ""
    letter_place: str = ""
    letterhead: List[str] = field(default_factory=list)


@dataclass
class IssuanceConfig:
    """Issuance workflow tuning"""
    max_conflict_retries: int = 3
    retry_wait_seconds: float = 0.05
    config_cache_ttl_seconds: float = 60.0
    expiring_window_days: int = 3
    default_page_size: int = 50
    max_page_size: int = 500


@dataclass
class InputValidationConfig:
    """Input validation configuration for user-provided data"""
    name_max_length: int = 255
    field_max_length: int = 255
    text_max_length: int = 2000
    max_items: int = 50
    blocked_characters: str = "<>{}|\\`$"


@dataclass
class ApiConfig:
    """HTTP API configuration"""
    api_key: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class MonitoringSettings:
    """Query monitoring thresholds"""
    slow_query_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0
    enable_prometheus: bool = True


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.office: OfficeDefaultsConfig = OfficeDefaultsConfig()
        self.issuance: IssuanceConfig = IssuanceConfig()
        self.input_validation: InputValidationConfig = InputValidationConfig()
        self.api: ApiConfig = ApiConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.monitoring: MonitoringSettings = MonitoringSettings()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        env_path = os.getenv("LOSTDOC_CONFIG")
        if env_path:
            return Path(env_path)

        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_database()
        self._parse_office()
        self._parse_issuance()
        self._parse_input_validation()
        self._parse_api()
        self._parse_logging()
        self._parse_monitoring()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            url=cfg.get('url', self.database.url),
            echo=cfg.get('echo', self.database.echo)
        )

    def _parse_office(self) -> None:
        """Parse office default settings"""
        cfg = self._raw_config.get('office', {})
        defaults = OfficeDefaultsConfig()
        self.office = OfficeDefaultsConfig(
            number_format=cfg.get('number_format', defaults.number_format),
            last_number=cfg.get('last_number', defaults.last_number),
            archive_duration_days=cfg.get('archive_duration_days', defaults.archive_duration_days),
            timezone=cfg.get('timezone', defaults.timezone),
            office_name=cfg.get('office_name', defaults.office_name),
            letter_place=cfg.get('letter_place', defaults.letter_place),
            letterhead=cfg.get('letterhead', defaults.letterhead)
        )

    def _parse_issuance(self) -> None:
        """Parse issuance workflow configuration"""
        cfg = self._raw_config.get('issuance', {})
        defaults = IssuanceConfig()
        self.issuance = IssuanceConfig(
            max_conflict_retries=cfg.get('max_conflict_retries', defaults.max_conflict_retries),
            retry_wait_seconds=cfg.get('retry_wait_seconds', defaults.retry_wait_seconds),
            config_cache_ttl_seconds=cfg.get('config_cache_ttl_seconds', defaults.config_cache_ttl_seconds),
            expiring_window_days=cfg.get('expiring_window_days', defaults.expiring_window_days),
            default_page_size=cfg.get('default_page_size', defaults.default_page_size),
            max_page_size=cfg.get('max_page_size', defaults.max_page_size)
        )

    def _parse_input_validation(self) -> None:
        """Parse input validation configuration"""
        cfg = self._raw_config.get('input_validation', {})
        defaults = InputValidationConfig()
        self.input_validation = InputValidationConfig(
            name_max_length=cfg.get('name_max_length', defaults.name_max_length),
            field_max_length=cfg.get('field_max_length', defaults.field_max_length),
            text_max_length=cfg.get('text_max_length', defaults.text_max_length),
            max_items=cfg.get('max_items', defaults.max_items),
            blocked_characters=cfg.get('blocked_characters', defaults.blocked_characters)
        )

    def _parse_api(self) -> None:
        """Parse HTTP API configuration"""
        cfg = self._raw_config.get('api', {})
        self.api = ApiConfig(
            api_key=cfg.get('api_key') or os.getenv("LOSTDOC_API_KEY"),
            cors_origins=cfg.get('cors_origins', self.api.cors_origins),
            host=cfg.get('host', self.api.host),
            port=cfg.get('port', self.api.port)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_monitoring(self) -> None:
        cfg = self._raw_config.get('monitoring', {})
        self.monitoring = MonitoringSettings(
            slow_query_threshold_ms=cfg.get('slow_query_threshold_ms', 1000.0),
            warning_threshold_ms=cfg.get('warning_threshold_ms', 500.0),
            enable_prometheus=cfg.get('enable_prometheus', True)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets omitted)"""
        return {
            'database': {
                'echo': self.database.echo
            },
            'office': {
                'number_format': self.office.number_format,
                'archive_duration_days': self.office.archive_duration_days,
                'timezone': self.office.timezone
            },
            'issuance': {
                'max_conflict_retries': self.issuance.max_conflict_retries,
                'config_cache_ttl_seconds': self.issuance.config_cache_ttl_seconds,
                'expiring_window_days': self.issuance.expiring_window_days
            },
            'api': {
                'cors_origins': self.api.cors_origins,
                'api_key_required': bool(self.api.api_key)
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        if self.issuance.max_conflict_retries < 1:
            raise ConfigurationError("issuance.max_conflict_retries must be at least 1")
        if self.issuance.config_cache_ttl_seconds < 0:
            raise ConfigurationError("issuance.config_cache_ttl_seconds must not be negative")
        if self.issuance.expiring_window_days < 0:
            raise ConfigurationError("issuance.expiring_window_days must not be negative")
        if self.issuance.default_page_size > self.issuance.max_page_size:
            raise ConfigurationError("issuance.default_page_size exceeds max_page_size")
        if self.office.archive_duration_days < 1:
            raise ConfigurationError("office.archive_duration_days must be at least 1")
        if self.office.last_number < 0:
            raise ConfigurationError("office.last_number must not be negative")
        if self.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown logging level: {self.logging.level}")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def setup_logging(config: Optional[ConfigManager] = None) -> None:
    """Configure root logging from the logging section"""
    cfg = (config or get_config()).logging
    handlers: List[logging.Handler] = []
    if cfg.console:
        handlers.append(logging.StreamHandler())
    if cfg.file:
        Path(cfg.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(cfg.file, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, cfg.level.upper(), logging.INFO),
        format=cfg.format,
        handlers=handlers or None
    )
