"""
Database Package for the Lost Document Registry

This package provides:
- SQLAlchemy ORM models for personnel, residents, documents and configuration
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access
- Alembic integration for migrations
- Performance monitoring and query timing
"""

from database.models import (
    Base,
    User,
    UserRole,
    Resident,
    LostDocument,
    LostItem,
    DocumentStatus,
    DocumentSequence,
    SystemConfig,
    AuditLog,
    AuditAction,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    configure_monitoring,
    check_health,
    HealthStatus,
)

__all__ = [
    # Base
    'Base',
    # Personnel and residents
    'User',
    'UserRole',
    'Resident',
    # Document models
    'LostDocument',
    'LostItem',
    'DocumentStatus',
    'DocumentSequence',
    # Configuration and audit models
    'SystemConfig',
    'AuditLog',
    'AuditAction',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'configure_monitoring',
    'check_health',
    'HealthStatus',
]
