"""
FastAPI Lost Document Registry API Server

Provides REST API endpoints for issuing, editing and querying lost-document
reports, plus dashboard aggregates, office settings and the audit trail.

The acting user is identified by the X-User-ID header set by the upstream
authentication gateway. An optional shared X-API-Key guards the whole API.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Security
from fastapi.responses import RedirectResponse, Response
from fastapi.security import APIKeyHeader
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api.models import (
    AuditLogEntry,
    AuditLogListResponse,
    ChartResponse,
    DeleteResponse,
    DocumentListResponse,
    DocumentRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    ItemResponse,
    ResidentResponse,
    SettingsResponse,
    SettingsUpdateRequest,
    StatsResponse,
    UserSummary,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import ConfigManager, get_config, setup_logging
from database.connection import DatabaseSessionProvider, init_db, close_db
from database.models import AuditAction, AuditLog, LostDocument, User, utc_now
from database.monitoring import check_health, configure_monitoring, get_db_metrics
from database.repositories import UserRepository
from issuance import archival
from issuance.audit_service import AuditService
from issuance.config_service import ConfigService, OfficeConfig
from issuance.dashboard import DashboardService
from issuance.document_service import DocumentService
from issuance.errors import ValidationError
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

COMMON_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing API key or unknown user"},
    403: {"model": ErrorResponse, "description": "Invalid API key or access denied"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


# ============================================
# DEPENDENCIES
# ============================================

async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header)
) -> str:
    """Verify API key for protected endpoints.

    If no API key is configured, authentication is disabled.
    """
    expected = request.app.state.api_key
    if not expected:
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != expected:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    api_key: str = Depends(verify_api_key),
) -> User:
    """Resolve the acting user from the X-User-ID header (401 if absent or unknown)."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-ID header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="X-User-ID must be a numeric user id")

    with request.app.state.db_provider.session_scope() as session:
        user = UserRepository(session).get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Restrict an endpoint to administrators."""
    if not user.is_admin:
        get_security_logger().log_access_denied(
            actor_id=user.id,
            resource_type="admin_endpoint",
            resource_id="",
            source="api.require_admin"
        )
        raise HTTPException(status_code=403, detail="Administrator role required")
    return user


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_config_service(request: Request) -> ConfigService:
    return request.app.state.config_service


def get_dashboard_service(request: Request) -> DashboardService:
    return request.app.state.dashboard_service


def get_audit_service(request: Request) -> AuditService:
    return request.app.state.audit_service


def _page(request: Request, limit: Optional[int], offset: int) -> tuple:
    issuance = request.app.state.config.issuance
    size = issuance.default_page_size if limit is None else min(limit, issuance.max_page_size)
    return size, offset


# ============================================
# RESPONSE BUILDERS
# ============================================

def _user_summary(user: Optional[User]) -> Optional[UserSummary]:
    return UserSummary.model_validate(user) if user is not None else None


def document_to_response(document: LostDocument, office: OfficeConfig,
                         now: Optional[datetime] = None) -> DocumentResponse:
    """Serialize a loaded document with its derived archive status."""
    retention = office.archive_duration_days
    return DocumentResponse(
        id=document.id,
        reference_number=document.reference_number,
        period_year=document.period_year,
        sequence_number=document.sequence_number,
        report_date=document.report_date,
        status=document.status.value,
        archive_status=archival.classify(document, now or utc_now(), retention).value,
        archives_at=archival.archives_at(document.report_date, retention),
        loss_location=document.loss_location,
        approved_at=document.approved_at,
        resident=ResidentResponse.model_validate(document.resident),
        items=[ItemResponse.model_validate(item) for item in document.items],
        reporting_officer=_user_summary(document.reporting_officer),
        approving_official=_user_summary(document.approving_official),
        operator=_user_summary(document.operator),
        last_updated_by=_user_summary(document.last_updated_by),
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


def _audit_entry(log: AuditLog) -> AuditLogEntry:
    return AuditLogEntry(
        id=log.id,
        timestamp=log.timestamp,
        user_id=log.user_id,
        user_name=log.user.full_name if log.user is not None else None,
        action=log.action.value,
        detail=log.detail,
        resource_type=log.resource_type,
        resource_id=log.resource_id,
        extra=log.extra,
    )


# ============================================
# APPLICATION FACTORY
# ============================================

def create_app(
    db_provider: Optional[DatabaseSessionProvider] = None,
    config: Optional[ConfigManager] = None,
    api_key: Optional[str] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        db_provider: Database provider (defaults to the global one, set up at startup)
        config: Process configuration (defaults to get_config())
        api_key: Shared API key; falls back to API_KEY env and then config.yaml

    Returns:
        Configured FastAPI application
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Lost Document Registry API...")
        start_time = time.time()

        setup_logging(config)
        configure_monitoring(
            slow_query_threshold_ms=config.monitoring.slow_query_threshold_ms,
            warning_threshold_ms=config.monitoring.warning_threshold_ms,
            enable_prometheus=config.monitoring.enable_prometheus,
        )

        owns_provider = app.state.db_provider is None
        if owns_provider:
            app.state.db_provider = init_db(echo=config.database.echo)
            _wire_services(app)
        else:
            app.state.db_provider.init()

        app.state.db_provider.create_tables()
        # Unusable stored numbering or timezone settings stop startup here
        office = app.state.config_service.load_config()
        app.state.startup_time = datetime.now(timezone.utc)

        logger.info(
            "API ready in %.2f seconds (timezone=%s, retention=%d days)",
            time.time() - start_time, office.timezone, office.archive_duration_days
        )
        try:
            yield
        finally:
            logger.info("Shutting down Lost Document Registry API...")
            if owns_provider:
                close_db()

    app = FastAPI(
        title="Lost Document Registry API",
        description="Issue and manage lost-document reports",
        version=API_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.api_key = api_key or os.getenv("API_KEY", "") or config.api.api_key or ""
    app.state.db_provider = db_provider
    app.state.startup_time = None
    if db_provider is not None:
        _wire_services(app)

    setup_cors(app, config.api.cors_origins)
    app.add_middleware(RequestLoggingMiddleware)
    setup_exception_handlers(app)

    _register_routes(app)
    return app


def _wire_services(app: FastAPI) -> None:
    provider = app.state.db_provider
    config = app.state.config
    audit_service = AuditService(provider)
    config_service = ConfigService(provider, defaults=config.office, audit_service=audit_service)
    app.state.audit_service = audit_service
    app.state.config_service = config_service
    app.state.document_service = DocumentService(provider, config_service, audit_service)
    app.state.dashboard_service = DashboardService(provider, config_service)


def _register_routes(app: FastAPI) -> None:

    # ============================================
    # DOCUMENTS
    # ============================================

    @app.post(
        "/api/v1/documents",
        response_model=DocumentResponse,
        status_code=201,
        responses={
            **COMMON_RESPONSES,
            400: {"model": ErrorResponse, "description": "Validation error"},
            409: {"model": ErrorResponse, "description": "Numbering conflict persisted after retries"},
        },
        summary="Issue a lost-document report",
    )
    def create_document(
        body: DocumentRequest,
        user: User = Depends(get_current_user),
        documents: DocumentService = Depends(get_document_service),
        config_service: ConfigService = Depends(get_config_service),
    ):
        """Issue a report: resolve the resident, allocate the number, save items.

        The calling user is recorded as the operator.
        """
        document = documents.create(body.to_input(), operator_id=user.id)
        return document_to_response(document, config_service.load_config())

    @app.get(
        "/api/v1/documents",
        response_model=DocumentListResponse,
        responses={**COMMON_RESPONSES, 400: {"model": ErrorResponse, "description": "Unknown status"}},
        summary="List documents",
    )
    def list_documents(
        request: Request,
        q: Optional[str] = Query(default=None, max_length=255, description="Reference number or resident name"),
        status: Optional[str] = Query(default=None, description="'active' (default) or 'archived'"),
        limit: Optional[int] = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
        user: User = Depends(get_current_user),
        documents: DocumentService = Depends(get_document_service),
        config_service: ConfigService = Depends(get_config_service),
    ):
        """Active or archived documents, newest report first."""
        limit, offset = _page(request, limit, offset)
        now = utc_now()
        found, total = documents.list_documents(q, status, limit=limit, offset=offset, now=now)
        office = config_service.load_config()
        return DocumentListResponse(
            total=total,
            limit=limit,
            offset=offset,
            documents=[document_to_response(d, office, now) for d in found],
        )

    @app.get(
        "/api/v1/documents/{document_id}",
        response_model=DocumentResponse,
        responses={**COMMON_RESPONSES, 404: {"model": ErrorResponse, "description": "Not found"}},
        summary="Get one document",
    )
    def get_document(
        document_id: int,
        user: User = Depends(get_current_user),
        documents: DocumentService = Depends(get_document_service),
        config_service: ConfigService = Depends(get_config_service),
    ):
        document = documents.get(document_id, actor_id=user.id)
        return document_to_response(document, config_service.load_config())

    @app.put(
        "/api/v1/documents/{document_id}",
        response_model=DocumentResponse,
        responses={
            **COMMON_RESPONSES,
            400: {"model": ErrorResponse, "description": "Validation error"},
            404: {"model": ErrorResponse, "description": "Not found"},
        },
        summary="Rewrite a document",
    )
    def update_document(
        document_id: int,
        body: DocumentRequest,
        user: User = Depends(get_current_user),
        documents: DocumentService = Depends(get_document_service),
        config_service: ConfigService = Depends(get_config_service),
    ):
        """Replace resident details, items, location and officers.

        The reference number and report date are kept.
        """
        document = documents.update(document_id, body.to_input(), actor_id=user.id)
        return document_to_response(document, config_service.load_config())

    @app.delete(
        "/api/v1/documents/{document_id}",
        response_model=DeleteResponse,
        responses={**COMMON_RESPONSES, 404: {"model": ErrorResponse, "description": "Not found"}},
        summary="Delete a document",
    )
    def delete_document(
        document_id: int,
        user: User = Depends(get_current_user),
        documents: DocumentService = Depends(get_document_service),
    ):
        documents.delete(document_id, actor_id=user.id)
        return DeleteResponse(id=document_id)

    @app.get(
        "/api/v1/search",
        response_model=List[DocumentResponse],
        responses=COMMON_RESPONSES,
        summary="Search all documents",
    )
    def search_documents(
        request: Request,
        q: str = Query(..., min_length=1, max_length=255),
        limit: Optional[int] = Query(default=None, ge=1),
        user: User = Depends(get_current_user),
        documents: DocumentService = Depends(get_document_service),
        config_service: ConfigService = Depends(get_config_service),
    ):
        """Active and archived documents matching the query."""
        limit, _ = _page(request, limit, 0)
        now = utc_now()
        office = config_service.load_config()
        return [document_to_response(d, office, now) for d in documents.search_global(q, limit=limit)]

    @app.get(
        "/api/v1/notifications/expiring-documents",
        response_model=List[DocumentResponse],
        responses=COMMON_RESPONSES,
        summary="Own documents about to be archived",
    )
    def expiring_documents(
        user: User = Depends(get_current_user),
        documents: DocumentService = Depends(get_document_service),
        config_service: ConfigService = Depends(get_config_service),
    ):
        now = utc_now()
        office = config_service.load_config()
        return [
            document_to_response(d, office, now)
            for d in documents.expiring_for_user(user.id, now=now)
        ]

    # ============================================
    # DASHBOARD
    # ============================================

    @app.get("/api/v1/stats", response_model=StatsResponse, responses=COMMON_RESPONSES,
             summary="Dashboard counts")
    def stats(
        user: User = Depends(get_current_user),
        dashboard: DashboardService = Depends(get_dashboard_service),
    ):
        return StatsResponse(**dashboard.stats())

    @app.get("/api/v1/stats/monthly-issuance", response_model=ChartResponse,
             responses=COMMON_RESPONSES, summary="Documents per month this year")
    def monthly_issuance(
        user: User = Depends(get_current_user),
        dashboard: DashboardService = Depends(get_dashboard_service),
    ):
        return ChartResponse(**dashboard.monthly_issuance())

    @app.get("/api/v1/stats/item-composition", response_model=ChartResponse,
             responses=COMMON_RESPONSES, summary="Most frequently lost items")
    def item_composition(
        top: int = Query(default=5, ge=1, le=20),
        user: User = Depends(get_current_user),
        dashboard: DashboardService = Depends(get_dashboard_service),
    ):
        return ChartResponse(**dashboard.item_composition(top=top))

    # ============================================
    # ADMINISTRATION
    # ============================================

    @app.get("/api/v1/settings", response_model=SettingsResponse, responses=COMMON_RESPONSES,
             summary="Office settings")
    def get_settings(
        admin: User = Depends(require_admin),
        config_service: ConfigService = Depends(get_config_service),
    ):
        return SettingsResponse(**config_service.load_config().to_dict())

    @app.put(
        "/api/v1/settings",
        response_model=SettingsResponse,
        responses={**COMMON_RESPONSES, 400: {"model": ErrorResponse, "description": "Invalid setting"}},
        summary="Update office settings",
    )
    def update_settings(
        body: SettingsUpdateRequest,
        admin: User = Depends(require_admin),
        config_service: ConfigService = Depends(get_config_service),
    ):
        """Validate and store the given keys; the numbering template is checked before saving."""
        updates = body.to_updates()
        if not updates:
            raise ValidationError("No settings given", field="settings", code="EMPTY_UPDATE")
        office = config_service.save_config(updates, actor_id=admin.id)
        return SettingsResponse(**office.to_dict())

    @app.get("/api/v1/audit-logs", response_model=AuditLogListResponse, responses=COMMON_RESPONSES,
             summary="Audit trail")
    def audit_logs(
        request: Request,
        action: Optional[str] = Query(default=None),
        resource_type: Optional[str] = Query(default=None, max_length=100),
        user_id: Optional[int] = Query(default=None),
        start_date: Optional[datetime] = Query(default=None),
        end_date: Optional[datetime] = Query(default=None),
        limit: Optional[int] = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
        admin: User = Depends(require_admin),
        audit: AuditService = Depends(get_audit_service),
    ):
        """Newest first, optionally filtered."""
        parsed_action = None
        if action:
            try:
                parsed_action = AuditAction(action.upper())
            except ValueError:
                raise ValidationError(
                    f"Unknown audit action: {action}",
                    field="action",
                    code="INVALID_ACTION",
                    suggestion=f"Use one of {[a.value for a in AuditAction]}"
                )
        limit, offset = _page(request, limit, offset)
        logs, total = audit.search(
            action=parsed_action,
            resource_type=resource_type,
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            offset=offset,
            limit=limit,
        )
        return AuditLogListResponse(
            total=total, limit=limit, offset=offset,
            entries=[_audit_entry(log) for log in logs],
        )

    # ============================================
    # OPERATIONS
    # ============================================

    @app.get(
        "/api/v1/health",
        response_model=HealthResponse,
        summary="Health check",
        description="Check service and database health",
    )
    def health_check(request: Request):
        """Always returns HTTP 200; problems are reported in the body."""
        uptime_seconds = None
        if request.app.state.startup_time:
            uptime = datetime.now(timezone.utc) - request.app.state.startup_time
            uptime_seconds = int(uptime.total_seconds())

        provider = request.app.state.db_provider
        if provider is None:
            return HealthResponse(status="starting", version=API_VERSION,
                                  error_message="Database not initialized")

        health = check_health(provider.engine, provider.session_factory)
        return HealthResponse(
            status="healthy" if health.healthy else "degraded",
            database={**health.to_dict(), "queries": get_db_metrics()["operations"]},
            version=API_VERSION,
            uptime_seconds=uptime_seconds,
            error_message=health.error,
        )

    @app.get("/metrics", include_in_schema=False)
    def metrics():
        """Prometheus exposition of query and issuance metrics."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/", include_in_schema=False)
    async def root():
        """Redirect root to API documentation."""
        return RedirectResponse(url="/api/docs")


app = create_app()


if __name__ == "__main__":
    import uvicorn

    cfg = get_config()
    uvicorn.run(
        "api.server:app",
        host=os.getenv("API_HOST", cfg.api.host),
        port=int(os.getenv("API_PORT", str(cfg.api.port))),
        reload=False,
    )
