"""
Clearance Admin Router

API endpoints for the administrator dashboard. Authentication and the admin
role check are enforced upstream.

Endpoints:
- GET /admin/applications - List applications with filters and pagination
- GET /admin/applications/stats - Get dashboard statistics
- GET /admin/audit-logs - List the audit trail
"""

import logging

from fastapi import APIRouter, Depends, Query

from nodue.modules.audit.repository import AuditSink, AuditUnavailableError
from nodue.modules.audit.schemas import AuditLogListResponse
from nodue.modules.clearance.dependencies import get_audit_sink, get_registry
from nodue.modules.clearance.models import ApplicationStatus
from nodue.modules.clearance.router import _handle_service_error, _internal_error, to_response
from nodue.modules.clearance.schemas import ApplicationListResponse, StatisticsResponse
from nodue.modules.clearance.service import (
    ApplicationServiceError,
    ClearanceRegistry,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter()
audit_router = APIRouter()


@router.get(
    "",
    response_model=ApplicationListResponse,
    summary="List Applications",
    description="""
Get a paginated list of no due applications, newest first.

**Filters:**
- `status`: Filter by application status
- `search`: Case-insensitive match on student name, roll number, email or department

**Pagination:**
- `skip`: Number of records to skip. Default: 0
- `limit`: Maximum records to return (1-100). Default: 20
""",
)
async def list_applications(
    status: ApplicationStatus | None = Query(
        None,
        description="Filter by application status",
    ),
    search: str | None = Query(
        None,
        min_length=1,
        max_length=100,
        description="Search term for student name, roll number, email or department",
    ),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum records to return"),
    registry: ClearanceRegistry = Depends(get_registry),
) -> ApplicationListResponse:
    try:
        applications = await registry.list_all(status=status, search=search, skip=skip, limit=limit)
        total = await registry.count(status=status, search=search)

        logger.info(f"Listed applications: total={total}, returned={len(applications)}")

        return ApplicationListResponse(
            items=[to_response(application) for application in applications],
            total=total,
            skip=skip,
            limit=limit,
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("listing applications", e)


@router.get(
    "/stats",
    response_model=StatisticsResponse,
    summary="Get Dashboard Statistics",
    description="Application counts per status, the total, and the number of departments.",
)
async def get_statistics(
    registry: ClearanceRegistry = Depends(get_registry),
) -> StatisticsResponse:
    try:
        return await registry.get_statistics()
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("getting statistics", e)


@audit_router.get(
    "",
    response_model=AuditLogListResponse,
    summary="List Audit Logs",
    description="""
Get the audit trail, newest first.

**Filters:**
- `action`: Exact action, e.g. `Department Approved`
- `search`: Case-insensitive match on actor name, action or target ID
""",
)
async def list_audit_logs(
    action: str | None = Query(None, max_length=100, description="Filter by action"),
    search: str | None = Query(None, min_length=1, max_length=100, description="Search term"),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(50, ge=1, le=100, description="Maximum records to return"),
    audit: AuditSink = Depends(get_audit_sink),
) -> AuditLogListResponse:
    try:
        entries = await audit.list_logs(action=action, search=search, skip=skip, limit=limit)
        total = await audit.count(action=action, search=search)
        return AuditLogListResponse(items=entries, total=total, skip=skip, limit=limit)
    except AuditUnavailableError as e:
        logger.error(f"Audit log storage unavailable: {e}")
        _handle_service_error(
            StorageUnavailableError("Audit log storage is temporarily unavailable")
        )
    except Exception as e:
        _internal_error("listing audit logs", e)
