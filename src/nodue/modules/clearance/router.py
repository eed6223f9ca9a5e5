"""
Clearance Router

API endpoints for students and department officers.
Authentication is handled upstream; the officer identity in a decision
request is taken as given.

Endpoints:
- POST /applications - Submit a no due application
- GET /applications/{id} - Get an application
- GET /applications/students/{student_id} - Get a student's application
- GET /applications/students/{student_id}/status - Can the student apply?
- POST /applications/{id}/decisions - Record a department's verdict
- POST /applications/{id}/reapply - Re-apply to rejecting departments
- GET /certificates/{id}/verify - Public certificate verification
"""

import logging
from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from nodue.modules.clearance.dependencies import get_registry
from nodue.modules.clearance.schemas import (
    Application,
    ApplicationCreate,
    ApplicationResponse,
    CertificateVerificationResponse,
    DecisionRequest,
    StudentStatusResponse,
)
from nodue.modules.clearance.service import (
    ApplicationServiceError,
    ClearanceRegistry,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter()
certificate_router = APIRouter()


# ============================================
# Helper Functions
# ============================================


def _handle_service_error(e: ApplicationServiceError) -> NoReturn:
    """Convert service errors to HTTPExceptions."""
    headers = None
    if isinstance(e, StorageUnavailableError):
        headers = {"Retry-After": str(e.retry_after_seconds)}
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
        headers=headers,
    ) from e


def _internal_error(action: str, e: Exception) -> NoReturn:
    logger.exception(f"Unexpected error {action}: {e}")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    ) from e


def to_response(application: Application) -> ApplicationResponse:
    return ApplicationResponse.model_validate(application.model_dump(exclude={"version"}))


# ============================================
# Student Endpoints
# ============================================


@router.post(
    "",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit No Due Application",
    description="""
Submit a student's no due clearance application.

Every department (library, hostel, accounts, lab, sports) starts as
`pending`. A student can only ever have one application.
""",
    responses={
        409: {
            "description": "The student already has an application",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "error": "DUPLICATE_APPLICATION",
                            "message": "Student STU001 already has a no due application",
                        }
                    }
                }
            },
        },
        503: {"description": "Storage temporarily unavailable, retry later"},
    },
)
async def submit_application(
    data: ApplicationCreate,
    registry: ClearanceRegistry = Depends(get_registry),
) -> ApplicationResponse:
    try:
        application = await registry.submit(data)
        return to_response(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("submitting application", e)


@router.get(
    "/students/{student_id}",
    response_model=ApplicationResponse,
    summary="Get Student Application",
)
async def get_student_application(
    student_id: str,
    registry: ClearanceRegistry = Depends(get_registry),
) -> ApplicationResponse:
    """Get the application belonging to a student."""
    try:
        application = await registry.get_by_student(student_id)
        return to_response(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("getting student application", e)


@router.get(
    "/students/{student_id}/status",
    response_model=StudentStatusResponse,
    summary="Get Student Application Status",
    description="""
Returns the status of the student's application, or `none` when the
student has not applied yet (in which case `can_apply` is true).
""",
)
async def get_student_status(
    student_id: str,
    registry: ClearanceRegistry = Depends(get_registry),
) -> StudentStatusResponse:
    try:
        current = await registry.get_student_status(student_id)
        return StudentStatusResponse(
            student_id=student_id,
            status=current,
            can_apply=current == "none",
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("getting student status", e)


@router.get(
    "/{application_id}",
    response_model=ApplicationResponse,
    summary="Get Application",
)
async def get_application(
    application_id: UUID,
    registry: ClearanceRegistry = Depends(get_registry),
) -> ApplicationResponse:
    try:
        application = await registry.get(application_id)
        return to_response(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("getting application", e)


@router.post(
    "/{application_id}/reapply",
    response_model=ApplicationResponse,
    summary="Re-apply To Rejected Departments",
    description="""
Only allowed while the application is `partially_rejected`.

Rejected departments go back to `pending`, approvals are kept and the
application returns to `in_progress`.
""",
    responses={
        404: {"description": "Application not found"},
        409: {"description": "Application is not partially rejected"},
    },
)
async def reapply(
    application_id: UUID,
    registry: ClearanceRegistry = Depends(get_registry),
) -> ApplicationResponse:
    try:
        application = await registry.reapply(application_id)
        return to_response(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("re-applying", e)


# ============================================
# Department Endpoints
# ============================================


@router.post(
    "/{application_id}/decisions",
    response_model=ApplicationResponse,
    summary="Record Department Decision",
    description="""
Record a department's verdict (`approved` or `rejected`) and recompute the
application status.

**Status rules:**
- All five departments approved: `approved` (certificate ready email sent)
- Any rejection with no department pending: `partially_rejected` (student may re-apply)
- Any rejection or approval otherwise: `in_progress`
- Nothing decided: `pending`

A fully approved application cannot be rejected afterwards.
""",
    responses={
        400: {"description": "Unknown department or invalid verdict"},
        404: {"description": "Application not found"},
        409: {"description": "Application is already fully approved"},
        503: {"description": "Storage temporarily unavailable, retry later"},
    },
)
async def record_decision(
    application_id: UUID,
    data: DecisionRequest,
    registry: ClearanceRegistry = Depends(get_registry),
) -> ApplicationResponse:
    try:
        application = await registry.record_decision(
            application_id,
            data.department,
            data.verdict,
            data.feedback(),
        )
        return to_response(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("recording decision", e)


# ============================================
# Public Certificate Verification
# ============================================


@certificate_router.get(
    "/{application_id}/verify",
    response_model=CertificateVerificationResponse,
    summary="Verify No Due Certificate",
    description="A certificate is valid only when every department has approved.",
)
async def verify_certificate(
    application_id: UUID,
    registry: ClearanceRegistry = Depends(get_registry),
) -> CertificateVerificationResponse:
    try:
        return await registry.verify_certificate(application_id)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        _internal_error("verifying certificate", e)
