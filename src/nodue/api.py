from fastapi import APIRouter

from nodue.modules.clearance import certificate_router
from nodue.modules.clearance import router as applications_router
from nodue.modules.clearance.admin_router import audit_router
from nodue.modules.clearance.admin_router import router as admin_applications_router

api_router = APIRouter()

api_router.include_router(applications_router, prefix="/applications", tags=["Applications"])

api_router.include_router(certificate_router, prefix="/certificates", tags=["Certificates"])

api_router.include_router(
    admin_applications_router,
    prefix="/admin/applications",
    tags=["Admin - Applications"],
)

api_router.include_router(audit_router, prefix="/admin/audit-logs", tags=["Admin - Audit"])
