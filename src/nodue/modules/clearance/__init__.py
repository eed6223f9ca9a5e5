"""
Clearance Module

Handles the no due clearance workflow:
1. A student submits one application; five departments start pending
2. Each department approves or rejects it
3. The overall status is aggregated from the five verdicts
4. A partially rejected application can be re-applied to the rejecting departments
5. A fully approved application yields a verifiable certificate

API Endpoints:
- POST /applications - Submit an application
- GET /applications/{id} - Get an application
- GET /applications/students/{student_id} - Get a student's application
- GET /applications/students/{student_id}/status - Get a student's status
- POST /applications/{id}/decisions - Record a department decision
- POST /applications/{id}/reapply - Re-apply to rejected departments
- GET /certificates/{id}/verify - Verify a certificate
- GET /admin/applications - List applications (admin)
- GET /admin/applications/stats - Dashboard statistics (admin)
"""

from .router import certificate_router, router
from .service import ClearanceRegistry

__all__ = ["router", "certificate_router", "ClearanceRegistry"]
