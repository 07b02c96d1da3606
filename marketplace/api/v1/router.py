"""
API v1 router setup
Caller identity comes from the X-User-Id header set by the upstream gateway
"""
from fastapi import APIRouter

from marketplace.api.v1 import availability, bookings, recurring_bookings, policies, escrow

api_v1_router = APIRouter()

# ============================================================================
# SCHEDULING
# ============================================================================
api_v1_router.include_router(availability.router)
api_v1_router.include_router(bookings.router)
api_v1_router.include_router(recurring_bookings.router)

# ============================================================================
# POLICIES AND MONEY
# ============================================================================
api_v1_router.include_router(policies.router)
api_v1_router.include_router(escrow.router)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
def api_info():
    """API information and available endpoint groups."""
    return {
        "version": "1.0",
        "groups": ["providers", "bookings", "recurring-bookings", "policies", "escrow"],
        "authentication": "X-User-Id header set by the upstream gateway",
    }
