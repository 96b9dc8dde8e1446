"""
OmniFlow CRM - Routes Dashboard
"""

from fastapi import APIRouter, Depends

from services.analytics import get_dashboard_stats
from services.permissions import require_permission

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/stats")
async def dashboard_stats(user: dict = Depends(require_permission("dashboard.view"))):
    return await get_dashboard_stats(user["scope_company_id"])
