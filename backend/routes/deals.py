"""
OmniFlow CRM - Routes Deals (pipeline)
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from models.deal import DealCreate, DealUpdate, DEAL_STATUSES
from services.deals import (
    create_deal,
    get_deal,
    list_deals,
    update_deal,
    delete_deal,
    calculate_deal_stats,
    group_deals_by_status,
)
from services.permissions import require_permission

router = APIRouter(prefix="/deals", tags=["Deals"])


@router.get("")
async def get_deals(
    status: Optional[str] = None,
    contact_id: Optional[str] = None,
    user: dict = Depends(require_permission("deals.view"))
):
    if status and status not in DEAL_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}. Valid: {DEAL_STATUSES}")
    deals = await list_deals(user["scope_company_id"], status=status, contact_id=contact_id)
    return {"deals": deals, "count": len(deals)}


@router.get("/stats")
async def get_deal_stats(user: dict = Depends(require_permission("deals.view"))):
    deals = await list_deals(user["scope_company_id"], limit=100000)
    return calculate_deal_stats(deals)


@router.get("/pipeline")
async def get_pipeline(user: dict = Depends(require_permission("deals.view"))):
    deals = await list_deals(user["scope_company_id"], limit=100000)
    return {"pipeline": group_deals_by_status(deals), "stats": calculate_deal_stats(deals)}


@router.get("/contact/{contact_id}")
async def get_contact_deals(contact_id: str, user: dict = Depends(require_permission("deals.view"))):
    deals = await list_deals(user["scope_company_id"], contact_id=contact_id)
    return {"deals": deals, "count": len(deals)}


@router.post("")
async def post_deal(data: DealCreate, user: dict = Depends(require_permission("deals.manage"))):
    result = await create_deal(user["scope_company_id"], data.model_dump(), created_by=user.get("id", "system"))
    if not result["success"]:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.get("/{deal_id}")
async def get_single_deal(deal_id: str, user: dict = Depends(require_permission("deals.view"))):
    deal = await get_deal(user["scope_company_id"], deal_id)
    if not deal:
        raise HTTPException(status_code=404, detail="Deal not found")
    return {"deal": deal}


@router.put("/{deal_id}")
async def put_deal(deal_id: str, data: DealUpdate, user: dict = Depends(require_permission("deals.manage"))):
    result = await update_deal(
        user["scope_company_id"], deal_id, data.model_dump(exclude_unset=True), updated_by=user.get("id", "system")
    )
    if not result["success"]:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.delete("/{deal_id}")
async def remove_deal(deal_id: str, user: dict = Depends(require_permission("deals.manage"))):
    if not await delete_deal(user["scope_company_id"], deal_id):
        raise HTTPException(status_code=404, detail="Deal not found")
    return {"success": True}
