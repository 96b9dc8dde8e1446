"""
OmniFlow CRM - Routes Digital business cards
Owner endpoints (authenticated) + public endpoints (no auth).
"""

from fastapi import APIRouter, HTTPException, Depends

from models.digital_card import DigitalCardCreate, DigitalCardUpdate, CardStatusUpdate, CardLeadSubmission
from services.companies import get_company
from services.digital_cards import (
    CardPermissionError,
    create_card,
    get_card,
    list_cards,
    update_card,
    set_card_status,
    delete_card,
    get_card_limit,
    get_public_card,
    track_link_click,
    track_chat_interaction,
    submit_card_lead,
    card_public_url,
)
from services.permissions import require_permission

router = APIRouter(prefix="/digital-cards", tags=["DigitalCards"])


# ==================== PUBLIC (no auth) ====================

@router.get("/public/{username}")
async def public_card(username: str):
    card = await get_public_card(username)
    if not card:
        raise HTTPException(status_code=404, detail="Card not found")
    return {"card": card}


@router.post("/public/{card_id}/links/{link_id}/click")
async def public_link_click(card_id: str, link_id: str):
    if not await track_link_click(card_id, link_id):
        raise HTTPException(status_code=404, detail="Link not found")
    return {"success": True}


@router.post("/public/{card_id}/chat")
async def public_chat_interaction(card_id: str):
    if not await track_chat_interaction(card_id):
        raise HTTPException(status_code=404, detail="Card not found")
    return {"success": True}


@router.post("/public/{card_id}/leads")
async def public_submit_lead(card_id: str, data: CardLeadSubmission):
    """Always 200: the form displays `message` and per-field `errors`"""
    return await submit_card_lead(card_id, data.model_dump())


# ==================== OWNER ====================

@router.get("")
async def get_cards(mine: bool = False, user: dict = Depends(require_permission("cards.manage"))):
    company_id = user["scope_company_id"]
    cards = await list_cards(company_id, user_id=user["id"] if mine else None)
    company = await get_company(company_id)
    limit = await get_card_limit(company) if company else {"used": len(cards), "max": 0}
    return {"cards": cards, "count": len(cards), "limit": limit}


@router.post("")
async def post_card(data: DigitalCardCreate, user: dict = Depends(require_permission("cards.manage"))):
    company = await get_company(user["scope_company_id"])
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")

    result = await create_card(company, user["id"], data.model_dump())
    if not result["success"]:
        raise HTTPException(status_code=403 if result.get("limit_reached") else 409, detail=result["error"])
    result["public_url"] = card_public_url(result["card"]["username"])
    return result


@router.get("/{card_id}")
async def get_single_card(card_id: str, user: dict = Depends(require_permission("cards.manage"))):
    card = await get_card(user["scope_company_id"], card_id)
    if not card:
        raise HTTPException(status_code=404, detail="Card not found")
    return {"card": card, "public_url": card_public_url(card["username"])}


@router.put("/{card_id}")
async def put_card(card_id: str, data: DigitalCardUpdate, user: dict = Depends(require_permission("cards.manage"))):
    try:
        result = await update_card(user["scope_company_id"], card_id, user["id"], data.model_dump(exclude_none=True))
    except CardPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    if not result["success"]:
        status = 404 if result["error"] == "Card not found" else 409
        raise HTTPException(status_code=status, detail=result["error"])
    return result


@router.put("/{card_id}/status")
async def put_card_status(card_id: str, data: CardStatusUpdate, user: dict = Depends(require_permission("cards.manage"))):
    try:
        result = await set_card_status(user["scope_company_id"], card_id, user["id"], data.status)
    except CardPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    if not result["success"]:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.delete("/{card_id}")
async def remove_card(card_id: str, user: dict = Depends(require_permission("cards.manage"))):
    try:
        deleted = await delete_card(user["scope_company_id"], card_id, user["id"])
    except CardPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Card not found")
    return {"success": True}
