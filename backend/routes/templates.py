"""
OmniFlow CRM - Routes Template marketplace
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from models.template import TemplateCreate, TemplateUse, TemplateRatingCreate
from services.permissions import require_permission
from services.templates import (
    DEFAULT_TEMPLATE_IDS,
    list_templates,
    get_template,
    create_custom_template,
    delete_custom_template,
    track_template_usage,
    rate_template,
    get_template_ratings,
    get_template_analytics,
)

router = APIRouter(prefix="/templates", tags=["Templates"])


@router.get("")
async def get_templates(
    type: Optional[str] = None,
    industry: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_public: bool = True,
    user: dict = Depends(require_permission("templates.view"))
):
    templates = await list_templates(
        user["scope_company_id"],
        template_type=type,
        industry=industry,
        category=category,
        search=search,
        include_public=include_public,
    )
    return {"templates": templates, "count": len(templates)}


@router.post("")
async def post_template(data: TemplateCreate, user: dict = Depends(require_permission("templates.manage"))):
    template = await create_custom_template(user["scope_company_id"], user, data.model_dump())
    return {"success": True, "template": template}


@router.get("/{template_id}")
async def get_single_template(template_id: str, user: dict = Depends(require_permission("templates.view"))):
    template = await get_template(user["scope_company_id"], template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return {"template": template}


@router.delete("/{template_id}")
async def remove_template(template_id: str, user: dict = Depends(require_permission("templates.manage"))):
    if template_id in DEFAULT_TEMPLATE_IDS:
        raise HTTPException(status_code=403, detail="Built-in templates cannot be deleted")
    if not await delete_custom_template(user["scope_company_id"], template_id):
        raise HTTPException(status_code=404, detail="Template not found")
    return {"success": True}


@router.post("/{template_id}/use")
async def use_template(template_id: str, data: TemplateUse, user: dict = Depends(require_permission("templates.view"))):
    company_id = user["scope_company_id"]
    if not await get_template(company_id, template_id):
        raise HTTPException(status_code=404, detail="Template not found")
    return await track_template_usage(template_id, company_id, user["id"], data.type)


@router.post("/{template_id}/rate")
async def post_rating(template_id: str, data: TemplateRatingCreate, user: dict = Depends(require_permission("templates.view"))):
    company_id = user["scope_company_id"]
    if not await get_template(company_id, template_id):
        raise HTTPException(status_code=404, detail="Template not found")
    result = await rate_template(template_id, company_id, user, data.rating, data.review)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@router.get("/{template_id}/ratings")
async def get_ratings(template_id: str, limit: int = 10, user: dict = Depends(require_permission("templates.view"))):
    ratings = await get_template_ratings(template_id, limit=min(limit, 100))
    return {"ratings": ratings, "count": len(ratings)}


@router.get("/{template_id}/analytics")
async def get_analytics(template_id: str, user: dict = Depends(require_permission("templates.view"))):
    return await get_template_analytics(template_id)
