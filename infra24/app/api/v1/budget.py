from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from infra24.app.auth import core as auth
from infra24.app.cache.core import invalidate_budget_cache
from infra24.app.crud.core import TenantScopedRepository
from infra24.app.db.core import get_db
from infra24.app.models.core import BudgetLineItem, Organization, User
from infra24.app.schemas import core as schemas
from infra24.app.services.budget import build_budget_dashboard, month_detail
from infra24.app.services.budget_data import budget_item_image, get_category_by_id

router = APIRouter(prefix="/organizations/{slug}/budget")

YEAR = Query("2025", pattern=r"^\d{4}$")


@router.get("")
def get_budget(
    year: str = YEAR,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="view_budget")
    return build_budget_dashboard(db, org, year)


@router.get("/monthly/{month}")
def get_budget_month(
    month: str,
    year: str = YEAR,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="view_budget")
    dashboard = build_budget_dashboard(db, org, year)
    return month_detail(dashboard["months"], month)


@router.get("/line-items", response_model=List[schemas.BudgetLineItemOut])
def list_line_items(
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="view_budget")
    repo = TenantScopedRepository(db, BudgetLineItem)
    return repo.list(org.id, order_by=[BudgetLineItem.date], limit=None)


@router.post("/line-items", response_model=schemas.BudgetLineItemOut, status_code=201)
def create_line_item(
    payload: schemas.BudgetLineItemCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="edit_budget")
    if get_category_by_id(payload.category) is None:
        raise HTTPException(status_code=400, detail=f"Unknown budget category: {payload.category}")
    data = payload.model_dump()
    data["image_url"] = data.get("image_url") or budget_item_image(payload.category, payload.name)
    data["created_by"] = current_user.id
    item = TenantScopedRepository(db, BudgetLineItem).create(org.id, data)
    invalidate_budget_cache(org.slug)
    return item


@router.delete("/line-items/{item_id}")
def delete_line_item(
    item_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="edit_budget")
    if not TenantScopedRepository(db, BudgetLineItem).delete(org.id, item_id):
        raise HTTPException(status_code=404, detail="Line item not found")
    invalidate_budget_cache(org.slug)
    return {"success": True}
