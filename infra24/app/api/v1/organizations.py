from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from infra24.app.auth import core as auth
from infra24.app.db.core import get_db
from infra24.app.models.core import Organization, User
from infra24.app.repositories.organizations import MembershipRepository, OrganizationRepository
from infra24.app.schemas import core as schemas
from infra24.app.tenancy.core import (
    get_tenant_config,
    organization_config,
    tenant_css_variables,
    tenant_metadata,
)

router = APIRouter()


def _detail(org: Organization) -> schemas.OrganizationDetail:
    config = organization_config(org)
    out = schemas.OrganizationDetail.model_validate(org)
    out.theme = config["theme"]
    out.features = config["features"]
    out.settings = config["settings"]
    out.css_variables = tenant_css_variables(config)
    out.meta = tenant_metadata(config)
    return out


@router.get("/tenant/current")
def current_tenant(request: Request, db: Session = Depends(get_db)):
    """Tenant resolved from the request host or `/o/<slug>` path."""
    slug = getattr(request.state, "tenant_slug", None)
    org = OrganizationRepository(db).get_by_slug(slug) if slug else None
    if org is not None and org.is_active:
        config = organization_config(org)
    else:
        config = get_tenant_config(slug)
    if not config:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return {
        **config,
        "css_variables": tenant_css_variables(config),
        "metadata": tenant_metadata(config),
    }


@router.get("/users/me", response_model=schemas.UserOut)
def read_me(current_user: User = Depends(auth.get_current_user)):
    return current_user


@router.get("/organizations", response_model=List[schemas.OrganizationOut])
def list_organizations(db: Session = Depends(get_db)):
    return OrganizationRepository(db).list_active()


@router.post("/organizations", response_model=schemas.OrganizationDetail, status_code=201)
def create_organization(
    payload: schemas.OrganizationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.require_super_admin),
):
    org = OrganizationRepository(db).create(payload.model_dump())
    return _detail(org)


@router.get("/organizations/{slug}", response_model=schemas.OrganizationDetail)
def get_organization(org: Organization = Depends(auth.get_organization)):
    return _detail(org)


@router.patch("/organizations/{slug}/theme", response_model=schemas.OrganizationDetail)
def update_theme(
    payload: schemas.ThemeUpdate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, ("org_admin",), action="update_theme")
    org = OrganizationRepository(db).update_theme(
        org, payload.theme, primary_color=payload.primary_color, logo_url=payload.logo_url
    )
    return _detail(org)


@router.get("/organizations/{slug}/members", response_model=List[schemas.MemberOut])
def list_members(
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, ("org_admin",), action="list_members")
    return [
        schemas.MemberOut(
            user_id=m.user_id,
            email=m.user.email,
            first_name=m.user.first_name,
            last_name=m.user.last_name,
            role=m.role,
            is_active=m.is_active,
        )
        for m in MembershipRepository(db).list_members(org.id)
    ]


@router.post("/organizations/{slug}/members", response_model=schemas.MemberOut)
def upsert_member(
    payload: schemas.MemberUpsert,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    role = auth.require_org_role(db, org, current_user, ("org_admin",), action="manage_members")
    if payload.role == "super_admin" and role != "super_admin":
        raise HTTPException(status_code=403, detail="Only super admins can grant super_admin")
    m = MembershipRepository(db).upsert_member(
        org.id,
        payload.email,
        payload.role,
        first_name=payload.first_name,
        last_name=payload.last_name,
        is_active=payload.is_active,
    )
    return schemas.MemberOut(
        user_id=m.user_id,
        email=m.user.email,
        first_name=m.user.first_name,
        last_name=m.user.last_name,
        role=m.role,
        is_active=m.is_active,
    )
