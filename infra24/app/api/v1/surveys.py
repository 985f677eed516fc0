"""Surveys, invitations, responses, magic links and analytics."""

from typing import Iterator, List, Literal, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from infra24.app.auth import core as auth
from infra24.app.crud.core import Page
from infra24.app.db.core import get_db
from infra24.app.middleware.logging import client_ip
from infra24.app.models.core import Organization, Survey, User, naive_datetimes
from infra24.app.repositories.surveys import (
    InvitationRepository,
    ResponseRepository,
    SurveyRepository,
)
from infra24.app.schemas import core as schemas
from infra24.app.services.email import EmailService
from infra24.app.services.magic_links import (
    find_or_create_survey_user,
    generate_magic_link,
    validate_magic_link,
)
from infra24.app.services.surveys import (
    send_survey_invitations,
    submit_response,
    survey_analytics,
)

router = APIRouter()


def get_email_service(db: Session = Depends(get_db)) -> Iterator[EmailService]:
    service = EmailService(db)
    try:
        yield service
    finally:
        service.close()


def _load_survey(db: Session, survey_id: str) -> Tuple[Survey, Organization]:
    survey = SurveyRepository(db).get_any(survey_id)
    org = db.get(Organization, survey.organization_id) if survey else None
    if survey is None or org is None or not org.is_active:
        raise HTTPException(status_code=404, detail="Survey not found")
    return survey, org


@router.get("/organizations/{slug}/surveys")
def list_surveys(
    status: Optional[schemas.SurveyStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, action="list_surveys")
    repo = SurveyRepository(db)
    filters = {"status": status}
    search_spec = (search, ("title", "description"))
    rows = repo.list(org.id, filters=filters, search=search_spec, skip=(page - 1) * limit, limit=limit)
    total = repo.count(org.id, filters=filters, search=search_spec)
    return Page([schemas.SurveyOut.model_validate(r) for r in rows], page, limit, total).to_dict()


@router.post("/organizations/{slug}/surveys", response_model=schemas.SurveyOut, status_code=201)
def create_survey(
    payload: schemas.SurveyCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="create_survey")
    data = naive_datetimes(payload.model_dump())
    data["created_by"] = current_user.id
    return SurveyRepository(db).create(org.id, data)


@router.get("/surveys/{survey_id}", response_model=schemas.SurveyOut)
def get_survey(
    survey_id: str,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    """Active surveys are public; drafts and closed surveys only for members."""
    survey, org = _load_survey(db, survey_id)
    if survey.status != "active" and not auth.has_org_role(db, current_user, org):
        raise HTTPException(status_code=404, detail="Survey not found")
    return survey


@router.patch("/surveys/{survey_id}", response_model=schemas.SurveyOut)
def update_survey(
    survey_id: str,
    payload: schemas.SurveyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="update_survey")
    data = naive_datetimes(payload.model_dump(exclude_unset=True))
    return SurveyRepository(db).update(org.id, survey.id, data)


@router.delete("/surveys/{survey_id}")
def delete_survey(
    survey_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="delete_survey")
    SurveyRepository(db).delete(org.id, survey.id)
    return {"success": True}


# Invitations


@router.post("/surveys/{survey_id}/invitations", response_model=List[schemas.InvitationOut], status_code=201)
def create_invitations(
    survey_id: str,
    payload: schemas.InvitationCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="invite")
    return InvitationRepository(db).create_many(
        survey,
        [item.model_dump() for item in payload.invitations],
        payload.expires_in_hours,
        created_by=current_user.id,
    )


@router.get("/surveys/{survey_id}/invitations")
def list_invitations(
    survey_id: str,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="list_invitations")
    repo = InvitationRepository(db)
    filters = {"survey_id": survey.id, "status": status}
    rows = repo.list(org.id, filters=filters, skip=(page - 1) * limit, limit=limit)
    total = repo.count(org.id, filters=filters)
    return Page([schemas.InvitationOut.model_validate(r) for r in rows], page, limit, total).to_dict()


@router.post("/surveys/{survey_id}/invitations/send")
def send_invitations(
    survey_id: str,
    payload: schemas.SendInvitationsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
    email_service: EmailService = Depends(get_email_service),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="send_invitations")
    return send_survey_invitations(
        db,
        survey,
        org,
        [r.model_dump() for r in payload.recipients],
        language=payload.language,
        email_service=email_service,
    )


# Responses


@router.post("/surveys/{survey_id}/responses", response_model=schemas.SurveyResponseOut, status_code=201)
def create_response(
    survey_id: str,
    payload: schemas.SurveyResponseCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    survey, _ = _load_survey(db, survey_id)
    return submit_response(
        db,
        survey,
        payload.response_data,
        user=current_user,
        invitation_token=payload.invitation_token,
        magic_token=payload.magic_token,
        respondent_email=payload.respondent_email,
        respondent_role=payload.respondent_role,
        completion_time_seconds=payload.completion_time_seconds,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/surveys/{survey_id}/responses")
def list_responses(
    survey_id: str,
    status: Optional[str] = None,
    role: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, action="list_responses")
    repo = ResponseRepository(db)
    filters = {"survey_id": survey.id, "status": status, "respondent_role": role}
    rows = repo.list(org.id, filters=filters, skip=(page - 1) * limit, limit=limit)
    total = repo.count(org.id, filters=filters)
    return Page([schemas.SurveyResponseOut.model_validate(r) for r in rows], page, limit, total).to_dict()


# Magic links


@router.post("/surveys/{survey_id}/magic-links", response_model=schemas.MagicLinkOut, status_code=201)
def create_magic_link(
    survey_id: str,
    payload: schemas.MagicLinkRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, ("org_admin",), action="create_magic_link")
    link = generate_magic_link(
        db, payload.email, survey.id, org.id, metadata=payload.metadata, ttl_hours=payload.ttl_hours
    )
    return schemas.MagicLinkOut(token=link.token, url=link.url, expires_at=link.expires_at)


@router.post("/survey-access", response_model=schemas.SurveyAccessOut)
def survey_access(payload: schemas.SurveyAccessRequest, db: Session = Depends(get_db)):
    """Exchange a magic-link token for survey access; the token is consumed."""
    result = validate_magic_link(db, payload.token)
    if not result.valid:
        raise HTTPException(status_code=400, detail=result.error)
    data = result.data
    organization_id = data["organization_id"]
    if organization_id is None and data["survey_id"]:
        survey = SurveyRepository(db).get_any(data["survey_id"])
        organization_id = survey.organization_id if survey else None
    if organization_id is None:
        raise HTTPException(status_code=400, detail="Link is not bound to an organization")
    user = find_or_create_survey_user(db, data["email"], organization_id, data["metadata"])
    return schemas.SurveyAccessOut(
        survey_id=data["survey_id"],
        organization_id=organization_id,
        email=data["email"],
        user_id=user.id,
        metadata=data["metadata"],
    )


@router.get("/surveys/{survey_id}/analytics")
def get_analytics(
    survey_id: str,
    date_range: Literal["7d", "30d", "90d", "1y"] = "30d",
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    survey, org = _load_survey(db, survey_id)
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="view_analytics")
    return survey_analytics(db, survey, date_range)
