"""Identity-token verification and organization access checks.

Tokens are issued by the external identity provider; this module only
verifies them. It prefers the middleware-injected payload
(`request.state.jwt_payload`) when available.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger, log_permission_check, user_id_var
from infra24.app.db.core import get_db
from infra24.app.models.core import Organization, OrgMembership, User

logger = get_logger("auth")

bearer_scheme = HTTPBearer(auto_error=False)

MODERATING_ROLES = ("org_admin", "moderator")
# Staff of an organization. survey_respondent memberships come from magic links
# and only grant access to the survey they were issued for.
MEMBER_ROLES = ("org_admin", "moderator", "member")


def verify_identity_token(token: str) -> Dict[str, Any]:
    """Decode an identity-provider JWT; raises `JWTError` when it is invalid."""
    settings = _config.settings
    return jwt.decode(
        token,
        settings.IDENTITY_JWT_SECRET,
        algorithms=[settings.IDENTITY_JWT_ALGORITHM],
        audience=settings.IDENTITY_JWT_AUDIENCE,
        options={"verify_aud": bool(settings.IDENTITY_JWT_AUDIENCE)},
    )


def decode_token(token: str) -> Dict[str, Any]:
    """Decode an identity-provider JWT and return the payload or raise 401 on error."""
    try:
        return verify_identity_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _get_payload(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Dict[str, Any]]:
    mw_payload = getattr(request.state, "jwt_payload", None)
    if mw_payload:
        return mw_payload
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def _user_from_payload(db: Session, payload: Dict[str, Any]) -> Optional[User]:
    external_id = payload.get("sub")
    if not external_id:
        return None
    user = db.query(User).filter(User.external_id == str(external_id)).first()
    if user is not None:
        return user

    # First sign-in of someone invited by email: attach the provider id, but
    # only for an address the provider has verified
    email = (payload.get("email") or "").strip().lower()
    if not email or payload.get("email_verified") is not True:
        return None
    user = (
        db.query(User)
        .filter(User.email == email, User.external_id.is_(None))
        .first()
    )
    if user is not None:
        user.external_id = str(external_id)
        db.commit()
        logger.info(f"Linked identity {external_id} to existing user {user.id}")
    return user


def get_optional_user(
    db: Session = Depends(get_db),
    payload: Optional[Dict[str, Any]] = Depends(_get_payload),
) -> Optional[User]:
    """Current user, or None for anonymous callers."""
    if not payload:
        return None
    user = _user_from_payload(db, payload)
    if user is not None:
        user_id_var.set(user.id)
    return user


def get_current_user(
    db: Session = Depends(get_db),
    payload: Optional[Dict[str, Any]] = Depends(_get_payload),
) -> User:
    """Return the current user; raises 401 if token is absent, invalid or unknown."""
    if not payload:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = _user_from_payload(db, payload)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    user_id_var.set(user.id)
    return user


def get_organization(slug: str, db: Session = Depends(get_db)) -> Organization:
    """Path dependency resolving `{slug}` to an active organization or 404."""
    org = db.query(Organization).filter(Organization.slug == slug).first()
    if org is None or not org.is_active:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


def get_membership(db: Session, user: Optional[User], org: Organization) -> Optional[OrgMembership]:
    if user is None:
        return None
    return (
        db.query(OrgMembership)
        .filter(
            OrgMembership.user_id == user.id,
            OrgMembership.organization_id == org.id,
            OrgMembership.is_active.is_(True),
        )
        .first()
    )


def is_super_admin(db: Session, user: Optional[User]) -> bool:
    if user is None:
        return False
    return (
        db.query(OrgMembership.id)
        .filter(
            OrgMembership.user_id == user.id,
            OrgMembership.role == "super_admin",
            OrgMembership.is_active.is_(True),
        )
        .first()
        is not None
    )


def effective_role(db: Session, user: Optional[User], org: Organization) -> Optional[str]:
    """Role the user acts with inside `org`; super admins act as super_admin everywhere."""
    if user is None:
        return None
    if is_super_admin(db, user):
        return "super_admin"
    membership = get_membership(db, user, org)
    return membership.role if membership else None


def has_org_role(db: Session, user: Optional[User], org: Organization, roles: Iterable[str] = ()) -> bool:
    role = effective_role(db, user, org)
    if role is None:
        return False
    if role == "super_admin":
        return True
    return role in (tuple(roles) or MEMBER_ROLES)


def require_org_role(db: Session, org: Organization, user: User, roles: Iterable[str] = (), action: str = "access") -> str:
    """Raise 403 unless the user is a super admin or holds one of `roles` in `org`.

    An empty `roles` accepts any staff membership (`MEMBER_ROLES`). Returns the
    effective role.
    """
    roles = tuple(roles)
    allowed = has_org_role(db, user, org, roles)
    log_permission_check(
        resource=f"organization:{org.slug}",
        action=action,
        user_id=user.id,
        tenant_id=org.id,
        allowed=allowed,
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return effective_role(db, user, org)


def require_super_admin(db: Session = Depends(get_db), user: User = Depends(get_current_user)) -> User:
    if not is_super_admin(db, user):
        log_permission_check("platform", "admin", user.id, "", False)
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return user
