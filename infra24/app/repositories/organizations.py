"""Repository for organizations (tenants) and their memberships."""

import time
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from infra24.app.core.errors import ConflictError
from infra24.app.core.logging import get_logger, log_database_operation
from infra24.app.models.core import Organization, OrgMembership, User

logger = get_logger(__name__)


class OrganizationRepository:
    """Repository for organization database operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_slug(self, slug: str) -> Optional[Organization]:
        start_time = time.time()
        org = self.session.query(Organization).filter(Organization.slug == slug).first()
        log_database_operation("SELECT", "organizations", (time.time() - start_time) * 1000)
        return org

    def list_active(self) -> List[Organization]:
        start_time = time.time()
        orgs = (
            self.session.query(Organization)
            .filter(Organization.is_active.is_(True))
            .order_by(Organization.name)
            .all()
        )
        log_database_operation(
            "SELECT", "organizations", (time.time() - start_time) * 1000, len(orgs)
        )
        return orgs

    def create(self, data: Dict[str, Any]) -> Organization:
        """Create an organization; raises ConflictError on a duplicate slug."""
        if self.get_by_slug(data["slug"]) is not None:
            raise ConflictError(f"Organization slug '{data['slug']}' already exists")
        start_time = time.time()
        try:
            org = Organization(**data)
            self.session.add(org)
            self.session.commit()
            self.session.refresh(org)
            log_database_operation("INSERT", "organizations", (time.time() - start_time) * 1000)
            logger.info(f"Created organization {org.id} ({org.slug})")
            return org
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(f"Organization slug '{data['slug']}' already exists")
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error creating organization {data.get('slug')}: {e}")
            raise

    def update_theme(self, org: Organization, theme: Dict[str, Any],
                     primary_color: Optional[str] = None,
                     logo_url: Optional[str] = None) -> Organization:
        """Merge theme keys into the stored theme and update branding fields."""
        start_time = time.time()
        try:
            merged = dict(org.theme or {})
            merged.update(theme or {})
            if primary_color:
                merged["primary_color"] = primary_color
                org.primary_color = primary_color
            elif merged.get("primary_color"):
                org.primary_color = merged["primary_color"]
            if logo_url:
                merged["logo"] = logo_url
                org.logo_url = logo_url
            org.theme = merged
            self.session.commit()
            self.session.refresh(org)
            log_database_operation("UPDATE", "organizations", (time.time() - start_time) * 1000)
            return org
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error updating theme for {org.slug}: {e}")
            raise


class MembershipRepository:
    """Users and their organization memberships."""

    def __init__(self, session: Session):
        self.session = session

    def get_user_by_email(self, email: str) -> Optional[User]:
        return (
            self.session.query(User)
            .filter(User.email == email.strip().lower())
            .first()
        )

    def get(self, user_id: str, org_id: str) -> Optional[OrgMembership]:
        return (
            self.session.query(OrgMembership)
            .filter(
                OrgMembership.user_id == user_id,
                OrgMembership.organization_id == org_id,
            )
            .first()
        )

    def list_members(self, org_id: str) -> List[OrgMembership]:
        start_time = time.time()
        rows = (
            self.session.query(OrgMembership)
            .join(User, OrgMembership.user_id == User.id)
            .filter(OrgMembership.organization_id == org_id)
            .order_by(User.email)
            .all()
        )
        log_database_operation(
            "SELECT", "org_memberships", (time.time() - start_time) * 1000, len(rows)
        )
        return rows

    def upsert_member(self, org_id: str, email: str, role: str,
                      first_name: Optional[str] = None,
                      last_name: Optional[str] = None,
                      is_active: bool = True,
                      created_via: str = "admin_invite") -> OrgMembership:
        """Create the user if needed and set their role in the organization."""
        start_time = time.time()
        try:
            user = self.get_user_by_email(email)
            if user is None:
                user = User(
                    email=email.strip().lower(),
                    first_name=first_name,
                    last_name=last_name,
                    created_via=created_via,
                )
                self.session.add(user)
                self.session.flush()
            else:
                if first_name and not user.first_name:
                    user.first_name = first_name
                if last_name and not user.last_name:
                    user.last_name = last_name

            membership = self.get(user.id, org_id)
            if membership is None:
                membership = OrgMembership(
                    user_id=user.id, organization_id=org_id, role=role, is_active=is_active
                )
                self.session.add(membership)
            else:
                membership.role = role
                membership.is_active = is_active
            self.session.commit()
            self.session.refresh(membership)
            log_database_operation("UPSERT", "org_memberships", (time.time() - start_time) * 1000)
            return membership
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error upserting membership for {email} in {org_id}: {e}")
            raise
