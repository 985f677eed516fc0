"""Repositories for surveys, invitations and responses."""

import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func

from infra24.app.core.logging import get_logger, log_database_operation
from infra24.app.crud.core import TenantScopedRepository
from infra24.app.models.core import MagicLink, Survey, SurveyInvitation, SurveyResponse, utcnow

logger = get_logger(__name__)


class SurveyRepository(TenantScopedRepository[Survey]):
    def __init__(self, session):
        super().__init__(session, Survey)

    def get_any(self, survey_id: str) -> Optional[Survey]:
        """Look a survey up without a tenant; callers resolve its organization afterwards."""
        return self.session.get(Survey, survey_id)

    def delete(self, org_id: str, obj_id: str) -> bool:
        """Delete a survey together with its invitations, responses and magic links."""
        if self.get(org_id, obj_id) is None:
            return False
        try:
            for model in (SurveyResponse, SurveyInvitation, MagicLink):
                self.session.query(model).filter(model.survey_id == obj_id).delete(
                    synchronize_session=False
                )
        except Exception:
            self.session.rollback()
            raise
        return super().delete(org_id, obj_id)


class InvitationRepository(TenantScopedRepository[SurveyInvitation]):
    def __init__(self, session):
        super().__init__(session, SurveyInvitation)

    def by_token(self, survey_id: str, token: str) -> Optional[SurveyInvitation]:
        return (
            self.session.query(SurveyInvitation)
            .filter(
                SurveyInvitation.survey_id == survey_id,
                SurveyInvitation.magic_token == token,
            )
            .first()
        )

    def create_many(self, survey: Survey, invitations: Iterable[Dict[str, Any]],
                    expires_in_hours: int, created_by: Optional[str] = None) -> List[SurveyInvitation]:
        start_time = time.time()
        expires_at = utcnow() + timedelta(hours=expires_in_hours)
        rows = []
        try:
            for item in invitations:
                row = SurveyInvitation(
                    organization_id=survey.organization_id,
                    survey_id=survey.id,
                    email=item["email"].strip().lower(),
                    name=item.get("name"),
                    role=item.get("role"),
                    magic_token=secrets.token_urlsafe(32),
                    status="pending",
                    expires_at=expires_at,
                    created_by=created_by,
                )
                self.session.add(row)
                rows.append(row)
            self.session.commit()
            for row in rows:
                self.session.refresh(row)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error creating invitations for survey {survey.id}: {e}")
            raise
        log_database_operation(
            "INSERT", "survey_invitations", (time.time() - start_time) * 1000, len(rows)
        )
        return rows

    def mark_sent(self, survey_id: str, emails: Iterable[str], when: Optional[datetime] = None) -> int:
        emails = {e.strip().lower() for e in emails if e}
        if not emails:
            return 0
        when = when or utcnow()
        try:
            rows = (
                self.session.query(SurveyInvitation)
                .filter(
                    SurveyInvitation.survey_id == survey_id,
                    SurveyInvitation.email.in_(emails),
                    SurveyInvitation.status.in_(("pending", "sent")),
                )
                .all()
            )
            for row in rows:
                row.status = "sent"
                row.sent_at = when
            self.session.commit()
            return len(rows)
        except Exception:
            self.session.rollback()
            raise


class ResponseRepository(TenantScopedRepository[SurveyResponse]):
    def __init__(self, session):
        super().__init__(session, SurveyResponse)

    def completed_count(self, survey_id: str, user_id: Optional[str] = None) -> int:
        query = self.session.query(func.count(SurveyResponse.id)).filter(
            SurveyResponse.survey_id == survey_id,
            SurveyResponse.status == "completed",
        )
        if user_id is not None:
            query = query.filter(SurveyResponse.user_id == user_id)
        return query.scalar() or 0

    def since(self, survey_id: str, start: datetime) -> List[SurveyResponse]:
        start_time = time.time()
        rows = (
            self.session.query(SurveyResponse)
            .filter(
                SurveyResponse.survey_id == survey_id,
                SurveyResponse.created_at >= start,
            )
            .order_by(SurveyResponse.created_at)
            .all()
        )
        log_database_operation(
            "SELECT", "survey_responses", (time.time() - start_time) * 1000, len(rows)
        )
        return rows
