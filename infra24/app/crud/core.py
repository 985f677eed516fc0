"""Generic tenant-scoped CRUD repository.

Every query is filtered by `organization_id` so rows never leak across
tenants. Operations are timed through `log_database_operation` and roll the
session back on failure before re-raising.
"""

import math
import time
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from infra24.app.core.logging import get_logger, log_database_operation

logger = get_logger("database.crud")

ModelT = TypeVar("ModelT")


class TenantScopedRepository(Generic[ModelT]):
    """CRUD over one model that carries an `organization_id` column."""

    def __init__(self, session: Session, model: Type[ModelT]):
        self.session = session
        self.model = model
        self.table = model.__tablename__

    def _filtered(self, org_id: str, filters: Optional[Dict[str, Any]] = None,
                  search: Optional[Tuple[Optional[str], Sequence[str]]] = None):
        stmt = select(self.model).where(self.model.organization_id == org_id)
        for field, value in (filters or {}).items():
            if value is None:
                continue
            stmt = stmt.where(getattr(self.model, field) == value)
        if search:
            text, columns = search
            if text:
                pattern = f"%{text.strip().lower()}%"
                stmt = stmt.where(
                    or_(*[func.lower(getattr(self.model, col)).like(pattern) for col in columns])
                )
        return stmt

    def get(self, org_id: str, obj_id: str) -> Optional[ModelT]:
        start_time = time.time()
        try:
            stmt = select(self.model).where(
                self.model.id == obj_id, self.model.organization_id == org_id
            )
            obj = self.session.execute(stmt).scalar_one_or_none()
            log_database_operation("SELECT", self.table, (time.time() - start_time) * 1000)
            return obj
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error getting {self.table} {obj_id}: {e}")
            raise

    def list(
        self,
        org_id: str,
        filters: Optional[Dict[str, Any]] = None,
        search: Optional[Tuple[Optional[str], Sequence[str]]] = None,
        order_by: Optional[Sequence[Any]] = None,
        skip: int = 0,
        limit: Optional[int] = 100,
    ) -> List[ModelT]:
        start_time = time.time()
        try:
            stmt = self._filtered(org_id, filters, search)
            if order_by is None:
                order_by = [self.model.created_at.desc()]
            stmt = stmt.order_by(*order_by).offset(skip)
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = list(self.session.execute(stmt).scalars().all())
            log_database_operation(
                "SELECT", self.table, (time.time() - start_time) * 1000, len(rows)
            )
            return rows
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error listing {self.table} for organization {org_id}: {e}")
            raise

    def count(
        self,
        org_id: str,
        filters: Optional[Dict[str, Any]] = None,
        search: Optional[Tuple[Optional[str], Sequence[str]]] = None,
    ) -> int:
        start_time = time.time()
        try:
            sub = self._filtered(org_id, filters, search).subquery()
            total = self.session.execute(select(func.count()).select_from(sub)).scalar_one()
            log_database_operation("COUNT", self.table, (time.time() - start_time) * 1000)
            return int(total)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error counting {self.table} for organization {org_id}: {e}")
            raise

    def create(self, org_id: str, data: Dict[str, Any]) -> ModelT:
        start_time = time.time()
        try:
            obj = self.model(**{**data, "organization_id": org_id})
            self.session.add(obj)
            self.session.commit()
            self.session.refresh(obj)
            log_database_operation("INSERT", self.table, (time.time() - start_time) * 1000)
            logger.info(f"Created {self.table} {obj.id} in organization {org_id}")
            return obj
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error creating {self.table} in organization {org_id}: {e}")
            raise

    def update(self, org_id: str, obj_id: str, data: Dict[str, Any]) -> Optional[ModelT]:
        """Apply only the keys present in `data`; None when the row is not in this tenant."""
        obj = self.get(org_id, obj_id)
        if obj is None:
            return None
        start_time = time.time()
        try:
            for field, value in data.items():
                if field in ("id", "organization_id"):
                    continue
                setattr(obj, field, value)
            self.session.commit()
            self.session.refresh(obj)
            log_database_operation("UPDATE", self.table, (time.time() - start_time) * 1000)
            return obj
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error updating {self.table} {obj_id}: {e}")
            raise

    def delete(self, org_id: str, obj_id: str) -> bool:
        obj = self.get(org_id, obj_id)
        if obj is None:
            return False
        start_time = time.time()
        try:
            self.session.delete(obj)
            self.session.commit()
            log_database_operation("DELETE", self.table, (time.time() - start_time) * 1000)
            logger.info(f"Deleted {self.table} {obj_id} from organization {org_id}")
            return True
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error deleting {self.table} {obj_id}: {e}")
            raise


class Page:
    """Paginated response envelope."""

    def __init__(self, items: List[Any], page: int, limit: int, total: int):
        self.items = items
        self.page = page
        self.limit = limit
        self.total = total

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }
