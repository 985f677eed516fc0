from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from infra24.app.db.core import get_db
from infra24.app.services.health import basic_health, check_database, collect_detailed_health

router = APIRouter()


@router.get("/health")
def health_check():
    """Minimal status for load balancers."""
    return basic_health()


@router.get("/health/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    overall, components = collect_detailed_health(db)
    return {**basic_health(), "status": overall, "components": components}


@router.get("/liveness")
def liveness_check():
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/readiness")
def readiness_check(db: Session = Depends(get_db)):
    """Ready once the database answers; Redis is optional."""
    database = check_database(db)
    timestamp = datetime.now(timezone.utc).isoformat()
    if database["status"] != "healthy":
        return JSONResponse(
            {"status": "not_ready", "error": database.get("error"), "timestamp": timestamp},
            status_code=503,
        )
    return {"status": "ready", "timestamp": timestamp}
