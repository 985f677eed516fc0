from fastapi import APIRouter

from .bookings import router as bookings_router
from .budget import router as budget_router
from .content import router as content_router
from .email import router as email_router
from .health import router as health_router
from .organizations import router as organizations_router
from .surveys import router as surveys_router

router = APIRouter()

router.include_router(health_router, tags=["health"])
router.include_router(organizations_router, tags=["organizations"])
router.include_router(content_router, tags=["content"])
router.include_router(bookings_router, tags=["bookings"])
router.include_router(budget_router, tags=["budget"])
router.include_router(email_router, tags=["email"])
router.include_router(surveys_router, tags=["surveys"])


@router.get("/info")
def api_v1_info():
    return {
        "version": "v1",
        "description": "Infra24 multi-tenant arts organization API",
        "endpoints": {
            "health": "/api/v1/health",
            "tenant": "/api/v1/tenant/current",
            "organizations": "/api/v1/organizations",
            "workshops": "/api/v1/organizations/{slug}/workshops",
            "announcements": "/api/v1/organizations/{slug}/announcements",
            "artists": "/api/v1/organizations/{slug}/artists",
            "courses": "/api/v1/organizations/{slug}/courses",
            "resources": "/api/v1/organizations/{slug}/resources",
            "bookings": "/api/v1/organizations/{slug}/bookings",
            "budget": "/api/v1/organizations/{slug}/budget",
            "surveys": "/api/v1/organizations/{slug}/surveys",
            "webhooks": "/api/v1/webhooks/resend",
        },
    }
