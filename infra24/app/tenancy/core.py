"""Tenant configuration, host/path resolution and built-in tenant seeding."""

import copy
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger
from infra24.app.models.core import Organization

logger = get_logger("infra24.tenancy")

FEATURE_FLAGS = (
    "smart_sign",
    "bookings",
    "submissions",
    "analytics",
    "workshops",
    "calendar",
    "budget",
    "surveys",
    "courses",
)

_DEFAULT_SETTINGS = {
    "timezone": "America/New_York",
    "date_format": "MM/DD/YYYY",
    "currency": "USD",
    "language": "en",
}


def _features(**enabled: bool) -> Dict[str, bool]:
    return {flag: bool(enabled.get(flag, False)) for flag in FEATURE_FLAGS}


TENANT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "bakehouse": {
        "slug": "bakehouse",
        "name": "Bakehouse Art Complex",
        "domain": "bakehouse.infra24.com",
        "subdomain": "bakehouse",
        "theme": {
            "primary_color": "#8B4513",
            "secondary_color": "#D2691E",
            "accent_color": "#CD853F",
            "logo": "/logos/bakehouse-logo.png",
            "favicon": "/favicons/bakehouse-favicon.ico",
        },
        "features": _features(
            smart_sign=True, bookings=True, submissions=True, analytics=True,
            workshops=True, calendar=True, budget=True, surveys=True, courses=True,
        ),
        "settings": dict(_DEFAULT_SETTINGS),
    },
    "oolite": {
        "slug": "oolite",
        "name": "Oolite Arts",
        "domain": "oolite.infra24.com",
        "subdomain": "oolite",
        "theme": {
            "primary_color": "#1E40AF",
            "secondary_color": "#3B82F6",
            "accent_color": "#60A5FA",
            "logo": "/logos/oolite-logo.png",
            "favicon": "/favicons/oolite-favicon.ico",
            "banner": "https://res.cloudinary.com/dck5rzi4h/image/upload/v1758247127/smart-sign/orgs/oolite/oolite-digital-arts-program_ai-sketch_mqtbm9.png",
        },
        "features": _features(
            smart_sign=True, bookings=True, submissions=True, analytics=True,
            workshops=True, calendar=True, budget=True, surveys=True, courses=True,
        ),
        "settings": dict(_DEFAULT_SETTINGS),
    },
    "edgezones": {
        "slug": "edgezones",
        "name": "Edge Zones",
        "domain": "edgezones.infra24.com",
        "subdomain": "edgezones",
        "theme": {
            "primary_color": "#DC2626",
            "secondary_color": "#EF4444",
            "accent_color": "#F87171",
            "logo": "/logos/edgezones-logo.png",
            "favicon": "/favicons/edgezones-favicon.ico",
        },
        "features": _features(
            smart_sign=True, submissions=True, analytics=True, surveys=True,
        ),
        "settings": dict(_DEFAULT_SETTINGS),
    },
    "locust": {
        "slug": "locust",
        "name": "Locust Projects",
        "domain": "locust.infra24.com",
        "subdomain": "locust",
        "theme": {
            "primary_color": "#059669",
            "secondary_color": "#10B981",
            "accent_color": "#34D399",
            "logo": "/logos/locust-logo.png",
            "favicon": "/favicons/locust-favicon.ico",
        },
        "features": _features(
            smart_sign=True, bookings=True, submissions=True, analytics=True,
            workshops=True, calendar=True, surveys=True,
        ),
        "settings": dict(_DEFAULT_SETTINGS),
    },
    "ai24": {
        "slug": "ai24",
        "name": "AI24",
        "domain": "ai24.infra24.com",
        "subdomain": "ai24",
        "theme": {
            "primary_color": "#7C3AED",
            "secondary_color": "#8B5CF6",
            "accent_color": "#A78BFA",
            "logo": "/logos/ai24-logo.png",
            "favicon": "/favicons/ai24-favicon.ico",
        },
        "features": _features(analytics=True, workshops=True, courses=True),
        "settings": dict(_DEFAULT_SETTINGS),
    },
}


def get_tenant_config(slug: Optional[str]) -> Optional[Dict[str, Any]]:
    if not slug:
        return None
    return TENANT_CONFIGS.get(slug)


def get_all_tenants() -> List[Dict[str, Any]]:
    return list(TENANT_CONFIGS.values())


def _subdomain_match(hostname: str, suffix: str) -> Optional[str]:
    if not hostname.endswith(suffix):
        return None
    subdomain = hostname.split(".")[0]
    if not subdomain or subdomain == "www":
        return None
    for slug, cfg in TENANT_CONFIGS.items():
        if cfg.get("subdomain") == subdomain:
            return slug
    return None


def resolve_tenant_slug(host: Optional[str], path: str = "/") -> Optional[str]:
    """Work out which tenant a request targets.

    Order: exact configured domain, subdomain of the platform root domain,
    legacy ``.digital`` subdomain, then ``/o/<slug>`` path routing.
    """
    settings = _config.settings
    hostname = (host or "").split(":")[0].strip().lower()

    if hostname:
        for slug, cfg in TENANT_CONFIGS.items():
            if hostname == cfg.get("domain"):
                return slug

        slug = _subdomain_match(hostname, "." + settings.TENANT_ROOT_DOMAIN)
        if slug:
            return slug

        slug = _subdomain_match(hostname, settings.LEGACY_TENANT_SUFFIX)
        if slug:
            return slug

    segments = [s for s in (path or "").split("/") if s]
    if len(segments) >= 2 and segments[0] == "o":
        return segments[1]

    return None


def organization_config(org: Organization) -> Dict[str, Any]:
    """Config dict for a stored organization, falling back to the built-in one."""
    base = copy.deepcopy(TENANT_CONFIGS.get(org.slug) or {})
    theme = dict(base.get("theme") or {})
    theme.update(org.theme or {})
    if org.primary_color:
        theme["primary_color"] = org.primary_color
    if org.logo_url:
        theme["logo"] = org.logo_url
    features = dict(base.get("features") or {})
    features.update(org.features or {})
    settings = dict(base.get("settings") or _DEFAULT_SETTINGS)
    settings.update(org.settings or {})
    return {
        "slug": org.slug,
        "name": org.name,
        "domain": org.domain or base.get("domain"),
        "subdomain": org.subdomain or base.get("subdomain"),
        "theme": theme,
        "features": features,
        "settings": settings,
    }


def is_feature_enabled(config: Optional[Dict[str, Any]], feature: str) -> bool:
    if not config:
        return False
    return bool((config.get("features") or {}).get(feature, False))


def tenant_css_variables(config: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not config:
        return {}
    theme = config.get("theme") or {}
    variables = {
        "--tenant-primary": theme.get("primary_color", ""),
        "--tenant-secondary": theme.get("secondary_color", ""),
        "--tenant-accent": theme.get("accent_color", ""),
    }
    if theme.get("logo"):
        variables["--tenant-logo"] = f"url({theme['logo']})"
    return variables


def tenant_metadata(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not config:
        return {}
    theme = config.get("theme") or {}
    return {
        "title": config["name"],
        "description": f"{config['name']} - Cultural Infrastructure Platform",
        "favicon": theme.get("favicon"),
        "logo": theme.get("logo"),
    }


def seed_default_tenants(db: Session) -> List[Organization]:
    """Insert the built-in tenants that are not in the database yet."""
    existing = {slug for (slug,) in db.query(Organization.slug).all()}
    created = []
    try:
        for slug, cfg in TENANT_CONFIGS.items():
            if slug in existing:
                continue
            org = Organization(
                slug=slug,
                name=cfg["name"],
                domain=cfg["domain"],
                subdomain=cfg.get("subdomain"),
                theme=copy.deepcopy(cfg["theme"]),
                features=dict(cfg["features"]),
                settings=dict(cfg["settings"]),
                primary_color=cfg["theme"]["primary_color"],
                logo_url=cfg["theme"].get("logo"),
                is_active=True,
            )
            db.add(org)
            created.append(org)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to seed default tenants")
        raise
    if created:
        logger.info(f"Seeded {len(created)} tenant(s): {', '.join(o.slug for o in created)}")
    return created
