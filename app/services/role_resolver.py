"""
Role Resolver — canonical role keys and landing routes.

Pure functions over static tables; nothing here touches the database.

Legacy profile rows carry roles such as ``" Admin_Lead "``, ``"Team Lead"`` or
``"admin"``. ``normalize_role`` folds them into one canonical key and
``resolve_landing`` maps that key to a dashboard route. Unknown or empty roles
resolve to the least-privileged entry (``client``) instead of failing.

Usage:
    from app.services.role_resolver import resolve_landing

    resolve_landing(" Admin_Lead ")
    # {"role": "admin_lead", "route": "/dashboard/admin-lead", "label": "Admin Lead"}
"""

import re

# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_ROLE = "client"

CANONICAL_ROLES = (
    "superadmin",
    "head_consultant",
    "admin_lead",
    "admin_team",
    "project_lead",
    "inspector",
    "drafter",
    "client",
)

ROLE_ALIASES = {
    "admin": "admin_team",
    "team_lead": "project_lead",
    "team_leader": "project_lead",
}

ROLE_REDIRECT_MAP = {
    "head_consultant": "/dashboard/head-consultant",
    "admin_lead": "/dashboard/admin-lead",
    "admin_team": "/dashboard/admin-team",
    "project_lead": "/dashboard/project-lead",
    "inspector": "/dashboard/inspector",
    "drafter": "/dashboard/drafter",
    "superadmin": "/dashboard/superadmin",
    "client": "/dashboard/client",
}

DEFAULT_ROUTE = ROLE_REDIRECT_MAP[DEFAULT_ROLE]

ROLE_DISPLAY_LABELS = {
    "superadmin": "Super Admin",
    "head_consultant": "Head Consultant",
    "admin_lead": "Admin Lead",
    "admin_team": "Admin Team",
    "project_lead": "Team Leader",
    "inspector": "Inspector",
    "drafter": "Drafter",
    "client": "Client",
}

# Roles allowed to create projects and manage teams
ADMIN_ROLES = frozenset({"superadmin", "admin_lead", "admin_team"})
# Roles allowed to approve/reject/delete principals
USER_ADMIN_ROLES = frozenset({"superadmin", "admin_lead"})

_WHITESPACE = re.compile(r"\s+")


def _fold(raw) -> str:
    if raw is None:
        return ""
    return _WHITESPACE.sub("_", str(raw).strip().lower())


def normalize_role(raw, default: str = DEFAULT_ROLE) -> str:
    """Return the canonical role key for *raw*; never raises.

    Trim, lower-case, collapse whitespace runs into ``_`` then apply legacy
    aliases. Anything still unknown becomes *default*.
    """
    key = _fold(raw)
    key = ROLE_ALIASES.get(key, key)
    if key in ROLE_REDIRECT_MAP:
        return key
    return default


def is_known_role(raw) -> bool:
    """True when *raw* folds to a canonical role or alias without falling back."""
    key = _fold(raw)
    return ROLE_ALIASES.get(key, key) in ROLE_REDIRECT_MAP


def role_route(role) -> str:
    return ROLE_REDIRECT_MAP.get(normalize_role(role), DEFAULT_ROUTE)


def role_display_label(role) -> str:
    key = _fold(role)
    key = ROLE_ALIASES.get(key, key)
    if key in ROLE_DISPLAY_LABELS:
        return ROLE_DISPLAY_LABELS[key]
    if not key:
        return ROLE_DISPLAY_LABELS[DEFAULT_ROLE]
    return " ".join(part.capitalize() for part in key.split("_") if part)


def resolve_landing(raw) -> dict:
    """Return ``{"role", "route", "label"}`` for a raw role string."""
    role = normalize_role(raw)
    return {
        "role": role,
        "route": ROLE_REDIRECT_MAP.get(role, DEFAULT_ROUTE),
        "label": role_display_label(role),
    }
