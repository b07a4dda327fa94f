"""
Visibility / Scope Filter — which projects, reports and documents a principal may read.

The predicate is applied in SQL, never after loading rows:

    admin_lead, head_consultant  → every record
    project_lead                 → projects where they hold the project_lead
                                   team assignment (team table, not the cache)
    client                       → projects owned by their linked client
    any other / unknown role     → nothing

Routing (``role_resolver``) falls back to the least-privileged page; data
access falls back to an empty result. Out-of-scope lookups by id surface as
``NotFoundError``, the same as a missing row.

Documents add two paths on top of the project scope: the admin team sees
every document and uploaders always see their own files.

Usage:
    from app.services.scope_filter import list_visible_projects, get_visible_project

    items, total = list_visible_projects(principal, page=1, per_page=20)
    project = get_visible_project(principal, 42)
"""

import logging

from flask import current_app
from sqlalchemy import false, func, or_, select, true

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.document import DOCUMENT_STATUSES, Document
from app.models.project import PROJECT_STATUSES, Project, ProjectTeamMember
from app.models.report import Report
from app.services.role_resolver import normalize_role

logger = logging.getLogger(__name__)

# ── Scope kinds ──────────────────────────────────────────────────────────────

SCOPE_ALL = "all"
SCOPE_ASSIGNED = "assigned"
SCOPE_OWN_CLIENT = "own_client"
SCOPE_NONE = "none"

ROLE_SCOPES = {
    "admin_lead": SCOPE_ALL,
    "head_consultant": SCOPE_ALL,
    "project_lead": SCOPE_ASSIGNED,
    "client": SCOPE_OWN_CLIENT,
}

DEFAULT_PAGE_SIZE = 20


def scope_for_role(role) -> str:
    """Scope kind for a raw role string; unknown roles get SCOPE_NONE."""
    if role is None:
        return SCOPE_NONE
    # normalize_role would map unknown roles to "client"; data access must not
    return ROLE_SCOPES.get(normalize_role(role, default=""), SCOPE_NONE)


def project_scope_predicate(principal):
    """SQL predicate over ``Project`` for what *principal* may see."""
    if principal is None or not principal.is_approved:
        return false()

    scope = scope_for_role(principal.role)
    if scope == SCOPE_ALL:
        return true()
    if scope == SCOPE_ASSIGNED:
        led = (
            select(ProjectTeamMember.project_id)
            .where(ProjectTeamMember.profile_id == principal.id)
            .where(ProjectTeamMember.team_role == "project_lead")
        )
        return Project.id.in_(led)
    if scope == SCOPE_OWN_CLIENT and principal.client_id is not None:
        return Project.client_id == principal.client_id
    return false()


def report_scope_predicate(principal):
    """SQL predicate over ``Report``: reports of visible projects."""
    visible_projects = select(Project.id).where(project_scope_predicate(principal))
    return Report.project_id.in_(visible_projects)


def _clamp_page(page, per_page):
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    page = max(int(page or 1), 1)
    per_page = min(max(int(per_page or DEFAULT_PAGE_SIZE), 1), max_size)
    return page, per_page


def _paginate(stmt, order_by, page, per_page):
    page, per_page = _clamp_page(page, per_page)
    total = db.session.execute(
        select(func.count()).select_from(stmt.subquery())
    ).scalar_one()
    items = db.session.execute(
        stmt.order_by(*order_by).offset((page - 1) * per_page).limit(per_page)
    ).scalars().all()
    return items, total


# ═══════════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════════

def scoped_projects_query(principal, *, status=None, client_id=None, search=None):
    """``select(Project)`` restricted to the principal's scope plus optional filters.

    Caller filters only narrow the result; they can never widen the scope.
    """
    stmt = select(Project).where(project_scope_predicate(principal))
    if status:
        if status not in PROJECT_STATUSES:
            stmt = stmt.where(false())
        else:
            stmt = stmt.where(Project.status == status)
    if client_id is not None:
        stmt = stmt.where(Project.client_id == client_id)
    if search:
        stmt = stmt.where(Project.name.ilike(f"%{search}%"))
    return stmt


def list_visible_projects(principal, *, page=1, per_page=DEFAULT_PAGE_SIZE, **filters):
    stmt = scoped_projects_query(principal, **filters)
    return _paginate(stmt, (Project.created_at.desc(), Project.id.desc()), page, per_page)


def get_visible_project(principal, project_id) -> Project:
    project = db.session.execute(
        select(Project)
        .where(Project.id == project_id)
        .where(project_scope_predicate(principal))
    ).scalar_one_or_none()
    if project is None:
        logger.debug(
            "Project %s not visible to principal %s", project_id,
            principal.id if principal else None,
        )
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def can_view_project(principal, project_id) -> bool:
    try:
        get_visible_project(principal, project_id)
    except NotFoundError:
        return False
    return True


# ═══════════════════════════════════════════════════════════════
# Reports
# ═══════════════════════════════════════════════════════════════

def scoped_reports_query(principal, *, status=None, project_id=None):
    stmt = select(Report).where(report_scope_predicate(principal))
    if status:
        stmt = stmt.where(Report.status == status)
    if project_id is not None:
        stmt = stmt.where(Report.project_id == project_id)
    return stmt


def list_visible_reports(principal, *, page=1, per_page=DEFAULT_PAGE_SIZE, **filters):
    stmt = scoped_reports_query(principal, **filters)
    return _paginate(stmt, (Report.created_at.desc(), Report.id.desc()), page, per_page)


def get_visible_report(principal, report_id) -> Report:
    """Report by id when its project is in scope or the principal authored it."""
    report = db.session.get(Report, report_id)
    if report is None:
        raise NotFoundError(resource="Report", resource_id=report_id)
    if principal is not None and report.author_id == principal.id and not principal.is_deleted:
        return report
    if not can_view_project(principal, report.project_id):
        raise NotFoundError(resource="Report", resource_id=report_id)
    return report


# ═══════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════

# Roles that work the verification queue across every project
DOCUMENT_QUEUE_ROLES = frozenset({"admin_team"})


def document_scope_predicate(principal):
    """SQL predicate over ``Document``: visible projects, the review queue, own uploads."""
    if principal is None or not principal.is_approved:
        return false()
    if normalize_role(principal.role, default="") in DOCUMENT_QUEUE_ROLES:
        return true()
    visible_projects = select(Project.id).where(project_scope_predicate(principal))
    return or_(
        Document.project_id.in_(visible_projects),
        Document.uploaded_by_id == principal.id,
    )


def scoped_documents_query(principal, *, status=None, project_id=None, category=None):
    stmt = select(Document).where(document_scope_predicate(principal))
    if status:
        if status not in DOCUMENT_STATUSES:
            stmt = stmt.where(false())
        else:
            stmt = stmt.where(Document.status == status)
    if project_id is not None:
        stmt = stmt.where(Document.project_id == project_id)
    if category:
        stmt = stmt.where(Document.category == category)
    return stmt


def list_visible_documents(principal, *, page=1, per_page=DEFAULT_PAGE_SIZE, **filters):
    stmt = scoped_documents_query(principal, **filters)
    return _paginate(stmt, (Document.created_at.desc(), Document.id.desc()), page, per_page)


def get_visible_document(principal, document_id) -> Document:
    document = db.session.execute(
        select(Document)
        .where(Document.id == document_id)
        .where(document_scope_predicate(principal))
    ).scalar_one_or_none()
    if document is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    return document
