"""
Shared pytest fixtures for the SLF workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_client / make_profile / make_project / make_member / make_report:
      factories that write straight to the database
    - auth_headers: Bearer token headers for a profile
    - reload: re-read a row past the session cache
    - approval_setup: project + report with the full approval cast
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import Client, Profile
from app.models.project import Project, ProjectTeamMember
from app.models.report import Report
from app.services.jwt_service import generate_access_token
from app.services.project_lifecycle import sync_project_lead


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def reload():
    """Fresh copy of a row, bypassing whatever the session has cached."""
    def _reload(model, pk):
        _db.session.expire_all()
        return _db.session.get(model, pk)
    return _reload


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_client():
    def _make(name="PT Gedung Sejahtera", **kwargs):
        c = Client(name=name, **kwargs)
        _db.session.add(c)
        _db.session.commit()
        return c
    return _make


@pytest.fixture()
def make_profile():
    counter = {"n": 0}

    def _make(role="inspector", status="approved", client=None, email=None, **kwargs):
        counter["n"] += 1
        p = Profile(
            email=email or f"{role}{counter['n']}@slfconsult.id",
            full_name=kwargs.pop("full_name", f"{role.replace('_', ' ').title()} {counter['n']}"),
            role=role,
            status=status,
            client_id=client.id if client is not None else None,
            **kwargs,
        )
        _db.session.add(p)
        _db.session.commit()
        return p
    return _make


@pytest.fixture()
def make_project(make_client):
    def _make(client=None, name="Gedung Perkantoran A", status="draft", **kwargs):
        client = client or make_client()
        project = Project(name=name, client_id=client.id, status=status, **kwargs)
        _db.session.add(project)
        _db.session.commit()
        return project
    return _make


@pytest.fixture()
def make_member():
    """Assign a profile to a project team and refresh the cached lead."""
    def _make(project, profile, team_role="inspector"):
        member = ProjectTeamMember(project_id=project.id, profile_id=profile.id, team_role=team_role)
        _db.session.add(member)
        sync_project_lead(project)
        _db.session.commit()
        return member
    return _make


@pytest.fixture()
def make_report():
    def _make(project, author, status="submitted", title="Laporan Pemeriksaan SLF", **kwargs):
        report = Report(
            project_id=project.id, author_id=author.id, title=title, status=status, **kwargs,
        )
        _db.session.add(report)
        _db.session.commit()
        return report
    return _make


@pytest.fixture()
def auth_headers():
    def _headers(profile):
        return {"Authorization": f"Bearer {generate_access_token(profile.id, profile.role)}"}
    return _headers


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def approval_setup(make_client, make_profile, make_project, make_member, make_report):
    """
    One project with a full approval cast:
    admin, project lead, inspector (author), head consultant, client user.
    The project sits at ``inspection_completed`` and the report is ``submitted``.
    """
    owner = make_client("PT Pemilik Gedung")
    admin = make_profile("admin_lead")
    lead = make_profile("project_lead")
    inspector = make_profile("inspector")
    head = make_profile("head_consultant")
    client_user = make_profile("client", client=owner)
    project = make_project(client=owner, status="inspection_completed")
    make_member(project, lead, "project_lead")
    make_member(project, inspector, "inspector")
    report = make_report(project, inspector)
    return {
        "owner": owner,
        "admin": admin,
        "lead": lead,
        "inspector": inspector,
        "head": head,
        "client_user": client_user,
        "project": project,
        "report": report,
    }
