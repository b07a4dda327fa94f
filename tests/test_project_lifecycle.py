"""
Project Status Machine tests.

Tests cover:
  - Closed status set: unknown statuses fail and leave the row untouched
  - Transition table, terminal states, phase/progress mapping
  - Who may move a project (managers, lead, owning client for intake)
  - Team table as the only writable source of the project lead
  - Project create/update endpoints
"""

import pytest

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import AuditLog
from app.models.project import (
    PROJECT_STATUSES,
    PROJECT_TRANSITIONS,
    Project,
    ProjectTeamMember,
    validate_project_transition,
)
from app.services.project_lifecycle import (
    add_team_member,
    create_project,
    get_phase_info,
    lead_from_team,
    reconcile_project_leads,
    remove_team_member,
    transition_project,
    update_project,
)


class TestStatusTable:
    def test_every_status_has_transition_entry(self):
        assert set(PROJECT_TRANSITIONS) == set(PROJECT_STATUSES)
        for targets in PROJECT_TRANSITIONS.values():
            assert set(targets) <= set(PROJECT_STATUSES)

    @pytest.mark.parametrize("terminal", ["slf_issued", "completed", "cancelled"])
    def test_terminal_states_have_no_exits(self, terminal):
        assert PROJECT_TRANSITIONS[terminal] == []

    def test_cancel_reachable_from_active_states(self):
        for status in ("draft", "submitted", "inspection_in_progress", "client_review"):
            assert validate_project_transition(status, "cancelled")

    @pytest.mark.parametrize("status, phase, progress", [
        ("draft", 1, 20),
        ("project_lead_review", 1, 20),
        ("inspection_in_progress", 2, 40),
        ("head_consultant_review", 3, 60),
        ("client_review", 4, 80),
        ("slf_issued", 5, 100),
        ("cancelled", 0, 0),
    ])
    def test_phase_info(self, status, phase, progress):
        info = get_phase_info(status)
        assert info["phase"] == phase
        assert info["progress"] == progress


class TestTransitionProject:
    @pytest.mark.parametrize("bad", ["approved", "DRAFT", "", None, 7, "submitted "])
    def test_unknown_status_fails_and_keeps_prior(self, make_project, make_profile, reload, bad):
        admin = make_profile("admin_lead")
        project = make_project(status="submitted")
        with pytest.raises(ValidationError):
            transition_project(project.id, bad, actor=admin)
        stored = reload(Project, project.id)
        assert stored.status == "submitted"
        assert stored.version == 1

    def test_manager_moves_along_table(self, make_project, make_profile, reload):
        head = make_profile("head_consultant")
        project = make_project(status="draft")
        result = transition_project(project.id, "submitted", actor=head)
        assert result["previous_status"] == "draft"
        assert result["new_status"] == "submitted"
        assert result["phase"] == 1
        stored = reload(Project, project.id)
        assert stored.status == "submitted"
        assert stored.version == 2

    def test_illegal_edge(self, make_project, make_profile, reload):
        admin = make_profile("admin_lead")
        project = make_project(status="draft")
        with pytest.raises(InvalidTransitionError):
            transition_project(project.id, "slf_issued", actor=admin)
        assert reload(Project, project.id).status == "draft"

    def test_terminal_project_is_frozen(self, make_project, make_profile):
        admin = make_profile("admin_lead")
        project = make_project(status="cancelled")
        with pytest.raises(InvalidTransitionError) as exc:
            transition_project(project.id, "draft", actor=admin)
        assert "closed" in str(exc.value)

    def test_missing_project(self, make_profile):
        with pytest.raises(NotFoundError):
            transition_project(9999, "submitted", actor=make_profile("admin_lead"))

    def test_transition_is_audited(self, make_project, make_profile):
        admin = make_profile("admin_lead")
        project = make_project(status="draft")
        transition_project(project.id, "submitted", actor=admin)
        entry = AuditLog.query.filter_by(entity_type="project", entity_id=str(project.id),
                                         action="project.status_change").one()
        assert entry.actor_id == admin.id
        assert entry.diff["status"] == {"old": "draft", "new": "submitted"}

    def test_lead_may_move_own_project(self, make_project, make_profile, make_member):
        lead = make_profile("project_lead")
        project = make_project(status="submitted")
        make_member(project, lead, "project_lead")
        result = transition_project(project.id, "project_lead_review", actor=lead)
        assert result["new_status"] == "project_lead_review"

    def test_inspector_may_not_move_project(self, make_project, make_profile, make_member):
        inspector = make_profile("inspector")
        project = make_project(status="submitted")
        make_member(project, inspector, "inspector")
        with pytest.raises(AuthorizationError):
            transition_project(project.id, "project_lead_review", actor=inspector)

    def test_owning_client_submits_draft_only(self, make_client, make_project, make_profile):
        owner = make_client()
        client_user = make_profile("client", client=owner)
        project = make_project(client=owner, status="draft")

        transition_project(project.id, "submitted", actor=client_user)

        with pytest.raises(AuthorizationError):
            transition_project(project.id, "draft", actor=client_user)

    def test_foreign_client_cannot_submit(self, make_client, make_project, make_profile):
        project = make_project(status="draft")
        stranger = make_profile("client", client=make_client("PT Lain"))
        with pytest.raises(AuthorizationError):
            transition_project(project.id, "submitted", actor=stranger)


class TestProjectLead:
    def test_lead_cache_follows_team(self, make_project, make_profile, reload):
        admin = make_profile("admin_lead")
        lead = make_profile("project_lead")
        project = make_project()

        member = add_team_member(project, lead.id, "project_lead", admin)
        assert reload(Project, project.id).project_lead_id == lead.id

        remove_team_member(reload(Project, project.id), member.id, admin)
        assert reload(Project, project.id).project_lead_id is None

    def test_second_lead_conflicts(self, make_project, make_profile, make_member):
        admin = make_profile("admin_lead")
        project = make_project()
        make_member(project, make_profile("project_lead"), "project_lead")
        with pytest.raises(ConflictError):
            add_team_member(project, make_profile("project_lead").id, "project_lead", admin)

    def test_only_admins_manage_team(self, make_project, make_profile):
        head = make_profile("head_consultant")
        with pytest.raises(AuthorizationError):
            add_team_member(make_project(), make_profile("inspector").id, "inspector", head)

    def test_unknown_team_role(self, make_project, make_profile):
        admin = make_profile("admin_lead")
        with pytest.raises(ValidationError):
            add_team_member(make_project(), make_profile("inspector").id, "observer", admin)

    def test_reconcile_repairs_drifted_cache(self, make_project, make_profile, make_member, reload):
        lead = make_profile("project_lead")
        stray = make_profile("project_lead")
        good = make_project(name="Gedung A")
        drifted = make_project(name="Gedung B")
        make_member(good, lead, "project_lead")
        make_member(drifted, lead, "project_lead")

        drifted.project_lead_id = stray.id
        db.session.commit()

        fixed = reconcile_project_leads()

        assert fixed == [drifted.id]
        assert reload(Project, drifted.id).project_lead_id == lead.id
        assert lead_from_team(drifted.id) == lead.id

    def test_cached_lead_grants_nothing(self, make_project, make_profile, auth_headers, client):
        stray = make_profile("project_lead")
        project = make_project()
        project.project_lead_id = stray.id
        db.session.commit()

        res = client.get(f"/api/v1/projects/{project.id}", headers=auth_headers(stray))
        assert res.status_code == 404


class TestCreateUpdate:
    def test_admin_creates_draft(self, make_client, make_profile, reload):
        admin = make_profile("admin_lead")
        owner = make_client()
        project = create_project(
            {"name": "Ruko Jl. Sudirman", "client_id": owner.id, "floor_count": "4",
             "due_date": "2026-12-31"},
            admin,
        )
        stored = reload(Project, project.id)
        assert stored.status == "draft"
        assert stored.floor_count == 4
        assert stored.created_by_id == admin.id

    @pytest.mark.parametrize("field", ["project_lead_id", "status", "version"])
    def test_protected_fields_are_refused(self, make_client, make_profile, field):
        admin = make_profile("admin_lead")
        with pytest.raises(ValidationError):
            create_project({"name": "X", "client_id": make_client().id, field: 1}, admin)

    def test_non_admin_cannot_create(self, make_client, make_profile):
        with pytest.raises(AuthorizationError):
            create_project({"name": "X", "client_id": make_client().id}, make_profile("project_lead"))

    def test_client_must_exist(self, make_profile):
        with pytest.raises(ValidationError):
            create_project({"name": "X", "client_id": 404}, make_profile("admin_lead"))

    def test_update_refuses_status(self, make_project, make_profile, reload):
        admin = make_profile("admin_lead")
        project = make_project(status="draft")
        with pytest.raises(ValidationError):
            update_project(project, {"status": "completed"}, admin)
        assert reload(Project, project.id).status == "draft"

    def test_update_metadata(self, make_project, make_profile, reload):
        admin = make_profile("admin_lead")
        project = make_project()
        update_project(project, {"city": "Bandung", "building_area": "1250.5"}, admin)
        stored = reload(Project, project.id)
        assert stored.city == "Bandung"
        assert stored.building_area == 1250.5


class TestProjectEndpoints:
    def test_create_and_transition(self, client, make_client, make_profile, auth_headers):
        admin = make_profile("admin_lead")
        owner = make_client()
        headers = auth_headers(admin)

        res = client.post("/api/v1/projects", json={"name": "Hotel Melati", "client_id": owner.id},
                          headers=headers)
        assert res.status_code == 201
        project_id = res.get_json()["id"]

        res = client.post(f"/api/v1/projects/{project_id}/status", json={"status": "submitted"},
                          headers=headers)
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "submitted"

    def test_status_required(self, client, make_project, make_profile, auth_headers):
        project = make_project()
        res = client.post(f"/api/v1/projects/{project.id}/status", json={},
                          headers=auth_headers(make_profile("admin_lead")))
        assert res.status_code == 400

    def test_unknown_status_is_400(self, client, make_project, make_profile, auth_headers, reload):
        project = make_project(status="draft")
        res = client.post(f"/api/v1/projects/{project.id}/status", json={"status": "archived"},
                          headers=auth_headers(make_profile("admin_lead")))
        assert res.status_code == 400
        assert reload(Project, project.id).status == "draft"

    def test_illegal_edge_is_409(self, client, make_project, make_profile, auth_headers):
        project = make_project(status="draft")
        res = client.post(f"/api/v1/projects/{project.id}/status", json={"status": "completed"},
                          headers=auth_headers(make_profile("admin_lead")))
        assert res.status_code == 409
        assert res.get_json()["details"]["current_status"] == "draft"

    def test_pending_principal_cannot_create(self, client, make_client, make_profile, auth_headers):
        pending = make_profile("admin_lead", status="pending")
        res = client.post("/api/v1/projects", json={"name": "X", "client_id": make_client().id},
                          headers=auth_headers(pending))
        assert res.status_code == 403

    def test_add_team_member_endpoint(self, client, make_project, make_profile, auth_headers):
        admin = make_profile("admin_lead")
        lead = make_profile("project_lead")
        project = make_project()
        res = client.post(f"/api/v1/projects/{project.id}/team",
                          json={"profile_id": lead.id, "team_role": "project_lead"},
                          headers=auth_headers(admin))
        assert res.status_code == 201
        assert res.get_json()["project_lead_id"] == lead.id
        assert ProjectTeamMember.query.filter_by(project_id=project.id).count() == 1
