"""
Project document verification tests.

Tests cover:
  - Upload guards: membership, category, file metadata, terminal projects
  - The admin team → project lead → head consultant chain
  - Out-of-turn and non-reviewer decisions, idempotent repeats
  - Returned documents and re-upload
  - Compare-and-set conflicts with a single retry
  - Visibility: review queue, own uploads, client and team scope
  - Notifications and the per-project summary, over the service and HTTP
"""

import pytest
from sqlalchemy import update

from app.core.exceptions import (
    AuthorizationError,
    ConflictingTransitionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import AuditLog
from app.models.document import Document
from app.models.notification import Notification
from app.services import document_review
from app.services import notification as notification_module
from app.services.document_review import (
    document_summary,
    review_document,
    revise_document,
    upload_document,
)
from app.services.scope_filter import get_visible_document, list_visible_documents

PERMIT = {
    "name": "IMB Gedung A.pdf",
    "category": "building_permit",
    "storage_path": "projects/1/imb-gedung-a.pdf",
    "mime_type": "application/pdf",
    "file_size": 48213,
}


@pytest.fixture()
def doc_setup(approval_setup, make_profile):
    """The approval cast plus an admin team verifier and one pending document from the client."""
    s = dict(approval_setup)
    s["verifier"] = make_profile("admin_team")
    s["document"] = upload_document(s["project"].id, dict(PERMIT), s["client_user"])
    return s


def _walk_to(s, status):
    steps = {
        "verified_by_admin_team": [s["verifier"]],
        "approved_by_pl": [s["verifier"], s["lead"]],
        "approved_by_hc": [s["verifier"], s["lead"], s["head"]],
    }
    for reviewer in steps[status]:
        review_document(s["document"].id, "approve", principal=reviewer)


def _inbox(profile):
    return (
        Notification.query.filter_by(recipient_id=profile.id, related_type="document")
        .order_by(Notification.id).all()
    )


class TestUpload:
    def test_upload_starts_pending(self, doc_setup):
        doc = doc_setup["document"]
        assert doc.status == "pending"
        assert doc.revision == 1
        assert doc.version == 1
        assert doc.uploaded_by_id == doc_setup["client_user"].id
        assert doc.category == "building_permit"

    def test_upload_is_audited(self, doc_setup):
        entries = AuditLog.query.filter_by(entity_type="document", entity_id=doc_setup["document"].id).all()
        assert [e.action for e in entries] == ["document.upload"]

    def test_team_member_may_upload(self, approval_setup):
        s = approval_setup
        doc = upload_document(s["project"].id, dict(PERMIT), s["inspector"])
        assert doc.uploaded_by_id == s["inspector"].id

    def test_category_defaults_to_other(self, approval_setup):
        s = approval_setup
        data = {k: v for k, v in PERMIT.items() if k != "category"}
        assert upload_document(s["project"].id, data, s["admin"]).category == "other"

    def test_outsider_is_refused(self, approval_setup, make_profile):
        s = approval_setup
        with pytest.raises(AuthorizationError):
            upload_document(s["project"].id, dict(PERMIT), make_profile("inspector"))

    def test_other_client_is_refused(self, approval_setup, make_client, make_profile):
        s = approval_setup
        stranger = make_profile("client", client=make_client("PT Lain"))
        with pytest.raises(AuthorizationError):
            upload_document(s["project"].id, dict(PERMIT), stranger)

    def test_pending_profile_is_refused(self, approval_setup, make_profile):
        s = approval_setup
        waiting = make_profile("client", status="pending", client=s["owner"])
        with pytest.raises(AuthorizationError):
            upload_document(s["project"].id, dict(PERMIT), waiting)

    def test_unknown_category(self, approval_setup):
        s = approval_setup
        with pytest.raises(ValidationError) as exc:
            upload_document(s["project"].id, {**PERMIT, "category": "selfie"}, s["admin"])
        assert exc.value.details["category"] == "invalid"

    @pytest.mark.parametrize("field,value", [
        ("storage_path", ""),
        ("name", "   "),
        ("file_size", -1),
        ("file_size", "12kb"),
    ])
    def test_bad_file_fields(self, approval_setup, field, value):
        s = approval_setup
        with pytest.raises(ValidationError) as exc:
            upload_document(s["project"].id, {**PERMIT, field: value}, s["admin"])
        assert field in exc.value.details
        assert Document.query.count() == 0

    def test_terminal_project_refuses_uploads(self, approval_setup, make_project):
        s = approval_setup
        closed = make_project(client=s["owner"], status="cancelled")
        with pytest.raises(InvalidTransitionError):
            upload_document(closed.id, dict(PERMIT), s["admin"])

    def test_unknown_project(self, approval_setup):
        with pytest.raises(NotFoundError):
            upload_document(999999, dict(PERMIT), approval_setup["admin"])


class TestReviewChain:
    def test_full_chain(self, doc_setup, reload):
        s = doc_setup
        doc_id = s["document"].id

        r1 = review_document(doc_id, "approve", principal=s["verifier"])
        assert (r1["previousStatus"], r1["newStatus"]) == ("pending", "verified_by_admin_team")
        r2 = review_document(doc_id, "approve", principal=s["lead"])
        assert r2["newStatus"] == "approved_by_pl"
        r3 = review_document(doc_id, "approve", principal=s["head"])
        assert r3["newStatus"] == "approved_by_hc"
        assert r3["changed"] is True

        final = reload(Document, doc_id)
        assert final.status == "approved_by_hc"
        assert final.version == 4
        assert final.reviewed_by_id == s["head"].id

    def test_admin_lead_may_verify(self, doc_setup):
        s = doc_setup
        result = review_document(s["document"].id, "approve", principal=s["admin"])
        assert result["newStatus"] == "verified_by_admin_team"

    def test_verifier_requests_revision(self, doc_setup):
        s = doc_setup
        result = review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")
        assert result["newStatus"] == "revision_requested"

    def test_lead_rejection(self, doc_setup, reload):
        s = doc_setup
        _walk_to(s, "verified_by_admin_team")
        review_document(s["document"].id, "reject", principal=s["lead"], notes="Bukan IMB terbaru")
        doc = reload(Document, s["document"].id)
        assert doc.status == "rejected_by_pl"
        assert doc.review_notes == "Bukan IMB terbaru"
        assert doc.is_returned

    def test_head_requests_revision(self, doc_setup):
        s = doc_setup
        _walk_to(s, "approved_by_pl")
        result = review_document(s["document"].id, "reject", principal=s["head"], notes="Stempel hilang")
        assert result["newStatus"] == "revision_requested_by_hc"

    def test_reject_requires_notes(self, doc_setup):
        s = doc_setup
        with pytest.raises(ValidationError) as exc:
            review_document(s["document"].id, "reject", principal=s["verifier"], notes="  ")
        assert exc.value.details["notes"] == "required"

    def test_unknown_action(self, doc_setup):
        with pytest.raises(ValidationError):
            review_document(doc_setup["document"].id, "escalate", principal=doc_setup["verifier"])

    def test_out_of_turn_reviewer_conflicts(self, doc_setup, reload):
        s = doc_setup
        with pytest.raises(InvalidTransitionError) as exc:
            review_document(s["document"].id, "approve", principal=s["head"])
        assert exc.value.current_status == "pending"
        assert reload(Document, s["document"].id).status == "pending"

    def test_non_reviewer_is_forbidden(self, doc_setup):
        s = doc_setup
        with pytest.raises(AuthorizationError):
            review_document(s["document"].id, "approve", principal=s["client_user"])

    def test_lead_of_another_project_cannot_see_it(self, doc_setup, make_profile):
        with pytest.raises(NotFoundError):
            review_document(doc_setup["document"].id, "approve", principal=make_profile("project_lead"))

    def test_repeat_is_a_noop(self, doc_setup, reload):
        s = doc_setup
        _walk_to(s, "verified_by_admin_team")
        before = Notification.query.count()

        again = review_document(s["document"].id, "approve", principal=s["verifier"])

        assert again["changed"] is False
        assert again["newStatus"] == "verified_by_admin_team"
        assert reload(Document, s["document"].id).version == 2
        assert Notification.query.count() == before

    def test_final_document_is_not_reviewable(self, doc_setup):
        s = doc_setup
        _walk_to(s, "approved_by_hc")
        with pytest.raises(InvalidTransitionError):
            review_document(s["document"].id, "reject", principal=s["head"], notes="Terlambat")

    def test_returned_document_waits_for_upload(self, doc_setup):
        s = doc_setup
        review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")
        with pytest.raises(InvalidTransitionError):
            review_document(s["document"].id, "approve", principal=s["lead"])

    def test_decisions_are_audited(self, doc_setup):
        s = doc_setup
        _walk_to(s, "approved_by_pl")
        actions = [
            e.action for e in AuditLog.query.filter_by(entity_type="document", entity_id=s["document"].id)
            .order_by(AuditLog.id)
        ]
        assert actions == ["document.upload", "document.approve", "document.approve"]


class TestRevision:
    def test_revise_returned_document(self, doc_setup, reload):
        s = doc_setup
        review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")

        revise_document(s["document"].id, {"storage_path": "projects/1/imb-v2.pdf"}, s["client_user"])

        doc = reload(Document, s["document"].id)
        assert doc.status == "pending"
        assert doc.revision == 2
        assert doc.storage_path == "projects/1/imb-v2.pdf"
        assert doc.name == PERMIT["name"]
        assert doc.review_notes is None
        assert doc.reviewed_by_id is None

    def test_revised_document_restarts_the_chain(self, doc_setup):
        s = doc_setup
        _walk_to(s, "verified_by_admin_team")
        review_document(s["document"].id, "reject", principal=s["lead"], notes="Salah berkas")
        revise_document(s["document"].id, {"storage_path": "projects/1/imb-v2.pdf"}, s["client_user"])

        with pytest.raises(InvalidTransitionError):
            review_document(s["document"].id, "approve", principal=s["lead"])
        result = review_document(s["document"].id, "approve", principal=s["verifier"])
        assert result["newStatus"] == "verified_by_admin_team"

    def test_pending_document_cannot_be_revised(self, doc_setup):
        s = doc_setup
        with pytest.raises(InvalidTransitionError):
            revise_document(s["document"].id, {"storage_path": "x.pdf"}, s["client_user"])

    def test_only_uploader_or_admin_revises(self, doc_setup, make_profile):
        s = doc_setup
        review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")
        colleague = make_profile("client", client=s["owner"])
        with pytest.raises(AuthorizationError):
            revise_document(s["document"].id, {"storage_path": "x.pdf"}, colleague)

        doc = revise_document(s["document"].id, {"storage_path": "admin-fix.pdf"}, s["admin"])
        assert doc.status == "pending"

    def test_revision_requires_a_file(self, doc_setup):
        s = doc_setup
        review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")
        with pytest.raises(ValidationError):
            revise_document(s["document"].id, {}, s["client_user"])


class TestConcurrentReviews:
    def _interfere(self, monkeypatch, times, status="revision_requested"):
        real = document_review._cas_document_status
        calls = {"n": 0}

        def _racing_cas(document, expected, new_status, **values):
            calls["n"] += 1
            if calls["n"] <= times:
                db.session.execute(
                    update(Document).where(Document.id == document.id)
                    .values(status=status)
                    .execution_options(synchronize_session=False)
                )
            return real(document, expected, new_status, **values)

        monkeypatch.setattr(document_review, "_cas_document_status", _racing_cas)
        return calls

    def test_lost_race_is_retried_once(self, doc_setup, monkeypatch, reload):
        s = doc_setup
        calls = self._interfere(monkeypatch, times=1)

        result = review_document(s["document"].id, "approve", principal=s["verifier"])

        assert calls["n"] == 2
        assert result["newStatus"] == "verified_by_admin_team"
        assert reload(Document, s["document"].id).version == 2

    def test_second_lost_race_surfaces(self, doc_setup, monkeypatch, reload):
        s = doc_setup
        calls = self._interfere(monkeypatch, times=2)

        with pytest.raises(ConflictingTransitionError):
            review_document(s["document"].id, "approve", principal=s["verifier"])
        assert calls["n"] == 2
        assert reload(Document, s["document"].id).status == "pending"

    def test_revision_race_is_retried(self, doc_setup, monkeypatch, reload):
        s = doc_setup
        review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")
        calls = self._interfere(monkeypatch, times=1, status="approved_by_hc")

        revise_document(s["document"].id, {"storage_path": "projects/1/imb-v2.pdf"}, s["client_user"])

        assert calls["n"] == 2
        doc = reload(Document, s["document"].id)
        assert (doc.status, doc.revision) == ("pending", 2)


class TestVisibility:
    def test_queue_role_sees_every_project(self, doc_setup, make_project, make_profile):
        s = doc_setup
        other = make_project(name="Gudang B")
        upload_document(other.id, dict(PERMIT), make_profile("admin_lead"))

        _, total = list_visible_documents(s["verifier"])
        assert total == 2

    def test_client_sees_own_projects_only(self, doc_setup, make_client, make_profile):
        s = doc_setup
        colleague = make_profile("client", client=s["owner"])
        assert get_visible_document(colleague, s["document"].id).id == s["document"].id

        stranger = make_profile("client", client=make_client("PT Lain"))
        with pytest.raises(NotFoundError):
            get_visible_document(stranger, s["document"].id)
        assert list_visible_documents(stranger)[1] == 0

    def test_uploader_sees_own_upload(self, approval_setup, make_profile):
        s = approval_setup
        doc = upload_document(s["project"].id, dict(PERMIT), s["inspector"])
        assert get_visible_document(s["inspector"], doc.id).id == doc.id

        teammate = make_profile("inspector")
        with pytest.raises(NotFoundError):
            get_visible_document(teammate, doc.id)

    def test_team_inspector_without_uploads_sees_nothing(self, doc_setup):
        assert list_visible_documents(doc_setup["inspector"])[1] == 0

    def test_filters(self, doc_setup):
        s = doc_setup
        upload_document(s["project"].id, {**PERMIT, "category": "ownership"}, s["client_user"])
        _walk_to(s, "verified_by_admin_team")

        _, pending = list_visible_documents(s["admin"], status="pending")
        _, ownership = list_visible_documents(s["admin"], category="ownership")
        _, unknown = list_visible_documents(s["admin"], status="lost")
        assert (pending, ownership, unknown) == (1, 1, 0)

    def test_pending_profile_sees_nothing(self, doc_setup, make_profile):
        assert list_visible_documents(make_profile("admin_team", status="pending"))[1] == 0


class TestDocumentNotifications:
    def test_upload_notifies_admin_team(self, doc_setup):
        s = doc_setup
        inbox = _inbox(s["verifier"])
        assert [n.title for n in inbox] == ["Document awaiting review"]
        assert inbox[0].related_id == s["document"].id
        assert _inbox(s["client_user"]) == []

    def test_each_step_notifies_next_reviewer(self, doc_setup):
        s = doc_setup
        _walk_to(s, "verified_by_admin_team")
        assert [n.title for n in _inbox(s["lead"])] == ["Document awaiting review"]

        review_document(s["document"].id, "approve", principal=s["lead"])
        assert [n.title for n in _inbox(s["head"])] == ["Document awaiting review"]

    def test_final_approval_reaches_uploader_once(self, doc_setup):
        s = doc_setup
        _walk_to(s, "approved_by_hc")
        titles = [n.title for n in _inbox(s["client_user"])]
        assert titles == ["Document approved"]
        assert _inbox(s["client_user"])[0].type == "success"

    def test_return_notifies_uploader_with_notes(self, doc_setup):
        s = doc_setup
        review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")
        returned = _inbox(s["client_user"])
        assert len(returned) == 1
        assert returned[0].type == "error"
        assert "Scan buram" in returned[0].message

    def test_failed_lookup_keeps_review(self, doc_setup, monkeypatch, reload):
        s = doc_setup

        def _lookup_down(*args, **kwargs):
            raise RuntimeError("profiles unavailable")

        monkeypatch.setattr(notification_module, "project_lead_ids", _lookup_down)
        result = review_document(s["document"].id, "approve", principal=s["verifier"])
        assert result["newStatus"] == "verified_by_admin_team"
        assert reload(Document, s["document"].id).status == "verified_by_admin_team"


class TestSummary:
    def test_summary_counts(self, doc_setup):
        s = doc_setup
        upload_document(s["project"].id, {**PERMIT, "category": "ownership"}, s["client_user"])
        summary = document_summary(s["project"])
        assert summary["total"] == 2
        assert summary["by_status"]["pending"] == 2
        assert summary["all_approved"] is False

    def test_all_approved(self, doc_setup):
        s = doc_setup
        _walk_to(s, "approved_by_hc")
        assert document_summary(s["project"])["all_approved"] is True

    def test_empty_project_is_not_approved(self, make_project):
        assert document_summary(make_project())["all_approved"] is False


class TestDocumentEndpoints:
    def test_upload_and_fetch(self, client, approval_setup, auth_headers):
        s = approval_setup
        res = client.post(f"/api/v1/projects/{s['project'].id}/documents",
                          json=PERMIT, headers=auth_headers(s["client_user"]))
        assert res.status_code == 201
        doc = res.get_json()
        assert doc["status"] == "pending"

        res = client.get(f"/api/v1/documents/{doc['id']}", headers=auth_headers(s["client_user"]))
        assert res.status_code == 200
        assert res.get_json()["storage_path"] == PERMIT["storage_path"]

    def test_outsider_upload_is_403(self, client, approval_setup, make_profile, auth_headers):
        res = client.post(f"/api/v1/projects/{approval_setup['project'].id}/documents",
                          json=PERMIT, headers=auth_headers(make_profile("inspector")))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_bad_category_is_400(self, client, approval_setup, auth_headers):
        s = approval_setup
        res = client.post(f"/api/v1/projects/{s['project'].id}/documents",
                          json={**PERMIT, "category": "selfie"}, headers=auth_headers(s["admin"]))
        assert res.status_code == 400

    def test_approve_and_reject(self, client, doc_setup, auth_headers):
        s = doc_setup
        doc_id = s["document"].id

        res = client.post(f"/api/v1/documents/{doc_id}/approve", json={}, headers=auth_headers(s["verifier"]))
        assert res.status_code == 200
        assert res.get_json()["newStatus"] == "verified_by_admin_team"

        res = client.post(f"/api/v1/documents/{doc_id}/reject", json={}, headers=auth_headers(s["lead"]))
        assert res.status_code == 400

        res = client.post(f"/api/v1/documents/{doc_id}/reject", json={"notes": "Salah berkas"},
                          headers=auth_headers(s["lead"]))
        assert res.status_code == 200
        assert res.get_json()["newStatus"] == "rejected_by_pl"

    def test_out_of_turn_is_409(self, client, doc_setup, auth_headers):
        s = doc_setup
        res = client.post(f"/api/v1/documents/{s['document'].id}/approve", json={},
                          headers=auth_headers(s["head"]))
        assert res.status_code == 409
        data = res.get_json()
        assert data["code"] == "ERR_CONFLICT_STATE"
        assert data["details"]["current_status"] == "pending"

    def test_out_of_scope_is_404(self, client, doc_setup, make_client, make_profile, auth_headers):
        stranger = make_profile("client", client=make_client("PT Lain"))
        res = client.get(f"/api/v1/documents/{doc_setup['document'].id}", headers=auth_headers(stranger))
        assert res.status_code == 404

    def test_revise(self, client, doc_setup, auth_headers):
        s = doc_setup
        review_document(s["document"].id, "reject", principal=s["verifier"], notes="Scan buram")
        res = client.post(f"/api/v1/documents/{s['document'].id}/revise",
                          json={"storage_path": "projects/1/imb-v2.pdf", "file_size": 50111},
                          headers=auth_headers(s["client_user"]))
        assert res.status_code == 200
        assert res.get_json()["revision"] == 2

    def test_list_and_summary(self, client, doc_setup, auth_headers):
        s = doc_setup
        headers = auth_headers(s["verifier"])
        res = client.get("/api/v1/documents?status=pending", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

        res = client.get(f"/api/v1/projects/{s['project'].id}/documents/summary", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["by_status"]["pending"] == 1

    def test_summary_out_of_scope_is_404(self, client, doc_setup, make_profile, auth_headers):
        res = client.get(f"/api/v1/projects/{doc_setup['project'].id}/documents/summary",
                         headers=auth_headers(make_profile("inspector")))
        assert res.status_code == 404

    def test_form_upload_is_415(self, client, approval_setup, auth_headers):
        s = approval_setup
        res = client.post(f"/api/v1/projects/{s['project'].id}/documents",
                          data={"name": "x", "storage_path": "x"}, headers=auth_headers(s["admin"]))
        assert res.status_code == 415
        assert Document.query.count() == 0
