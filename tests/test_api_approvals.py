"""
Approval HTTP surface tests.

  POST /api/v1/approvals/<report_id>/<role>/approve
  POST /api/v1/approvals/<report_id>/<role>/reject

Status mapping: 200 success · 400 bad role/action/body · 401 no session ·
403 role mismatch · 404 unknown/out-of-scope report · 409 sequence/halted ·
415 non-JSON body.
"""

from app.models.report import Approval, Report


def _url(report_id, role, action="approve"):
    return f"/api/v1/approvals/{report_id}/{role}/{action}"


class TestApproveEndpoint:
    def test_approve_returns_new_status(self, client, approval_setup, auth_headers, reload):
        s = approval_setup
        res = client.post(
            _url(s["report"].id, "project_lead"),
            json={"comment": "Dokumen lengkap"},
            headers=auth_headers(s["lead"]),
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["newStatus"] == "project_lead_approved"
        assert data["changed"] is True
        assert "message" in data
        assert reload(Report, s["report"].id).status == "project_lead_approved"

    def test_approve_without_body(self, client, approval_setup, auth_headers):
        s = approval_setup
        res = client.post(_url(s["report"].id, "project_lead"), headers=auth_headers(s["lead"]))
        assert res.status_code == 200
        assert Approval.query.filter_by(report_id=s["report"].id).one().comment is None

    def test_repeat_returns_200_unchanged(self, client, approval_setup, auth_headers):
        s = approval_setup
        headers = auth_headers(s["lead"])
        client.post(_url(s["report"].id, "project_lead"), json={}, headers=headers)
        res = client.post(_url(s["report"].id, "project_lead"), json={}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["changed"] is False
        assert Approval.query.filter_by(report_id=s["report"].id).count() == 1

    def test_reject(self, client, approval_setup, auth_headers):
        s = approval_setup
        res = client.post(
            _url(s["report"].id, "project_lead", "reject"),
            json={"comment": "Foto struktur kurang"},
            headers=auth_headers(s["lead"]),
        )
        assert res.status_code == 200
        assert res.get_json()["newStatus"] == "project_lead_rejected"


class TestApproveErrors:
    def test_unauthenticated(self, client, approval_setup):
        res = client.post(_url(approval_setup["report"].id, "project_lead"), json={})
        assert res.status_code == 401

    def test_role_mismatch_is_forbidden(self, client, approval_setup, auth_headers, reload):
        s = approval_setup
        res = client.post(_url(s["report"].id, "project_lead"), json={}, headers=auth_headers(s["head"]))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"
        assert reload(Report, s["report"].id).status == "submitted"

    def test_token_role_claim_is_not_trusted(self, client, approval_setup):
        from app.services.jwt_service import generate_access_token

        s = approval_setup
        token = generate_access_token(s["inspector"].id, "project_lead")
        res = client.post(
            _url(s["report"].id, "project_lead"), json={},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert res.status_code == 403

    def test_pending_principal_is_forbidden(self, client, approval_setup, make_profile, auth_headers):
        pending = make_profile("project_lead", status="pending")
        res = client.post(_url(approval_setup["report"].id, "project_lead"), json={},
                          headers=auth_headers(pending))
        assert res.status_code == 403

    def test_unknown_report(self, client, approval_setup, auth_headers):
        res = client.post(_url(424242, "project_lead"), json={}, headers=auth_headers(approval_setup["lead"]))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_out_of_scope_report_is_not_found(self, client, approval_setup, make_profile, auth_headers):
        outsider = make_profile("project_lead")
        res = client.post(_url(approval_setup["report"].id, "project_lead"), json={},
                          headers=auth_headers(outsider))
        assert res.status_code == 404

    def test_unknown_role(self, client, approval_setup, auth_headers):
        res = client.post(_url(approval_setup["report"].id, "inspector"), json={},
                          headers=auth_headers(approval_setup["inspector"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_unknown_action_route(self, client, approval_setup, auth_headers):
        res = client.post(f"/api/v1/approvals/{approval_setup['report'].id}/project_lead/escalate",
                          json={}, headers=auth_headers(approval_setup["lead"]))
        assert res.status_code == 404

    def test_non_object_body(self, client, approval_setup, auth_headers):
        res = client.post(_url(approval_setup["report"].id, "project_lead"), json=["ok"],
                          headers=auth_headers(approval_setup["lead"]))
        assert res.status_code == 400

    def test_non_json_body(self, client, approval_setup, auth_headers):
        res = client.post(
            _url(approval_setup["report"].id, "project_lead"),
            data="comment=ok",
            content_type="application/x-www-form-urlencoded",
            headers=auth_headers(approval_setup["lead"]),
        )
        assert res.status_code == 415

    def test_form_body_leaves_report_untouched(self, client, approval_setup, auth_headers, reload):
        s = approval_setup
        res = client.post(
            _url(s["report"].id, "project_lead"),
            data={"comment": "ok"},
            headers=auth_headers(s["lead"]),
        )
        assert res.status_code == 415
        assert reload(Report, s["report"].id).status == "submitted"
        assert Approval.query.filter_by(report_id=s["report"].id).count() == 0

    def test_multipart_body_is_refused(self, client, approval_setup, auth_headers):
        res = client.post(
            _url(approval_setup["report"].id, "project_lead", "reject"),
            data={"comment": "ok"},
            content_type="multipart/form-data",
            headers=auth_headers(approval_setup["lead"]),
        )
        assert res.status_code == 415

    def test_empty_body_is_allowed(self, client, approval_setup, auth_headers):
        res = client.post(_url(approval_setup["report"].id, "project_lead"),
                          headers=auth_headers(approval_setup["lead"]))
        assert res.status_code == 200

    def test_out_of_sequence_conflict(self, client, approval_setup, auth_headers):
        s = approval_setup
        res = client.post(_url(s["report"].id, "head_consultant"), json={}, headers=auth_headers(s["head"]))
        assert res.status_code == 409
        data = res.get_json()
        assert data["code"] == "ERR_OUT_OF_SEQUENCE"
        assert data["details"]["expected_role"] == "project_lead"

    def test_halted_chain_conflict(self, client, approval_setup, auth_headers, reload):
        s = approval_setup
        client.post(_url(s["report"].id, "project_lead"), json={}, headers=auth_headers(s["lead"]))
        client.post(_url(s["report"].id, "head_consultant", "reject"), json={}, headers=auth_headers(s["head"]))

        res = client.post(_url(s["report"].id, "client"), json={}, headers=auth_headers(s["client_user"]))

        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CHAIN_HALTED"
        assert reload(Report, s["report"].id).status == "head_consultant_rejected"

    def test_error_body_has_no_internals(self, client, approval_setup, auth_headers):
        res = client.post(_url(approval_setup["report"].id, "head_consultant"), json={},
                          headers=auth_headers(approval_setup["head"]))
        body = res.get_data(as_text=True)
        assert "Traceback" not in body
        assert "sqlalchemy" not in body.lower()
