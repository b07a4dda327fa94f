"""
Health endpoints and cross-cutting request handling.
"""

from types import SimpleNamespace

from sqlalchemy.exc import OperationalError

from app.models import db


class TestHealth:
    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "ok"
        assert data["service"] == "slf-workflow-platform"

    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200

    def test_live_checks_database_and_hub(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        data = res.get_json()
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["notification_hub"]["status"] == "ok"

    def test_live_reports_database_failure(self, client, monkeypatch):
        from app.blueprints import health_bp

        def _down(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        broken_db = SimpleNamespace(
            session=SimpleNamespace(execute=_down, rollback=lambda: None),
            text=db.text,
        )
        monkeypatch.setattr(health_bp, "db", broken_db)
        res = client.get("/api/v1/health/live")
        assert res.status_code == 503
        assert res.get_json()["status"] == "degraded"


class TestRequestHandling:
    def test_security_headers(self, client):
        res = client.get("/api/v1/health")
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"
        assert res.headers["Cache-Control"] == "no-store"
        assert "X-Request-ID" in res.headers

    def test_request_id_is_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"

    def test_unknown_api_route_is_json_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_method_not_allowed(self, client):
        res = client.delete("/api/v1/health")
        assert res.status_code == 405

    def test_storage_errors_are_generic(self, client, make_profile, auth_headers, monkeypatch):
        from app.services.notification import NotificationService

        def _broken(*args, **kwargs):
            raise OperationalError("SELECT notifications", {}, Exception("password=hunter2"))

        headers = auth_headers(make_profile("inspector"))
        monkeypatch.setattr(NotificationService, "unread_count", staticmethod(_broken))
        res = client.get("/api/v1/notifications/unread-count", headers=headers)
        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_DATABASE"
        assert "hunter2" not in res.get_data(as_text=True)

    def test_expired_token_is_unauthenticated(self, client, make_profile, app):
        import jwt

        profile = make_profile("inspector")
        token = jwt.encode(
            {"sub": str(profile.id), "type": "access", "exp": 1},
            app.config["JWT_SECRET_KEY"], algorithm="HS256",
        )
        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
