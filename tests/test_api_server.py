"""
Tests for the admin HTTP API.

Covers:
  - Admin guard (401 without a token, 403 for non-admins)
  - Error mapping: AdminError status codes, validation errors, unexpected errors
  - Query parameter aliases (startDate, groupBy, userId, type, includeConfig)
  - Prompt, subscription, user, vocabulary and alert routes end to end
    against the in-memory Firestore
"""

import pytest
from fastapi.testclient import TestClient

from sircharge_admin.api_server import admin_user, app, get_database
from sircharge_admin.errors import AuthError


@pytest.fixture
def client(db, admin):
    app.dependency_overrides[get_database] = lambda: db
    app.dependency_overrides[admin_user] = lambda: admin
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(db):
    app.dependency_overrides[get_database] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Guard and error mapping
# ---------------------------------------------------------------------------

class TestGuard:
    def test_health_is_public(self, anonymous_client):
        response = anonymous_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_token(self, anonymous_client):
        response = anonymous_client.get("/api/admin/usage")
        assert response.status_code == 401
        assert response.json() == {
            "error": "Missing Authorization header",
            "message": "Authentication required to access this resource",
        }

    def test_malformed_header(self, anonymous_client):
        response = anonymous_client.get("/api/admin/users", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_non_admin_forbidden(self, db):
        def member():
            raise AuthError("Forbidden", "Admin access required to access this resource", status_code=403)

        app.dependency_overrides[get_database] = lambda: db
        app.dependency_overrides[admin_user] = member
        try:
            response = TestClient(app).get("/api/admin/alerts")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"


class TestErrorMapping:
    def test_admin_error_status(self, client):
        response = client.get("/api/admin/users/ghost")
        assert response.status_code == 404
        assert response.json() == {"error": "User not found"}

    def test_bad_request(self, client):
        response = client.get("/api/admin/usage", params={"groupBy": "year"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid groupBy: year"}

    def test_validation_error_is_400(self, client):
        response = client.post("/api/admin/prompts/RAGEngine", json={"prompts": {}})
        assert response.status_code == 400
        assert "language" in response.json()["error"]

    def test_unexpected_error_is_500(self, db, admin):
        class Broken:
            def collection(self, name):
                raise RuntimeError("firestore unavailable")

        app.dependency_overrides[get_database] = lambda: Broken()
        app.dependency_overrides[admin_user] = lambda: admin
        try:
            response = TestClient(app, raise_server_exceptions=False).get("/api/admin/alerts")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
        assert response.json() == {"error": "firestore unavailable"}


# ---------------------------------------------------------------------------
# Analytics routes
# ---------------------------------------------------------------------------

class TestAnalyticsRoutes:
    def test_usage_with_aliases(self, client, db):
        db.add("promptExecutions/e1", {"executedAt": "2024-03-01T10:00:00.000Z", "userId": "u1",
                                       "service": "RAGEngine", "estimatedCostUSD": 0.01, "totalTokens": 50})
        response = client.get("/api/admin/usage", params={
            "startDate": "2024-03-01", "endDate": "2024-03-31", "groupBy": "month",
        })
        body = response.json()
        assert response.status_code == 200
        assert body["groupBy"] == "month"
        assert body["usage"][0]["month"] == "2024-03"

    def test_performance_aggregate_and_purge(self, client, db):
        db.add("performanceMetrics/m1", {"metricType": "app_startup", "value": 900, "userId": "u1",
                                         "timestamp": "2024-03-01T10:00:00.000Z"})
        response = client.post("/api/admin/performance", json={"date": "2024-03-01"})
        assert response.status_code == 200
        assert db.doc("performanceAggregates/2024-03-01")["startup"]["avgMs"] == 900

        response = client.request("DELETE", "/api/admin/performance", json={"olderThanDays": 0})
        assert response.status_code == 400
        assert response.json() == {"error": "olderThanDays must be a positive number"}

        response = client.request("DELETE", "/api/admin/performance", json={"olderThanDays": 1e9})
        assert response.status_code == 400
        assert response.json() == {"error": "olderThanDays is out of range"}

    @pytest.mark.parametrize("path, params", [
        ("/api/admin/behavior", {"startDate": "2024-02-30", "endDate": "2024-03-02"}),
        ("/api/admin/behavior/u1", {"startDate": "2024-03-01", "endDate": "yesterday"}),
        ("/api/admin/usage", {"startDate": "2024/01/01"}),
        ("/api/admin/performance", {"startDate": "2024-03-01", "endDate": "2024-13-01"}),
    ])
    def test_malformed_dates_are_400(self, client, path, params):
        response = client.get(path, params=params)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid startDate/endDate (YYYY-MM-DD)"}

    def test_performance_users_mode(self, client, db):
        db.add("performanceMetrics/m1", {"metricType": "app_startup", "value": 1, "userId": "u9",
                                         "timestamp": "2024-03-01T10:00:00.000Z"})
        response = client.get("/api/admin/performance", params={
            "mode": "users", "startDate": "2024-03-01", "endDate": "2024-03-01",
        })
        assert response.json() == {"userIds": ["u9"]}

    def test_behavior_user(self, client, db):
        db.add("behaviorSessions/s1", {"userId": "u1", "startedAt": "2024-03-01T10:00:00.000Z", "durationMs": 10})
        response = client.get("/api/admin/behavior/u1", params={"startDate": "2024-03-01", "endDate": "2024-03-02"})
        assert response.json()["totalSessions"] == 1


# ---------------------------------------------------------------------------
# Management routes
# ---------------------------------------------------------------------------

class TestPromptRoutes:
    def test_create_patch_and_read(self, client):
        response = client.post("/api/admin/prompts/RAGEngine", json={
            "language": "en", "prompts": {"system": {"id": "system", "content": "Be concise."}},
        })
        assert response.status_code == 201
        assert response.json()["config"]["createdBy"] == "admin1"

        response = client.patch("/api/admin/prompts/RAGEngine", json={
            "language": "en", "promptId": "system", "updates": {"content": "Be brief."}, "notes": "shorter",
        })
        assert response.status_code == 200
        assert response.json()["version"]["previousContent"] == "Be concise."

        response = client.patch("/api/admin/prompts/RAGEngine", json={"language": "en", "status": "published"})
        assert response.json()["config"]["status"] == "published"

        response = client.get("/api/admin/prompts/RAGEngine", params={"language": "en"})
        body = response.json()
        assert body["config"]["prompts"]["system"]["content"] == "Be brief."
        assert len(body["versions"]) == 2

    def test_create_rejects_unsupported_language_and_status(self, client):
        response = client.post("/api/admin/prompts/ChatService", json={"language": "xx"})
        assert response.status_code == 400
        assert response.json() == {"error": "Unsupported language: xx"}

        response = client.post("/api/admin/prompts/ChatService", json={"language": "en", "status": "bogus"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid status: bogus"}
        assert client.get("/api/admin/prompts").json()["configs"] == []

    def test_patch_requires_language_and_existing_config(self, client):
        assert client.patch("/api/admin/prompts/RAGEngine", json={"enabled": True}).status_code == 400
        response = client.patch("/api/admin/prompts/RAGEngine", json={"language": "en", "enabled": True})
        assert response.status_code == 404

    def test_patch_without_changes(self, client):
        client.post("/api/admin/prompts/RAGEngine", json={"language": "en"})
        response = client.patch("/api/admin/prompts/RAGEngine", json={"language": "en"})
        assert response.status_code == 400
        assert response.json()["error"].startswith("No updates provided")

    def test_list_and_delete(self, client):
        client.post("/api/admin/prompts/RAGEngine", json={"language": "ja"})
        body = client.get("/api/admin/prompts").json()
        assert len(body["configs"]) == 1
        assert "RAGEngine" in body["services"]
        assert client.delete("/api/admin/prompts/RAGEngine").status_code == 400
        assert client.delete("/api/admin/prompts/RAGEngine", params={"language": "ja"}).json() == {"success": True}
        assert client.get("/api/admin/prompts").json()["configs"] == []


class TestSubscriptionRoutes:
    def test_lifecycle(self, client):
        assert client.get("/api/admin/subscriptions").json()["isDefault"] is True
        assert client.patch("/api/admin/subscriptions", json={}).status_code == 404

        response = client.post("/api/admin/subscriptions")
        assert response.status_code == 201
        assert client.post("/api/admin/subscriptions").status_code == 409

        response = client.patch("/api/admin/subscriptions", json={
            "tiers": {"basic": {"messagesPerMonth": 75}}, "changeNotes": "more messages",
        })
        assert response.json()["config"]["version"] == 2
        assert response.json()["config"]["tiers"]["basic"]["messagesPerMonth"] == 75

    def test_user_subscription_override_and_clear(self, client, db):
        db.add("users/u1", {"subscription": {"tier": "basic"}})
        response = client.patch("/api/admin/users/u1/subscription", json={"quotaOverrides": {"photosPerMonth": 99}})
        assert response.json()["subscription"]["quotaOverrides"] == {"photosPerMonth": 99}

        response = client.patch("/api/admin/users/u1/subscription", json={"quotaOverrides": None})
        assert response.json()["subscription"]["quotaOverrides"] is None

        limits = client.get("/api/admin/users/u1/subscription").json()["effectiveLimits"]
        assert limits["photosPerMonth"] == 10


class TestUserRoutes:
    def test_list_and_update(self, client, db):
        db.add("users/u1", {"email": "a@example.com", "createdAt": "2024-03-01T00:00:00.000Z"})
        body = client.get("/api/admin/users", params={"search": "a@"}).json()
        assert body["total"] == 1

        response = client.patch("/api/admin/users/u1", json={"accountStatus": "suspended"})
        assert response.json()["user"]["accountStatus"] == "suspended"

        response = client.patch("/api/admin/users/u1", json={"subscription": "gold"})
        assert response.status_code == 400


class TestNotificationRoutes:
    def test_type_alias_and_invalid_type(self, client, db):
        db.add("notifications/n1", {"type": "fun_fact", "status": "sent", "sentAt": "2024-03-01T00:00:00.000Z"})
        db.add("notifications/n2", {"type": "achievement", "status": "sent", "sentAt": "2024-03-02T00:00:00.000Z"})
        body = client.get("/api/admin/notifications", params={"type": "fun_fact"}).json()
        assert [n["id"] for n in body["notifications"]] == ["n1"]
        assert client.get("/api/admin/notifications", params={"type": "spam"}).status_code == 400


class TestVocabularyAndAlertRoutes:
    def test_vocabulary_bulk_reject(self, client, db):
        db.add("users/u1/learnedVocabulary/v1", {"source": "memory_extraction", "createdAt": "2024-03-01"})
        assert client.get("/api/admin/vocabulary/suggestions").json()["summary"]["total"] == 1
        response = client.post("/api/admin/vocabulary/suggestions", json={
            "action": "bulk-reject", "userId": "u1", "suggestionIds": ["v1"],
        })
        assert response.json() == {"success": True, "action": "bulk-rejected", "count": 1}

    def test_alerts(self, client, db):
        db.add("costAlerts/a1", {"status": "active", "detectedAt": "2024-03-01T00:00:00.000Z"})
        body = client.get("/api/admin/alerts", params={"includeConfig": "true"}).json()
        assert body["activeCount"] == 1
        assert "config" in body

        assert client.post("/api/admin/alerts", json={"action": "resolve", "alertId": "a1"}).status_code == 200
        assert db.doc("costAlerts/a1")["resolvedBy"] == "admin1"

        assert client.put("/api/admin/alerts", json={}).status_code == 400
        assert client.put("/api/admin/alerts", json={"config": {"spikeMultiplier": 5}}).json() == {"success": True}
