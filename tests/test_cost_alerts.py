"""
Tests for cost alerts.

Covers:
  - Listing by status, newest first, with active count
  - Config defaults merged with stored values
  - Resolve action validation and state change
  - Config update with merge semantics
"""

import pytest

from sircharge_admin.cost_alerts import CostAlerts
from sircharge_admin.errors import BadRequestError, NotFoundError


@pytest.fixture
def alerts(db):
    db.add("costAlerts/a1", {"type": "daily_cost", "severity": "warning", "status": "active",
                             "currentValue": 12.5, "expectedValue": 10, "detectedAt": "2024-03-01T00:00:00.000Z"})
    db.add("costAlerts/a2", {"type": "spike", "severity": "critical", "status": "active",
                             "currentValue": 30, "expectedValue": 9, "detectedAt": "2024-03-03T00:00:00.000Z"})
    db.add("costAlerts/a3", {"type": "user_cost", "severity": "warning", "status": "resolved",
                             "detectedAt": "2024-03-02T00:00:00.000Z"})
    return CostAlerts(db)


# ---------------------------------------------------------------------------
# Listing and config
# ---------------------------------------------------------------------------

class TestListAlerts:
    def test_all_newest_first(self, alerts):
        result = alerts.list_alerts()
        assert [a["id"] for a in result["alerts"]] == ["a2", "a3", "a1"]
        assert result["activeCount"] == 2
        assert "config" not in result

    def test_status_filter_and_config(self, alerts):
        result = alerts.list_alerts(status="resolved", include_config=True)
        assert [a["id"] for a in result["alerts"]] == ["a3"]
        assert result["activeCount"] == 2
        assert result["config"]["spikeMultiplier"] == 3.0

    def test_invalid_status(self, alerts):
        with pytest.raises(BadRequestError):
            alerts.list_alerts(status="open")

    def test_config_merges_stored_values(self, alerts, db):
        db.add("config/costAlerting", {"dailyCostThresholdUSD": 25})
        config = alerts.get_config()
        assert config["dailyCostThresholdUSD"] == 25
        assert config["monthlyCostThresholdUSD"] == 200.0


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

class TestResolve:
    def test_resolves_alert(self, alerts, db, admin):
        assert alerts.resolve({"action": "resolve", "alertId": "a1"}, admin) == {"success": True, "alertId": "a1"}
        stored = db.doc("costAlerts/a1")
        assert stored["status"] == "resolved"
        assert stored["resolvedBy"] == "admin1"
        assert stored["resolvedAt"]
        assert alerts.count_active() == 1

    @pytest.mark.parametrize("body", [{"action": "dismiss", "alertId": "a1"}, {"action": "resolve"}])
    def test_invalid_request(self, alerts, admin, body):
        with pytest.raises(BadRequestError, match="Invalid request"):
            alerts.resolve(body, admin)

    def test_unknown_alert(self, alerts, admin):
        with pytest.raises(NotFoundError, match="Alert not found"):
            alerts.resolve({"action": "resolve", "alertId": "nope"}, admin)


class TestUpdateConfig:
    def test_requires_config(self, alerts, admin):
        with pytest.raises(BadRequestError, match="Missing config"):
            alerts.update_config(None, admin)

    def test_merges_into_existing(self, alerts, db, admin):
        db.add("config/costAlerting", {"enabled": True, "notifyEmails": ["ops@example.com"]})
        assert alerts.update_config({"enabled": False}, admin) == {"success": True}
        stored = db.doc("config/costAlerting")
        assert stored["enabled"] is False
        assert stored["notifyEmails"] == ["ops@example.com"]
        assert stored["updatedBy"] == "admin1"
