"""
Tests for the DataFrame builders behind the dashboard pages.

Covers:
  - Usage period tables and operation breakdown (labels applied)
  - Performance startup / keyed stats tables
  - Behavior platform table, prompt config table, tier comparison table
  - User and notification tables
"""

import pytest

from sircharge_admin.modules.behavior_page import platform_frame
from sircharge_admin.modules.common import format_quota, format_usd
from sircharge_admin.modules.notifications_page import notifications_frame
from sircharge_admin.modules.performance_page import keyed_stats_frame, startup_frame
from sircharge_admin.modules.prompts_page import configs_frame
from sircharge_admin.modules.subscriptions_page import tiers_frame
from sircharge_admin.modules.usage_page import operation_frame, period_column, usage_frame
from sircharge_admin.modules.users_page import custom_limits_update, users_frame
from sircharge_admin.subscription_config import default_config


class TestUsageFrames:
    def test_period_column(self):
        assert period_column({"week": "2024-03-04"}) == "week"
        assert period_column({}) == "date"

    def test_usage_frame_defaults_estimated_calls(self):
        df = usage_frame([{"month": "2024-03", "totalCostUSD": 1.5, "totalApiCalls": 4}])
        assert df.loc[0, "period"] == "2024-03"
        assert df.loc[0, "estimatedApiCalls"] == 4

    def test_operation_frame_uses_labels(self):
        df = operation_frame([{
            "date": "2024-03-01",
            "operationCosts": {"embedding": 0.01},
            "operationCounts": {"embedding": 3},
        }])
        assert df.to_dict("records") == [
            {"period": "2024-03-01", "operation": "Search Indexing", "costUSD": 0.01, "calls": 3},
        ]

    def test_empty_frames_keep_columns(self):
        assert list(usage_frame([]).columns)[0] == "period"
        assert operation_frame([]).empty


class TestPerformanceFrames:
    def test_startup_frame_skips_days_without_startup(self):
        df = startup_frame([
            {"date": "2024-03-01", "startup": {"count": 2, "avgMs": 900, "p50Ms": 800, "p95Ms": 1000}},
            {"date": "2024-03-02"},
        ])
        assert df["date"].tolist() == ["2024-03-01"]

    def test_keyed_stats_frame(self):
        df = keyed_stats_frame([
            {"date": "2024-03-01", "apiLatency": {"/chat": {"count": 2, "avgMs": 100}}},
            {"date": "2024-03-02", "apiLatency": {"/chat": {"count": 1, "avgMs": 300},
                                                  "/sync": {"count": 5, "avgMs": 50}}},
        ], "apiLatency", "endpoint")
        assert len(df) == 3
        assert set(df["endpoint"]) == {"/chat", "/sync"}


class TestOtherFrames:
    def test_platform_frame(self):
        df = platform_frame({"mobile": {"users": 3, "sessions": 7}, "web": {"users": 1, "sessions": 1}})
        assert df.set_index("platform").loc["mobile", "sessions"] == 7

    def test_configs_frame_counts_prompts(self):
        df = configs_frame([{"service": "RAGEngine", "language": "en", "prompts": {"a": {}, "b": {}}}])
        assert df.loc[0, "prompts"] == 2
        assert bool(df.loc[0, "enabled"]) is False

    def test_tiers_frame(self):
        df = tiers_frame(default_config()["tiers"]).set_index("quota")
        assert df.loc["カスタム活動種別", "premium"] == "無制限"
        assert df.loc["Webアクセス", "pro"] == "✅"
        assert df.loc["Webアクセス", "basic"] == "—"

    def test_users_frame_defaults(self):
        df = users_frame([{"id": "u1"}])
        assert df.loc[0, "subscription"] == "free"
        assert df.loc[0, "accountStatus"] == "active"

    def test_custom_limits_drop_zero_values(self):
        values = {"maxTokensPerDay": 5000, "maxApiCallsPerDay": 0, "maxCostPerMonth": 0.0}
        assert custom_limits_update({}, values) == {"maxTokensPerDay": 5000}

    def test_custom_limits_cleared_when_all_zero(self):
        zeros = {"maxTokensPerDay": 0, "maxApiCallsPerDay": 0, "maxCostPerMonth": 0.0}
        assert custom_limits_update({"maxTokensPerDay": 5000}, zeros) == {}
        assert custom_limits_update({}, zeros) is None

    def test_notifications_frame_labels(self):
        df = notifications_frame([{"type": "fun_fact", "status": "opened", "sentAt": None}])
        assert df.loc[0, "type"] == "Fun Facts"
        assert df.loc[0, "status"] == "Opened"
        assert df.loc[0, "sent"] == ""


@pytest.mark.parametrize("value, digits, expected", [(None, 2, "$0.00"), (1234.5, 2, "$1,234.50"), (0.12346, 4, "$0.1235")])
def test_format_usd(value, digits, expected):
    assert format_usd(value, digits) == expected


def test_format_quota():
    assert format_quota(-1) == "無制限"
    assert format_quota(50) == "50"
