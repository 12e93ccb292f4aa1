"""
Tests for subscription tier configuration and per-user overrides.

Covers:
  - Tier quota validation and merge (-1 unlimited, boolean features)
  - Effective limits (user overrides win over tier defaults)
  - Config initialize / update versioning
  - User subscription read with dynamic config on and off
  - Admin tier change, quota overrides and usage reset
"""

import pytest

from sircharge_admin.errors import BadRequestError, ConflictError, NotFoundError
from sircharge_admin.subscription_config import (
    SubscriptionConfigService,
    effective_limits,
    normalize_tier,
    validate_and_merge_tier_quotas,
    validate_quota_overrides,
)


@pytest.fixture
def subs(db):
    return SubscriptionConfigService(db)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

class TestTierQuotaValidation:
    def test_merges_valid_values(self):
        merged = validate_and_merge_tier_quotas(
            {"messagesPerMonth": 50, "webAccess": False},
            {"messagesPerMonth": -1, "webAccess": True, "maxVoiceRecordingSeconds": 60, "unknown": 5},
        )
        assert merged == {"messagesPerMonth": -1, "webAccess": True, "maxVoiceRecordingSeconds": 60}

    def test_rejects_below_unlimited(self):
        with pytest.raises(BadRequestError, match="photosPerMonth must be -1 \\(unlimited\\) or >= 0"):
            validate_and_merge_tier_quotas({}, {"photosPerMonth": -2})

    def test_rejects_zero_recording_seconds(self):
        with pytest.raises(BadRequestError, match="maxVoiceRecordingSeconds must be >= 1"):
            validate_and_merge_tier_quotas({}, {"maxVoiceRecordingSeconds": 0})

    def test_ignores_non_numbers(self):
        merged = validate_and_merge_tier_quotas({"messagesPerMonth": 50}, {"messagesPerMonth": True})
        assert merged["messagesPerMonth"] == 50


class TestOverrides:
    def test_normalize_tier(self):
        assert normalize_tier(None) == "basic"
        assert normalize_tier("free") == "basic"
        assert normalize_tier("pro") == "pro"

    def test_effective_limits(self):
        limits = effective_limits(
            {"quotaOverrides": {"messagesPerMonth": 999, "photosPerMonth": None}},
            {"messagesPerMonth": 50, "photosPerMonth": 10, "voiceMinutesPerMonth": 30},
        )
        assert limits == {"messagesPerMonth": 999, "photosPerMonth": 10, "voiceMinutesPerMonth": 30}

    def test_validate_quota_overrides(self):
        assert validate_quota_overrides({"photosPerMonth": -1, "other": 3}) == {"photosPerMonth": -1}
        with pytest.raises(BadRequestError):
            validate_quota_overrides({"photosPerMonth": "lots"})
        with pytest.raises(BadRequestError):
            validate_quota_overrides([1, 2])


# ---------------------------------------------------------------------------
# Tier configuration
# ---------------------------------------------------------------------------

class TestTierConfig:
    def test_default_when_missing(self, subs):
        result = subs.get_config()
        assert result["isDefault"] is True
        assert result["config"]["version"] == 0
        assert result["config"]["tiers"]["premium"]["messagesPerMonth"] == 250

    def test_initialize_writes_version_one(self, subs, db, admin):
        config = subs.initialize(admin)
        assert config["version"] == 1
        assert subs.get_config()["isDefault"] is False
        version = db.doc("subscriptionTierVersions/v1")
        assert version["changeNotes"] == "Initial configuration"
        assert version["changedByEmail"] == "admin@example.com"

    def test_initialize_twice_conflicts(self, subs, admin):
        subs.initialize(admin)
        with pytest.raises(ConflictError, match="already exists"):
            subs.initialize(admin)

    def test_update_requires_initialization(self, subs, admin):
        with pytest.raises(NotFoundError, match="not initialized"):
            subs.update(admin, tiers={"pro": {"messagesPerMonth": 5}})

    def test_update_bumps_version(self, subs, db, admin):
        subs.initialize(admin)
        updated = subs.update(admin, tiers={"pro": {"photosPerMonth": -1}}, enable_dynamic_config=False,
                              change_notes="Unlimited photos")
        assert updated["version"] == 2
        assert updated["enableDynamicConfig"] is False
        assert updated["tiers"]["pro"]["photosPerMonth"] == -1
        assert updated["tiers"]["pro"]["messagesPerMonth"] == 1000
        version = db.doc("subscriptionTierVersions/v2")
        assert version["previousVersion"] == 1
        assert version["changeNotes"] == "Unlimited photos"

    def test_invalid_update_writes_nothing(self, subs, db, admin):
        subs.initialize(admin)
        with pytest.raises(BadRequestError):
            subs.update(admin, tiers={"basic": {"messagesPerMonth": -5}})
        assert db.doc("config/subscriptionTiers")["version"] == 1
        assert db.doc("subscriptionTierVersions/v2") is None


# ---------------------------------------------------------------------------
# User subscriptions
# ---------------------------------------------------------------------------

class TestUserSubscription:
    def test_unknown_user(self, subs):
        with pytest.raises(NotFoundError, match="User not found"):
            subs.get_user_subscription("ghost")

    def test_defaults_for_user_without_subscription(self, subs, db):
        db.add("users/u1", {"email": "u1@example.com"})
        result = subs.get_user_subscription("u1")
        assert result["subscription"] == {"tier": "basic", "status": "active"}
        assert result["usage"]["messagesThisMonth"] == 0
        assert result["effectiveLimits"]["messagesPerMonth"] == 50

    def test_dynamic_config_applies_only_when_enabled(self, subs, db, admin):
        db.add("users/u1", {"subscription": {"tier": "premium"}})
        subs.initialize(admin)
        subs.update(admin, tiers={"premium": {"messagesPerMonth": 400}})
        assert subs.get_user_subscription("u1")["effectiveLimits"]["messagesPerMonth"] == 400

        subs.update(admin, enable_dynamic_config=False)
        assert subs.get_user_subscription("u1")["effectiveLimits"]["messagesPerMonth"] == 250

    def test_change_tier_marks_manual_override(self, subs, db, admin):
        db.add("users/u1", {"subscription": {"tier": "basic", "source": "revenuecat"}})
        result = subs.update_user_subscription("u1", {"tier": "pro"}, admin)
        subscription = result["subscription"]
        assert result["success"] is True
        assert subscription["tier"] == "pro"
        assert subscription["source"] == "admin_override"
        assert subscription["manualOverride"] is True
        assert subscription["overrideBy"] == "admin1"

    def test_free_tier_is_stored_as_basic(self, subs, db, admin):
        db.add("users/u1", {})
        result = subs.update_user_subscription("u1", {"tier": "free"}, admin)
        assert result["subscription"]["tier"] == "basic"

    def test_invalid_tier(self, subs, db, admin):
        db.add("users/u1", {})
        with pytest.raises(BadRequestError, match="Invalid tier"):
            subs.update_user_subscription("u1", {"tier": "gold"}, admin)

    def test_set_and_clear_overrides(self, subs, db, admin):
        db.add("users/u1", {"subscription": {"tier": "basic"}})
        result = subs.update_user_subscription("u1", {"quotaOverrides": {"messagesPerMonth": -1}}, admin)
        assert result["subscription"]["quotaOverrides"] == {"messagesPerMonth": -1}
        assert subs.get_user_subscription("u1")["effectiveLimits"]["messagesPerMonth"] == -1

        result = subs.update_user_subscription("u1", {"quotaOverrides": None}, admin)
        assert result["subscription"]["quotaOverrides"] is None
        assert result["subscription"]["tier"] == "basic"

    def test_reset_usage(self, subs, db, admin):
        db.add("users/u1", {"usage": {"messagesThisMonth": 42, "photosThisMonth": 3}})
        result = subs.update_user_subscription("u1", {"resetUsage": True}, admin)
        assert result["usage"]["messagesThisMonth"] == 0
        assert result["usage"]["photosThisMonth"] == 0
        assert result["usage"]["monthlyResetAt"]
        assert db.doc("users/u1")["updatedAt"]

    def test_empty_body_changes_nothing(self, subs, db, admin):
        db.add("users/u1", {"usage": {"messagesThisMonth": 4}})
        result = subs.update_user_subscription("u1", {}, admin)
        assert result["usage"] == {"messagesThisMonth": 4}
        assert "updatedAt" not in db.doc("users/u1")
