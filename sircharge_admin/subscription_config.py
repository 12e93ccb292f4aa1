"""
サブスクリプションのプラン設定とユーザー別クォータ上書き

主な機能:
- config/subscriptionTiers のプラン別クォータ（-1 は無制限）
- 変更ごとに subscriptionTierVersions へ v{n} の履歴を記録
- ユーザーのプラン変更・クォータ上書き・利用量リセット
"""

import copy
import logging
from typing import Any, Dict, Optional

from sircharge_admin.constants import (
    DEFAULT_BASIC_QUOTAS,
    DEFAULT_TIER_QUOTAS,
    SUBSCRIPTION_CONFIG_PATH,
    SUBSCRIPTION_VERSIONS,
    TIER_KEYS,
    USERS,
)
from sircharge_admin.errors import BadRequestError, ConflictError, NotFoundError
from sircharge_admin.utils import utc_now_iso

logger = logging.getLogger(__name__)

# -1(無制限) 以上を許可する数値クォータ
UNLIMITED_ALLOWED_QUOTAS = [
    "messagesPerMonth",
    "photosPerMonth",
    "voiceMinutesPerMonth",
    "customActivityTypes",
    "maxTokensPerDay",
    "maxApiCallsPerDay",
    "maxCostPerMonth",
]
BOOLEAN_FEATURES = ["offlineMode", "webAccess"]
OVERRIDABLE_QUOTAS = ["messagesPerMonth", "photosPerMonth", "voiceMinutesPerMonth"]
ACCEPTED_TIERS = ["basic", "free", "premium", "pro"]

EMPTY_USAGE = {
    "messagesThisMonth": 0,
    "messagesToday": 0,
    "photosThisMonth": 0,
    "voiceMinutesThisMonth": 0,
    "dailyResetAt": None,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_tier(tier: Optional[str]) -> str:
    """旧プラン名 free と未設定は basic として扱う"""
    if not tier or tier == "free":
        return "basic"
    return tier


def default_quotas(tier: Optional[str]) -> Dict[str, Any]:
    return dict(DEFAULT_TIER_QUOTAS.get(normalize_tier(tier), DEFAULT_BASIC_QUOTAS))


def default_config() -> Dict[str, Any]:
    return {
        "enableDynamicConfig": True,
        "tiers": {tier: dict(quotas) for tier, quotas in DEFAULT_TIER_QUOTAS.items()},
    }


def validate_and_merge_tier_quotas(current: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """クォータ更新を検証して現在値にマージ

    Raises:
        BadRequestError: 値の範囲が不正な場合
    """
    merged = dict(current)

    for key in UNLIMITED_ALLOWED_QUOTAS:
        value = updates.get(key)
        if not _is_number(value):
            continue
        if value < -1:
            raise BadRequestError(f"{key} must be -1 (unlimited) or >= 0")
        merged[key] = value

    value = updates.get("maxVoiceRecordingSeconds")
    if _is_number(value):
        if value < 1:
            raise BadRequestError("maxVoiceRecordingSeconds must be >= 1")
        merged["maxVoiceRecordingSeconds"] = value

    for key in BOOLEAN_FEATURES:
        if isinstance(updates.get(key), bool):
            merged[key] = updates[key]

    return merged


def effective_limits(subscription: Optional[Dict[str, Any]], tier_quotas: Dict[str, Any]) -> Dict[str, Any]:
    """ユーザー別の上書き値 > プランの既定値"""
    overrides = (subscription or {}).get("quotaOverrides") or {}
    return {
        key: overrides[key] if overrides.get(key) is not None else tier_quotas.get(key)
        for key in OVERRIDABLE_QUOTAS
    }


def validate_quota_overrides(overrides: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(overrides, dict):
        raise BadRequestError("quotaOverrides must be an object or null")
    valid = {}
    for key in OVERRIDABLE_QUOTAS:
        if key not in overrides:
            continue
        value = overrides[key]
        if not _is_number(value) or value < -1:
            raise BadRequestError(f"{key} must be -1 (unlimited) or >= 0")
        valid[key] = value
    return valid


class SubscriptionConfigService:
    """プラン設定とユーザーのサブスクリプションを管理するクラス"""

    def __init__(self, db):
        self.db = db

    @property
    def config_ref(self):
        collection, document = SUBSCRIPTION_CONFIG_PATH
        return self.db.collection(collection).document(document)

    def _write_version(self, version: int, config: Dict[str, Any], admin, notes: Optional[str],
                       previous_version: Optional[int] = None) -> None:
        record = {
            "id": f"v{version}",
            "version": version,
            "config": copy.deepcopy(config),
            "changedBy": admin.uid,
            "changedAt": config["lastUpdated"],
        }
        if admin.email:
            record["changedByEmail"] = admin.email
        if notes:
            record["changeNotes"] = notes
        if previous_version is not None:
            record["previousVersion"] = previous_version
        self.db.collection(SUBSCRIPTION_VERSIONS).document(f"v{version}").set(record)

    def get_config(self) -> Dict[str, Any]:
        """現在の設定（未初期化なら既定値と isDefault=True）"""
        doc = self.config_ref.get()
        if not doc.exists:
            config = default_config()
            config.update({"version": 0, "lastUpdated": utc_now_iso(), "updatedBy": "system"})
            return {"config": config, "isDefault": True}
        return {"config": doc.to_dict() or {}, "isDefault": False}

    def initialize(self, admin) -> Dict[str, Any]:
        if self.config_ref.get().exists:
            raise ConflictError("Subscription config already exists. Use PATCH to update.")

        config = default_config()
        config.update({"version": 1, "lastUpdated": utc_now_iso(), "updatedBy": admin.uid})
        self.config_ref.set(config)
        self._write_version(1, config, admin, "Initial configuration")

        logger.info(f"[Subscriptions] プラン設定を初期化しました (by {admin.uid})")
        return config

    def update(
        self,
        admin,
        tiers: Optional[Dict[str, Dict[str, Any]]] = None,
        enable_dynamic_config: Optional[bool] = None,
        change_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """プラン設定を更新してバージョンを1つ進める"""
        doc = self.config_ref.get()
        if not doc.exists:
            raise NotFoundError("Subscription config not initialized. Use POST to initialize first.")

        current = doc.to_dict() or {}
        current_version = current.get("version") or 0
        new_version = current_version + 1

        updated = copy.deepcopy(current)
        updated.update({"version": new_version, "lastUpdated": utc_now_iso(), "updatedBy": admin.uid})
        updated.setdefault("tiers", {})

        if isinstance(enable_dynamic_config, bool):
            updated["enableDynamicConfig"] = enable_dynamic_config

        for tier in TIER_KEYS:
            tier_updates = (tiers or {}).get(tier)
            if tier_updates:
                base = updated["tiers"].get(tier) or default_quotas(tier)
                updated["tiers"][tier] = validate_and_merge_tier_quotas(base, tier_updates)

        self.config_ref.set(updated)
        self._write_version(new_version, updated, admin, change_notes, previous_version=current_version)

        logger.info(f"[Subscriptions] プラン設定を v{new_version} に更新しました (by {admin.uid})")
        return updated

    def _active_tier_config(self) -> Optional[Dict[str, Any]]:
        # 動的設定が無効ならハードコードの既定値を使う
        doc = self.config_ref.get()
        if not doc.exists:
            return None
        config = doc.to_dict() or {}
        return config if config.get("enableDynamicConfig") else None

    def _get_user_doc(self, user_id: str):
        ref = self.db.collection(USERS).document(user_id)
        doc = ref.get()
        if not doc.exists:
            raise NotFoundError("User not found")
        return ref, doc.to_dict() or {}

    def get_user_subscription(self, user_id: str) -> Dict[str, Any]:
        """ユーザーのプラン・利用量・実効上限"""
        _, user_data = self._get_user_doc(user_id)
        subscription = user_data.get("subscription")
        tier = normalize_tier((subscription or {}).get("tier"))

        tier_config = self._active_tier_config()
        tier_quotas = ((tier_config or {}).get("tiers") or {}).get(tier) or default_quotas(tier)

        return {
            "userId": user_id,
            "subscription": subscription or {"tier": "basic", "status": "active"},
            "usage": user_data.get("usage") or dict(EMPTY_USAGE),
            "tierDefaults": tier_quotas,
            "effectiveLimits": effective_limits(subscription, tier_quotas),
        }

    def update_user_subscription(self, user_id: str, body: Dict[str, Any], admin) -> Dict[str, Any]:
        """プラン変更（tier）・上書き（quotaOverrides, nullで解除）・利用量リセット（resetUsage）"""
        ref, user_data = self._get_user_doc(user_id)
        now = utc_now_iso()
        current_subscription = dict(user_data.get("subscription") or {})
        updates: Dict[str, Any] = {}

        if "tier" in body and body["tier"] is not None:
            tier = body["tier"]
            if tier not in ACCEPTED_TIERS:
                raise BadRequestError('Invalid tier. Must be "basic", "premium", or "pro"')
            updates["subscription"] = {
                **current_subscription,
                "tier": normalize_tier(tier),
                "status": "active",
                "source": "admin_override",
                # RevenueCat の同期で上書きされないようにする
                "manualOverride": True,
                "overrideBy": admin.uid,
                "overrideAt": now,
            }

        if "quotaOverrides" in body:
            overrides = body["quotaOverrides"]
            subscription = {**current_subscription, **updates.get("subscription", {})}
            if overrides is None:
                subscription["quotaOverrides"] = None
            else:
                subscription.update({
                    "quotaOverrides": validate_quota_overrides(overrides),
                    "overrideBy": admin.uid,
                    "overrideAt": now,
                })
            updates["subscription"] = subscription

        if body.get("resetUsage") is True:
            updates["usage"] = {
                "messagesThisMonth": 0,
                "messagesToday": 0,
                "photosThisMonth": 0,
                "voiceMinutesThisMonth": 0,
                "lastMessageAt": None,
                "monthlyResetAt": now,
                "dailyResetAt": now,
            }

        if updates:
            updates["updatedAt"] = now
            ref.update(updates)
            logger.info(
                f"[Subscriptions] ユーザー {user_id} のサブスクリプションを更新 (by {admin.uid}): "
                f"tier={body.get('tier') or 'unchanged'}, "
                f"quotaOverrides={'updated' if 'quotaOverrides' in body else 'unchanged'}, "
                f"resetUsage={bool(body.get('resetUsage'))}"
            )

        updated = ref.get().to_dict() or {}
        return {
            "success": True,
            "subscription": updated.get("subscription"),
            "usage": updated.get("usage"),
        }
