"""
ユーザー管理モジュール（一覧・詳細・アカウント状態や上限の変更）
"""

import logging
import math
from typing import Any, Dict, List, Optional

from google.cloud.firestore_v1 import Query

from sircharge_admin.constants import USAGE_DAILY, USAGE_MONTHLY, USERS
from sircharge_admin.errors import BadRequestError, NotFoundError
from sircharge_admin.firestore_db import doc_to_dict, get_document
from sircharge_admin.utils import current_month_str, serialize_value, today_str, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
ACCOUNT_STATUSES = ["active", "suspended"]
SUBSCRIPTION_TIERS = ["free", "premium", "pro"]
CUSTOM_LIMIT_FIELDS = ["maxTokensPerDay", "maxApiCallsPerDay", "maxCostPerMonth"]


def subscription_tier(value: Any) -> str:
    """subscription がオブジェクトならtier文字列を取り出す"""
    if isinstance(value, dict) and value.get("tier"):
        return value["tier"]
    if isinstance(value, str) and value:
        return value
    return "free"


def matches_search(user: Dict[str, Any], search: str) -> bool:
    needle = search.lower()
    email = (user.get("email") or "").lower()
    display_name = (user.get("displayName") or "").lower()
    return needle in email or needle in display_name


def _normalize_user(doc) -> Dict[str, Any]:
    user = doc_to_dict(doc)
    user["subscription"] = subscription_tier(user.get("subscription"))
    return user


class UserAdmin:
    """users コレクションの管理操作"""

    def __init__(self, db):
        self.db = db

    def _month_cost(self, user_id: str, month: str) -> float:
        usage = get_document(self.db, USAGE_MONTHLY, f"{user_id}_{month}")
        return (usage or {}).get("totalCostUSD") or 0

    def list_users(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, search: Optional[str] = None) -> Dict[str, Any]:
        """ユーザー一覧（検索はメール・表示名の部分一致をメモリ上で行う）"""
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
        users_ref = self.db.collection(USERS)

        if search and search.strip():
            # Firestore は部分一致検索ができないため全件取得して絞り込む
            matched = [
                user for user in (_normalize_user(doc) for doc in users_ref.stream())
                if matches_search(user, search.strip())
            ]
            total = len(matched)
            start = (page - 1) * limit
            users: List[Dict[str, Any]] = matched[start:start + limit]
        else:
            total = len(list(users_ref.stream()))
            query = (
                users_ref.order_by("createdAt", direction=Query.DESCENDING)
                .limit(limit)
                .offset((page - 1) * limit)
            )
            users = [_normalize_user(doc) for doc in query.stream()]

        month = current_month_str()
        for user in users:
            user["currentMonthCost"] = self._month_cost(user["id"], month)

        return {
            "users": serialize_value(users),
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        }

    def get_user(self, user_id: str) -> Dict[str, Any]:
        doc = self.db.collection(USERS).document(user_id).get()
        if not doc.exists:
            raise NotFoundError("User not found")

        return serialize_value({
            "user": doc_to_dict(doc),
            "currentMonthUsage": get_document(self.db, USAGE_MONTHLY, f"{user_id}_{current_month_str()}"),
            "todayUsage": get_document(self.db, USAGE_DAILY, f"{user_id}_{today_str()}"),
        })

    def update_user(self, user_id: str, body: Dict[str, Any], admin) -> Dict[str, Any]:
        """accountStatus / subscription / customLimits を更新"""
        ref = self.db.collection(USERS).document(user_id)
        if not ref.get().exists:
            raise NotFoundError("User not found")

        updates: Dict[str, Any] = {"updatedAt": utc_now_iso()}

        if body.get("accountStatus") is not None:
            if body["accountStatus"] not in ACCOUNT_STATUSES:
                raise BadRequestError('Invalid accountStatus. Must be "active" or "suspended"')
            updates["accountStatus"] = body["accountStatus"]

        if body.get("subscription") is not None:
            if body["subscription"] not in SUBSCRIPTION_TIERS:
                raise BadRequestError('Invalid subscription. Must be "free", "premium", or "pro"')
            updates["subscription"] = body["subscription"]

        if "customLimits" in body:
            limits = body["customLimits"]
            if not isinstance(limits, dict):
                raise BadRequestError("customLimits must be an object")
            for field in CUSTOM_LIMIT_FIELDS:
                value = limits.get(field)
                if value is None:
                    continue
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                    raise BadRequestError(f"{field} must be a positive number")
            updates["customLimits"] = limits

        ref.update(updates)
        logger.info(f"[Users] ユーザー {user_id} を更新しました (by {admin.uid}): {sorted(updates)}")

        return {"success": True, "user": serialize_value(doc_to_dict(ref.get()))}
