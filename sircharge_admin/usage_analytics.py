"""
LLM利用量・コスト集計モジュール

promptExecutions（1回のAPI実行 = 1ドキュメント）を日・週・月単位で集計し、
管理画面のグラフ用データを作成する。
ユーザー別の推移は事前集計済みの usageDaily / usageMonthly を利用する。
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from google.cloud.firestore_v1 import FieldFilter

from sircharge_admin.constants import (
    PROMPT_EXECUTIONS,
    SERVICE_OPERATIONS_MAP,
    SERVICE_TO_OPERATION,
    SOURCE_TYPE_TO_OPERATION,
    USAGE_DAILY,
    USAGE_MONTHLY,
    USERS,
)
from sircharge_admin.errors import BadRequestError, NotFoundError
from sircharge_admin.utils import (
    current_month_str,
    day_end,
    day_start,
    days_ago_str,
    months_back,
    require_date_range,
    round_to,
    today_str,
    week_start,
)

logger = logging.getLogger(__name__)

GROUP_BY_OPTIONS = ("day", "week", "month")
USER_PERIOD_OPTIONS = ("day", "week", "month")
TOP_USERS_LIMIT = 10


def resolve_operation(service: Optional[str], source_type: Optional[str]) -> str:
    """sourceTypeの対応表を優先し、なければserviceの対応表、最後にservice名そのもの"""
    if source_type and source_type in SOURCE_TYPE_TO_OPERATION:
        return SOURCE_TYPE_TO_OPERATION[source_type]
    return SERVICE_TO_OPERATION.get(service, service)


def period_key(timestamp: str, group_by: str) -> str:
    """ISOタイムスタンプを集計期間のキーに変換"""
    if group_by == "day":
        return timestamp[:10]
    if group_by == "week":
        return week_start(timestamp[:10])
    return timestamp[:7]


def _sample_weight(execution: Dict[str, Any]) -> float:
    """サンプリング率の逆数（記録されていない・不正な値は1）"""
    rate = execution.get("sampleRate")
    try:
        rate = float(rate)
    except (TypeError, ValueError):
        return 1.0
    if rate <= 0 or rate > 1:
        return 1.0
    return 1.0 / rate


def _new_period(key: str, group_by: str) -> Dict[str, Any]:
    return {
        group_by if group_by != "day" else "date": key,
        "totalCostUSD": 0.0,
        "totalApiCalls": 0,
        "estimatedApiCalls": 0.0,
        "totalTokens": 0,
        "operationCounts": defaultdict(int),
        "operationCosts": defaultdict(float),
        "_users": set(),
    }


def aggregate_executions(
    executions: Iterable[Dict[str, Any]],
    group_by: str = "day",
    service_filter: Optional[str] = None,
) -> Dict[str, Any]:
    """promptExecutions を期間ごとに集計

    Returns:
        dict: usage（期間ごとの集計、昇順）, totals, topUsers（コスト上位10名）
    """
    if group_by not in GROUP_BY_OPTIONS:
        raise BadRequestError(f"Invalid groupBy: {group_by}")

    allowed_operations = set(SERVICE_OPERATIONS_MAP.get(service_filter, [])) if service_filter else None

    periods: Dict[str, Dict[str, Any]] = {}
    user_stats: Dict[str, Dict[str, Any]] = {}

    for execution in executions:
        timestamp = execution.get("executedAt")
        if not isinstance(timestamp, str) or len(timestamp) < 10:
            continue

        service = execution.get("service")
        operation = resolve_operation(service, execution.get("sourceType"))

        if allowed_operations is not None:
            if service != service_filter and operation not in allowed_operations:
                continue

        user_id = execution.get("userId")
        cost = float(execution.get("estimatedCostUSD") or 0)
        tokens = int(execution.get("totalTokens") or 0)

        key = period_key(timestamp, group_by)
        period = periods.get(key)
        if period is None:
            period = periods[key] = _new_period(key, group_by)

        period["totalCostUSD"] += cost
        period["totalApiCalls"] += 1
        period["estimatedApiCalls"] += _sample_weight(execution)
        period["totalTokens"] += tokens
        period["operationCounts"][operation] += 1
        period["operationCosts"][operation] += cost
        if user_id:
            period["_users"].add(user_id)

            stat = user_stats.get(user_id)
            if stat is None:
                stat = user_stats[user_id] = {
                    "userId": user_id,
                    "totalCost": 0.0,
                    "totalApiCalls": 0,
                    "totalTokens": 0,
                }
            stat["totalCost"] += cost
            stat["totalApiCalls"] += 1
            stat["totalTokens"] += tokens

    usage = []
    for key in sorted(periods):
        period = periods[key]
        users = period.pop("_users")
        period["userCount"] = len(users)
        period["totalCostUSD"] = round_to(period["totalCostUSD"], 4)
        period["estimatedApiCalls"] = int(round(period["estimatedApiCalls"]))
        period["operationCounts"] = dict(period["operationCounts"])
        period["operationCosts"] = {
            op: round_to(value, 4) for op, value in period["operationCosts"].items()
        }
        usage.append(period)

    totals = {
        "totalCost": round_to(sum(p["totalCostUSD"] for p in usage), 4),
        "totalApiCalls": sum(p["totalApiCalls"] for p in usage),
        "totalTokens": sum(p["totalTokens"] for p in usage),
    }

    top_users = sorted(user_stats.values(), key=lambda u: u["totalCost"], reverse=True)[:TOP_USERS_LIMIT]
    for user in top_users:
        user["totalCost"] = round_to(user["totalCost"], 4)

    return {"usage": usage, "totals": totals, "topUsers": top_users}


def merge_operations(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """operationCounts / operationCosts を加算"""
    for operation, count in (source.get("operationCounts") or {}).items():
        target["operationCounts"][operation] = target["operationCounts"].get(operation, 0) + (count or 0)
    for operation, cost in (source.get("operationCosts") or {}).items():
        target["operationCosts"][operation] = target["operationCosts"].get(operation, 0) + (cost or 0)


def calculate_breakdown(usage: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """期間データ全体のオペレーション別内訳（コストは小数2桁）"""
    breakdown = {"operationCounts": {}, "operationCosts": {}}
    for item in usage:
        merge_operations(breakdown, item)
    breakdown["operationCosts"] = {
        op: round_to(cost, 2) for op, cost in breakdown["operationCosts"].items()
    }
    return breakdown


def sum_totals(usage: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "totalCost": round_to(sum(item.get("totalCostUSD") or 0 for item in usage), 2),
        "totalApiCalls": sum(item.get("totalApiCalls") or 0 for item in usage),
        "totalTokens": sum(item.get("totalTokens") or 0 for item in usage),
    }


def group_daily_by_week(daily_docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """usageDaily のドキュメントを月曜始まりの週にまとめる"""
    weeks: Dict[str, Dict[str, Any]] = {}
    for data in daily_docs:
        date = data.get("date")
        if not date:
            continue
        key = week_start(date)
        week = weeks.get(key)
        if week is None:
            week = weeks[key] = {
                "week": key,
                "totalCostUSD": 0.0,
                "totalApiCalls": 0,
                "totalTokens": 0,
                "operationCounts": {},
                "operationCosts": {},
            }
        week["totalCostUSD"] += data.get("totalCostUSD") or 0
        week["totalApiCalls"] += data.get("totalApiCalls") or 0
        week["totalTokens"] += data.get("totalTokens") or 0
        merge_operations(week, data)

    result = []
    for key in sorted(weeks):
        week = weeks[key]
        week["totalCostUSD"] = round_to(week["totalCostUSD"], 2)
        result.append(week)
    return result


class UsageAnalytics:
    """利用量APIのデータ取得クラス"""

    def __init__(self, db):
        self.db = db

    def fetch_executions(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        query = (
            self.db.collection(PROMPT_EXECUTIONS)
            .where(filter=FieldFilter("executedAt", ">=", day_start(start_date)))
            .where(filter=FieldFilter("executedAt", "<=", day_end(end_date)))
            .order_by("executedAt")
        )
        return [doc.to_dict() or {} for doc in query.stream()]

    def _attach_user_details(self, top_users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for user in top_users:
            try:
                doc = self.db.collection(USERS).document(user["userId"]).get()
            except Exception as e:
                logger.warning(f"[Usage] ユーザー情報の取得に失敗 ({user['userId']}): {e}")
                continue
            if doc.exists:
                data = doc.to_dict() or {}
                display_name = data.get("displayName") or data.get("name")
                if display_name:
                    user["displayName"] = display_name
                if data.get("email"):
                    user["email"] = data["email"]
        return top_users

    def get_overview(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        group_by: str = "day",
        service: Optional[str] = None,
    ) -> Dict[str, Any]:
        """全ユーザーの利用量（デフォルトは直近30日）"""
        end_date = end_date or today_str()
        start_date = start_date or days_ago_str(30)
        require_date_range(start_date, end_date)

        executions = self.fetch_executions(start_date, end_date)
        logger.info(f"[Usage] {start_date}〜{end_date}: {len(executions)}件の実行ログ")

        result = aggregate_executions(executions, group_by, service)
        result["topUsers"] = self._attach_user_details(result["topUsers"])
        result.update({
            "startDate": start_date,
            "endDate": end_date,
            "groupBy": group_by,
        })
        if service:
            result["serviceFilter"] = service
        return result

    def _query_user_docs(self, collection: str, user_id: str, field: str, start: str, end: str):
        query = (
            self.db.collection(collection)
            .where(filter=FieldFilter("userId", "==", user_id))
            .where(filter=FieldFilter(field, ">=", start))
            .where(filter=FieldFilter(field, "<=", end))
            .order_by(field)
        )
        return [{"id": doc.id, **(doc.to_dict() or {})} for doc in query.stream()]

    def get_user_usage(self, user_id: str, period: str = "month") -> Dict[str, Any]:
        """特定ユーザーの利用推移（day=7日, week=4週, month=12ヶ月）"""
        if period not in USER_PERIOD_OPTIONS:
            raise BadRequestError(f"Invalid period: {period}")

        if not self.db.collection(USERS).document(user_id).get().exists:
            raise NotFoundError("User not found")

        if period == "month":
            end_month = current_month_str()
            start_month = months_back(11)
            usage = self._query_user_docs(USAGE_MONTHLY, user_id, "month", start_month, end_month)
            return {
                "usage": usage,
                "totals": sum_totals(usage),
                "breakdown": calculate_breakdown(usage),
                "period": "month",
                "startMonth": start_month,
                "endMonth": end_month,
            }

        end_date = today_str()
        start_date = days_ago_str(7 if period == "day" else 28)
        daily = self._query_user_docs(USAGE_DAILY, user_id, "date", start_date, end_date)
        usage = daily if period == "day" else group_daily_by_week(daily)

        return {
            "usage": usage,
            "totals": sum_totals(usage),
            "breakdown": calculate_breakdown(usage),
            "period": period,
            "startDate": start_date,
            "endDate": end_date,
        }
