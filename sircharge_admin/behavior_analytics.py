"""
ユーザー行動分析モジュール

behaviorSessions / behaviorEvents から画面閲覧・機能利用の概要を集計する。
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from google.cloud.firestore_v1 import FieldFilter

from sircharge_admin.constants import BEHAVIOR_EVENTS, BEHAVIOR_SESSIONS
from sircharge_admin.utils import (
    date_part,
    date_range,
    day_end,
    day_start,
    days_ago_str,
    require_date_range,
    today_str,
)

logger = logging.getLogger(__name__)

TOP_LIMIT = 10


def is_screen_view(event: Dict[str, Any]) -> bool:
    return event.get("eventType") == "screen_view" and event.get("action") == "view"


def is_feature_use(event: Dict[str, Any]) -> bool:
    return event.get("eventType") == "feature_use"


def rank_targets(events: Iterable[Dict[str, Any]], label: str, limit: int = TOP_LIMIT) -> List[Dict[str, Any]]:
    """target ごとの件数とユニークユーザー数を件数の多い順に返す"""
    counts: Dict[str, int] = defaultdict(int)
    users: Dict[str, set] = defaultdict(set)
    for event in events:
        target = event.get("target")
        if not target:
            continue
        counts[target] += 1
        if event.get("userId"):
            users[target].add(event["userId"])

    ranked = [
        {label: target, "count": count, "uniqueUsers": len(users[target])}
        for target, count in counts.items()
    ]
    ranked.sort(key=lambda item: item["count"], reverse=True)
    return ranked[:limit]


def build_overview(
    sessions: List[Dict[str, Any]],
    events: List[Dict[str, Any]],
    start_date: str,
    end_date: str,
    new_users: int = 0,
) -> Dict[str, Any]:
    """セッションとイベントから行動分析の概要を作成"""
    user_ids = {s.get("userId") for s in sessions if s.get("userId")}
    active_users = len(user_ids)
    total_sessions = len(sessions)

    durations = [s.get("durationMs") or 0 for s in sessions if s.get("durationMs") is not None]
    avg_duration = sum(durations) / len(durations) if durations else 0

    screen_views = [e for e in events if is_screen_view(e)]
    feature_uses = [e for e in events if is_feature_use(e)]

    # プラットフォーム別（mobile以外はwebとして数える）
    platform_users = {"mobile": set(), "web": set()}
    platform_sessions = {"mobile": 0, "web": 0}
    for session in sessions:
        if not session.get("userId"):
            continue
        platform = "mobile" if session.get("platform") == "mobile" else "web"
        platform_sessions[platform] += 1
        platform_users[platform].add(session["userId"])

    platform_breakdown = {
        platform: {"users": len(platform_users[platform]), "sessions": platform_sessions[platform]}
        for platform in ("mobile", "web")
    }

    # 日次推移（期間内の全日付を0で初期化）
    daily = {
        date: {"activeUsers": set(), "sessions": 0, "screenViews": 0, "featureUses": 0}
        for date in date_range(start_date, end_date)
    }
    for session in sessions:
        date = date_part(session.get("startedAt"))
        if date in daily:
            daily[date]["sessions"] += 1
            if session.get("userId"):
                daily[date]["activeUsers"].add(session["userId"])
    for event in events:
        date = date_part(event.get("timestamp"))
        if date not in daily:
            continue
        if is_screen_view(event):
            daily[date]["screenViews"] += 1
        elif is_feature_use(event):
            daily[date]["featureUses"] += 1

    daily_trend = [
        {
            "date": date,
            "activeUsers": len(data["activeUsers"]),
            "sessions": data["sessions"],
            "screenViews": data["screenViews"],
            "featureUses": data["featureUses"],
        }
        for date, data in sorted(daily.items())
    ]

    return {
        "startDate": start_date,
        "endDate": end_date,
        "activeUsers": active_users,
        "newUsers": new_users,
        "totalSessions": total_sessions,
        "avgSessionsPerUser": total_sessions / active_users if active_users else 0,
        "avgSessionDurationMs": avg_duration,
        "totalScreenViews": len(screen_views),
        "totalFeatureUses": len(feature_uses),
        "platformBreakdown": platform_breakdown,
        "topScreens": rank_targets(screen_views, "screen"),
        "topFeatures": rank_targets(feature_uses, "feature"),
        "dailyTrend": daily_trend,
    }


class BehaviorAnalytics:
    """行動分析APIのデータ取得クラス"""

    def __init__(self, db):
        self.db = db

    def _range_query(self, collection: str, field: str, start_date: str, end_date: str, user_id: Optional[str] = None):
        query = self.db.collection(collection)
        if user_id:
            query = query.where(filter=FieldFilter("userId", "==", user_id))
        query = (
            query.where(filter=FieldFilter(field, ">=", day_start(start_date)))
            .where(filter=FieldFilter(field, "<=", day_end(end_date)))
        )
        return [doc.to_dict() or {} for doc in query.stream()]

    def count_new_users(self, user_ids: Iterable[str], start_date: str) -> int:
        """startDate より前のセッションを持たないユーザー数"""
        new_users = 0
        try:
            for user_id in user_ids:
                earlier = (
                    self.db.collection(BEHAVIOR_SESSIONS)
                    .where(filter=FieldFilter("userId", "==", user_id))
                    .where(filter=FieldFilter("startedAt", "<", day_start(start_date)))
                    .limit(1)
                    .get()
                )
                if not list(earlier):
                    new_users += 1
        except Exception as e:
            # (userId, startedAt) の複合インデックスが無い場合
            logger.warning(f"[Behavior] 新規ユーザー数の計算をスキップ（インデックス未作成の可能性）: {e}")
            return 0
        return new_users

    def get_overview(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> Dict[str, Any]:
        """全体の行動分析（デフォルトは直近7日）"""
        end_date = end_date or today_str()
        start_date = start_date or days_ago_str(7)
        require_date_range(start_date, end_date)

        sessions = self._range_query(BEHAVIOR_SESSIONS, "startedAt", start_date, end_date)
        events = self._range_query(BEHAVIOR_EVENTS, "timestamp", start_date, end_date)
        user_ids = sorted({s.get("userId") for s in sessions if s.get("userId")})
        new_users = self.count_new_users(user_ids, start_date)

        logger.info(f"[Behavior] {start_date}〜{end_date}: セッション{len(sessions)}件, イベント{len(events)}件")
        return build_overview(sessions, events, start_date, end_date, new_users)

    def get_user_behavior(
        self, user_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> Dict[str, Any]:
        """特定ユーザーのセッション一覧と画面・機能の内訳"""
        end_date = end_date or today_str()
        start_date = start_date or days_ago_str(30)
        require_date_range(start_date, end_date)

        sessions = self._range_query(BEHAVIOR_SESSIONS, "startedAt", start_date, end_date, user_id)
        events = self._range_query(BEHAVIOR_EVENTS, "timestamp", start_date, end_date, user_id)

        screen_breakdown: Dict[str, int] = defaultdict(int)
        feature_breakdown: Dict[str, int] = defaultdict(int)
        for event in events:
            target = event.get("target")
            if not target:
                continue
            if is_screen_view(event):
                screen_breakdown[target] += 1
            elif is_feature_use(event):
                feature_breakdown[target] += 1

        sessions.sort(key=lambda s: s.get("startedAt") or "", reverse=True)
        durations = [s["durationMs"] for s in sessions if s.get("durationMs") is not None]

        return {
            "userId": user_id,
            "startDate": start_date,
            "endDate": end_date,
            "sessions": sessions,
            "totalSessions": len(sessions),
            "totalDurationMs": sum(durations),
            "avgSessionDurationMs": sum(durations) / len(durations) if durations else 0,
            "screenBreakdown": dict(screen_breakdown),
            "featureBreakdown": dict(feature_breakdown),
        }
