"""
通知履歴モジュール

notifications コレクションの送信記録を検索・集計する。
管理画面の通知種別リファレンス（トリガー・スケジュール・チャンネル）もここで定義する。
"""

import datetime
import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from google.cloud.firestore_v1 import FieldFilter, Query

from sircharge_admin.constants import (
    NOTIFICATION_STATUS_COLORS,
    NOTIFICATION_STATUS_LABELS,
    NOTIFICATION_TYPE_LABELS,
    NOTIFICATIONS,
)
from sircharge_admin.errors import BadRequestError
from sircharge_admin.firestore_db import doc_to_dict
from sircharge_admin.utils import serialize_value, to_datetime, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
PER_PAGE = 20
OPENABLE_STATUSES = ("sent", "delivered", "opened")


@dataclass
class NotificationTypeInfo:
    """通知種別の説明"""
    type: str
    name: str
    description: str
    trigger: str  # scheduled / realtime / firestore
    schedule: str
    channel: str
    data_fields: List[str] = field(default_factory=list)
    cloud_function: Optional[str] = None
    user_preference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


NOTIFICATION_CATALOG = [
    NotificationTypeInfo(
        "daily_summary", "Daily Summary",
        "Summary of daily activities including steps, workouts, and highlights",
        "scheduled", "Daily at 8 PM UTC (adjusts to user timezone)", "daily_summaries",
        ["type", "summaryId", "date"], "sendDailySummary",
        "notificationPreferences.dailySummary.enabled",
    ),
    NotificationTypeInfo(
        "weekly_insights", "Weekly Insights",
        "Weekly analysis of patterns, trends, and achievements",
        "scheduled", "Monday at 9 AM UTC", "insights",
        ["type", "insightId", "weekStart", "weekEnd"], "sendWeeklyInsights",
        "notificationPreferences.weeklyInsights.enabled",
    ),
    NotificationTypeInfo(
        "fun_fact", "Fun Facts",
        "Personalized fun facts based on user data",
        "scheduled", "Hourly check, sends at the user's preferred time (default 9 AM)", "fun_facts",
        ["type", "factId", "category", "route"], "sendDailyFunFact",
        "notificationPreferences.funFacts.enabled",
    ),
    NotificationTypeInfo(
        "achievement", "Achievement",
        "Milestone achievements (10th visit, 100 workouts, etc.)",
        "firestore", "Real-time on milestone detection", "insights",
        ["type", "achievementId", "category", "milestone"], "checkAchievements (Firestore trigger)",
        "notificationPreferences.achievements",
    ),
    NotificationTypeInfo(
        "event_reminder", "Event Reminder",
        "Reminders for upcoming events and calendar items",
        "scheduled", "Per-event (15min, 1hr or 1day before)", "event_reminders",
        ["type", "eventId", "eventTitle", "startTime"], "eventNotificationScheduler",
        "notificationPreferences.eventReminders",
    ),
    NotificationTypeInfo(
        "pattern_reminder", "Pattern Reminder",
        "Reminders based on detected behavior patterns",
        "scheduled", "Based on detected patterns", "pattern_reminders",
        ["type", "patternId", "activity", "suggestedTime"], "schedulePatternNotifications",
        "notificationPreferences.locationAlerts",
    ),
    NotificationTypeInfo(
        "escalated_reminder", "Escalated Reminder",
        "Follow-up reminders for missed or snoozed events",
        "scheduled", "After initial reminder is missed", "important_events",
        ["type", "eventId", "escalationLevel", "originalTime"], "EscalationService",
        "notificationPreferences.escalations",
    ),
    NotificationTypeInfo(
        "location_alert", "Location Alert",
        "Alerts triggered when arriving at or leaving saved places",
        "realtime", "On geofence transition", "location",
        ["type", "placeId", "transition"], None,
        "notificationPreferences.locationAlerts",
    ),
]


def type_label(notification_type: str) -> str:
    return NOTIFICATION_TYPE_LABELS.get(notification_type, notification_type)


def status_label(status: str) -> str:
    return NOTIFICATION_STATUS_LABELS.get(status, status)


def status_color(status: str) -> str:
    return NOTIFICATION_STATUS_COLORS.get(status, "#6B7280")


def summarize(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """種別・状態ごとの件数と開封率"""
    by_type = Counter(r.get("type") or "unknown" for r in records)
    by_status = Counter(r.get("status") or "unknown" for r in records)
    openable = sum(by_status.get(status, 0) for status in OPENABLE_STATUSES)
    return {
        "total": len(records),
        "byType": dict(by_type),
        "byStatus": dict(by_status),
        "openRate": by_status.get("opened", 0) / openable if openable else 0.0,
    }


def paginate(items: List[Any], page: int, per_page: int = PER_PAGE) -> Dict[str, Any]:
    """クライアント側のページ分割（範囲外のページは最終ページに丸める）"""
    total_pages = max(math.ceil(len(items) / per_page), 1)
    page = min(max(page, 1), total_pages)
    start = (page - 1) * per_page
    return {
        "items": items[start:start + per_page],
        "page": page,
        "totalPages": total_pages,
        "total": len(items),
    }


def format_relative_time(value: Any, now: Optional[datetime.datetime] = None) -> str:
    dt = to_datetime(value)
    if dt is None:
        return ""
    now = now or utc_now()
    diff_seconds = (now - dt).total_seconds()
    minutes = int(diff_seconds // 60)
    hours = int(diff_seconds // 3600)
    days = int(diff_seconds // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"

    label = f"{dt.strftime('%b')} {dt.day}"
    if dt.year != now.year:
        label += f", {dt.year}"
    return label


class NotificationHistory:
    """notifications コレクションの参照"""

    def __init__(self, db):
        self.db = db

    def list(
        self,
        user_id: Optional[str] = None,
        notification_type: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> List[Dict[str, Any]]:
        """送信記録を新しい順に取得"""
        if notification_type and notification_type not in NOTIFICATION_TYPE_LABELS:
            raise BadRequestError(f"Invalid type: {notification_type}")
        if status and status not in NOTIFICATION_STATUS_LABELS:
            raise BadRequestError(f"Invalid status: {status}")

        query = self.db.collection(NOTIFICATIONS)
        if user_id:
            query = query.where(filter=FieldFilter("userId", "==", user_id))
        if notification_type:
            query = query.where(filter=FieldFilter("type", "==", notification_type))
        if status:
            query = query.where(filter=FieldFilter("status", "==", status))
        if start_date:
            query = query.where(filter=FieldFilter("sentAt", ">=", start_date))
        query = query.order_by("sentAt", direction=Query.DESCENDING).limit(limit)

        records = [serialize_value(doc_to_dict(doc)) for doc in query.stream()]
        logger.info(f"[Notifications] {len(records)}件の通知履歴を取得")
        return records

    def get_history(self, **filters) -> Dict[str, Any]:
        records = self.list(**filters)
        return {"notifications": records, "summary": summarize(records)}
