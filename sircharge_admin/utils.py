"""
日付・数値まわりの共通ヘルパー

Firestore上のタイムスタンプはISO 8601文字列（UTC）で保存されているため、
日付範囲の比較は文字列比較で行う。
"""

import datetime
import re
from typing import Any, Optional

import pytz

from sircharge_admin.errors import BadRequestError

UTC = pytz.UTC
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_now() -> datetime.datetime:
    """UTCの現在時刻を取得"""
    return datetime.datetime.now(UTC)


def utc_now_iso() -> str:
    """JavaScriptの toISOString() と同じ形式（ミリ秒・Z付き）"""
    return to_iso(utc_now())


def to_iso(dt: datetime.datetime) -> str:
    if dt.tzinfo is None:
        dt = UTC.localize(dt)
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def today_str(now: Optional[datetime.datetime] = None) -> str:
    return (now or utc_now()).strftime("%Y-%m-%d")


def days_ago_str(days: int, now: Optional[datetime.datetime] = None) -> str:
    return ((now or utc_now()) - datetime.timedelta(days=days)).strftime("%Y-%m-%d")


def current_month_str(now: Optional[datetime.datetime] = None) -> str:
    return (now or utc_now()).strftime("%Y-%m")


def is_valid_date(value: Any) -> bool:
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return False
    try:
        datetime.date.fromisoformat(value)
    except ValueError:
        return False
    return True


def require_date_range(start_date: str, end_date: str) -> None:
    """startDate / endDate の形式チェック（不正なら400）"""
    if not (is_valid_date(start_date) and is_valid_date(end_date)):
        raise BadRequestError("Invalid startDate/endDate (YYYY-MM-DD)")


def day_start(date_str: str) -> str:
    return f"{date_str}T00:00:00.000Z"


def day_end(date_str: str) -> str:
    return f"{date_str}T23:59:59.999Z"


def date_part(timestamp: Any) -> Optional[str]:
    """ISO文字列 / datetime / Firestore Timestamp から YYYY-MM-DD を取り出す"""
    if timestamp is None:
        return None
    if isinstance(timestamp, str):
        return timestamp.split("T")[0][:10] or None
    if isinstance(timestamp, datetime.datetime):
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(UTC)
        return timestamp.strftime("%Y-%m-%d")
    if isinstance(timestamp, datetime.date):
        return timestamp.isoformat()
    return None


def week_start(date_str: str) -> str:
    """その日を含む週の月曜日（YYYY-MM-DD）"""
    day = datetime.date.fromisoformat(date_str[:10])
    monday = day - datetime.timedelta(days=day.weekday())
    return monday.isoformat()


def date_range(start: str, end: str):
    """start〜end（両端含む）の日付文字列を順に返す"""
    current = datetime.date.fromisoformat(start[:10])
    last = datetime.date.fromisoformat(end[:10])
    while current <= last:
        yield current.isoformat()
        current += datetime.timedelta(days=1)


def months_back(months: int, now: Optional[datetime.datetime] = None) -> str:
    """now を含む月から months ヶ月前の YYYY-MM"""
    now = now or utc_now()
    year, month = now.year, now.month - months
    while month <= 0:
        month += 12
        year -= 1
    return f"{year:04d}-{month:02d}"


def to_datetime(value: Any) -> Optional[datetime.datetime]:
    """ISO文字列 / datetime / Firestore Timestamp をUTCのdatetimeに変換"""
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return UTC.localize(value)
        return value.astimezone(UTC)
    if isinstance(value, str):
        try:
            dt = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return to_datetime(dt)
    if hasattr(value, "timestamp"):
        try:
            return datetime.datetime.fromtimestamp(float(value.timestamp()), tz=UTC)
        except (TypeError, ValueError, OSError):
            return None
    return None


def serialize_value(value: Any) -> Any:
    """JSONレスポンス用にdatetime/Timestampを文字列化（ネストも対応）"""
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    if isinstance(value, datetime.datetime):
        return to_iso(value)
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value


def round_to(value: float, digits: int) -> float:
    return round(float(value or 0), digits)


def average(values) -> float:
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)
