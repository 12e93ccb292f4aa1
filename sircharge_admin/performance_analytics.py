"""
アプリのパフォーマンス計測データ集計モジュール

主な機能:
- 生データ（performanceMetrics）から日次集計（performanceAggregates）を作成
- 期間全体のサマリー（件数で重み付けした平均）
- 古い生データの削除（集計は残す）
"""

import datetime
import logging
import math
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from google.cloud.firestore_v1 import FieldFilter, Query

from sircharge_admin.constants import PERFORMANCE_AGGREGATES, PERFORMANCE_METRICS
from sircharge_admin.errors import BadRequestError
from sircharge_admin.firestore_db import commit_in_batches
from sircharge_admin.utils import (
    average,
    date_part,
    day_end,
    day_start,
    days_ago_str,
    is_valid_date,
    require_date_range,
    to_iso,
    today_str,
    utc_now,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

RAW_LIMIT = 500
USER_SCAN_LIMIT = 2000
SLOW_RENDERS_LIMIT = 20
MODES = ("aggregated", "raw", "users")


def percentile(values: List[float], p: float) -> float:
    """nearest-rank法によるパーセンタイル"""
    if not values:
        return 0
    ordered = sorted(values)
    idx = math.ceil((p / 100) * len(ordered)) - 1
    return ordered[max(0, idx)]


def _latency_stats(values: List[float]) -> Dict[str, Any]:
    return {
        "count": len(values),
        "avgMs": round(average(values)),
        "p50Ms": round(percentile(values, 50)),
        "p95Ms": round(percentile(values, 95)),
    }


def _metadata(metric: Dict[str, Any]) -> Dict[str, Any]:
    return metric.get("metadata") or {}


def estimate_total(metrics: Iterable[Dict[str, Any]]) -> int:
    """sampleRate（0 < r <= 1）から本来の発生件数を推定"""
    total = 0.0
    for metric in metrics:
        rate = metric.get("sampleRate")
        try:
            rate = float(rate)
        except (TypeError, ValueError):
            rate = 1.0
        if rate <= 0 or rate > 1:
            rate = 1.0
        total += 1.0 / rate
    return int(round(total))


def aggregate_metrics(metrics: List[Dict[str, Any]], date_str: str) -> Dict[str, Any]:
    """生データのリストから日次集計を作成（Firestoreに依存しない純粋関数）"""
    by_type: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for metric in metrics:
        by_type[metric.get("metricType")].append(metric)

    aggregate: Dict[str, Any] = {"date": date_str, "computedAt": utc_now_iso()}

    # app_startup
    startup_values = [m.get("value") or 0 for m in by_type["app_startup"]]
    if startup_values:
        aggregate["startup"] = _latency_stats(startup_values)

    # screen_transition
    transitions: Dict[str, List[float]] = defaultdict(list)
    for m in by_type["screen_transition"]:
        transitions[m.get("screenName") or "unknown"].append(m.get("value") or 0)
    aggregate["screenTransitions"] = {
        screen: _latency_stats(values) for screen, values in transitions.items()
    }

    # scroll_fps
    scroll: Dict[str, Dict[str, List[float]]] = defaultdict(lambda: {"fps": [], "dropped": []})
    for m in by_type["scroll_fps"]:
        entry = scroll[m.get("screenName") or "unknown"]
        entry["fps"].append(m.get("value") or 0)
        entry["dropped"].append(_metadata(m).get("droppedFrames") or 0)
    aggregate["scrollFps"] = {
        screen: {
            "count": len(data["fps"]),
            "avgFps": round(average(data["fps"]), 1),
            "minFps": min(data["fps"]),
            "avgDroppedFrames": round(average(data["dropped"]), 1),
        }
        for screen, data in scroll.items()
    }

    # js_thread_fps
    js_values = [m.get("value") or 0 for m in by_type["js_thread_fps"]]
    if js_values:
        aggregate["jsThreadFps"] = {
            "count": len(js_values),
            "avgFps": round(average(js_values), 1),
            "minFps": min(js_values),
            "below30Count": sum(1 for v in js_values if v < 30),
            "below45Count": sum(1 for v in js_values if v < 45),
        }

    # api_response_time
    api: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"values": [], "errors": 0})
    for m in by_type["api_response_time"]:
        meta = _metadata(m)
        entry = api[meta.get("endpoint") or "unknown"]
        entry["values"].append(m.get("value") or 0)
        if meta.get("isError"):
            entry["errors"] += 1
    aggregate["apiLatency"] = {
        endpoint: {**_latency_stats(data["values"]), "errorCount": data["errors"]}
        for endpoint, data in api.items()
    }

    # component_render（遅いレンダリング上位）
    renders: Dict[str, Dict[str, Any]] = {}
    for m in by_type["component_render"]:
        component = _metadata(m).get("componentName") or "unknown"
        if component not in renders:
            renders[component] = {"screen": m.get("screenName") or "unknown", "values": []}
        renders[component]["values"].append(m.get("value") or 0)
    slow_renders = [
        {
            "componentName": component,
            "screenName": data["screen"],
            "count": len(data["values"]),
            "avgDurationMs": round(average(data["values"])),
            "maxDurationMs": max(data["values"]),
        }
        for component, data in renders.items()
    ]
    slow_renders.sort(key=lambda r: r["avgDurationMs"], reverse=True)
    aggregate["slowRenders"] = slow_renders[:SLOW_RENDERS_LIMIT]

    aggregate["totalMetrics"] = len(metrics)
    aggregate["estimatedTotalMetrics"] = estimate_total(metrics)
    aggregate["uniqueUsers"] = len({m.get("userId") for m in metrics})
    return aggregate


def _weighted(pairs: List[tuple]) -> float:
    """(平均値, 件数) のリストから件数で重み付けした平均"""
    total = sum(count for _, count in pairs)
    if total == 0:
        return 0.0
    return sum(value * count for value, count in pairs) / total


def summarize_aggregates(aggregates: List[Dict[str, Any]]) -> Dict[str, Any]:
    """日次集計を期間全体のサマリーにまとめる"""
    startup_pairs = [
        (agg["startup"]["avgMs"], agg["startup"]["count"])
        for agg in aggregates if agg.get("startup")
    ]

    endpoints: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"pairs": [], "count": 0, "errors": 0})
    for agg in aggregates:
        for endpoint, stats in (agg.get("apiLatency") or {}).items():
            entry = endpoints[endpoint]
            entry["pairs"].append((stats.get("avgMs") or 0, stats.get("count") or 0))
            entry["count"] += stats.get("count") or 0
            entry["errors"] += stats.get("errorCount") or 0

    api_summary = {
        endpoint: {
            "count": data["count"],
            "avgMs": round(_weighted(data["pairs"])),
            "errorRate": round(data["errors"] / data["count"], 4) if data["count"] else 0.0,
        }
        for endpoint, data in endpoints.items()
    }

    return {
        "days": len(aggregates),
        "totalMetrics": sum(agg.get("totalMetrics") or 0 for agg in aggregates),
        "startupAvgMs": round(_weighted(startup_pairs)),
        "startupCount": sum(count for _, count in startup_pairs),
        "apiLatency": api_summary,
    }


class PerformanceAnalytics:
    """パフォーマンスAPIのデータ取得・集計クラス"""

    def __init__(self, db):
        self.db = db

    def _raw_query(self, start_date: str, end_date: str, limit: int):
        return (
            self.db.collection(PERFORMANCE_METRICS)
            .where(filter=FieldFilter("timestamp", ">=", day_start(start_date)))
            .where(filter=FieldFilter("timestamp", "<=", day_end(end_date)))
            .order_by("timestamp", direction=Query.DESCENDING)
            .limit(limit)
        )

    def list_user_ids(self, start_date: str, end_date: str) -> List[str]:
        user_ids = set()
        for doc in self._raw_query(start_date, end_date, USER_SCAN_LIMIT).stream():
            uid = (doc.to_dict() or {}).get("userId")
            if uid:
                user_ids.add(uid)
        return sorted(user_ids)

    def list_raw_metrics(
        self,
        start_date: str,
        end_date: str,
        user_id: Optional[str] = None,
        metric_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        metrics = []
        for doc in self._raw_query(start_date, end_date, RAW_LIMIT).stream():
            data = doc.to_dict() or {}
            metric = {
                "id": data.get("id") or doc.id,
                "userId": data.get("userId"),
                "timestamp": data.get("timestamp"),
                "metricType": data.get("metricType"),
                "screenName": data.get("screenName"),
                "value": data.get("value"),
                "metadata": data.get("metadata"),
                "platform": data.get("platform"),
                "sessionId": data.get("sessionId"),
                "createdAt": data.get("createdAt"),
            }
            # 複合インデックスを増やさないよう絞り込みはメモリ上で行う
            if user_id and metric["userId"] != user_id:
                continue
            if metric_type and metric["metricType"] != metric_type:
                continue
            metrics.append(metric)
        return metrics

    def aggregate_for_user(self, start_date: str, end_date: str, user_id: str) -> List[Dict[str, Any]]:
        """特定ユーザーの生データをその場で日次集計"""
        by_date: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for doc in self._raw_query(start_date, end_date, USER_SCAN_LIMIT).stream():
            data = doc.to_dict() or {}
            if data.get("userId") != user_id:
                continue
            date = date_part(data.get("timestamp"))
            if date:
                by_date[date].append(data)
        return [aggregate_metrics(by_date[date], date) for date in sorted(by_date)]

    def list_aggregates(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        query = (
            self.db.collection(PERFORMANCE_AGGREGATES)
            .where(filter=FieldFilter("date", ">=", start_date))
            .where(filter=FieldFilter("date", "<=", end_date))
            .order_by("date")
        )
        aggregates = []
        for doc in query.stream():
            data = doc.to_dict() or {}
            aggregate = {
                "date": data.get("date"),
                "computedAt": data.get("computedAt"),
                "screenTransitions": data.get("screenTransitions") or {},
                "scrollFps": data.get("scrollFps") or {},
                "apiLatency": data.get("apiLatency") or {},
                "slowRenders": data.get("slowRenders") or [],
                "totalMetrics": data.get("totalMetrics") or 0,
                "uniqueUsers": data.get("uniqueUsers") or 0,
            }
            for optional in ("startup", "jsThreadFps", "estimatedTotalMetrics"):
                if data.get(optional) is not None:
                    aggregate[optional] = data[optional]
            aggregates.append(aggregate)
        return aggregates

    def get(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        mode: str = "aggregated",
        metric_type: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """GET /performance の本体（デフォルトは直近7日）"""
        end_date = end_date or today_str()
        start_date = start_date or days_ago_str(7)
        require_date_range(start_date, end_date)
        if mode not in MODES:
            raise BadRequestError(f"Invalid mode: {mode}")

        if mode == "users":
            return {"userIds": self.list_user_ids(start_date, end_date)}

        if mode == "raw":
            return {
                "aggregates": [],
                "rawMetrics": self.list_raw_metrics(start_date, end_date, user_id, metric_type),
            }

        if user_id:
            aggregates = self.aggregate_for_user(start_date, end_date, user_id)
        else:
            aggregates = self.list_aggregates(start_date, end_date)
        return {"aggregates": aggregates, "summary": summarize_aggregates(aggregates)}

    def aggregate_day(self, date_str: Any) -> Dict[str, Any]:
        """指定日の生データを集計して performanceAggregates/{date} に保存"""
        if not is_valid_date(date_str):
            raise BadRequestError("Valid date (YYYY-MM-DD) is required")

        query = (
            self.db.collection(PERFORMANCE_METRICS)
            .where(filter=FieldFilter("timestamp", ">=", day_start(date_str)))
            .where(filter=FieldFilter("timestamp", "<=", day_end(date_str)))
        )
        metrics = [doc.to_dict() or {} for doc in query.stream()]
        if not metrics:
            return {"success": True, "message": f"No metrics found for {date_str}"}

        aggregate = aggregate_metrics(metrics, date_str)
        self.db.collection(PERFORMANCE_AGGREGATES).document(date_str).set(aggregate)
        logger.info(f"[Performance] {date_str}: {aggregate['totalMetrics']}件を集計")

        return {
            "success": True,
            "message": f"Aggregated {aggregate['totalMetrics']} metrics for {date_str} (all 6 metric types)",
        }

    def purge_raw_metrics(self, older_than_days: Any) -> Dict[str, Any]:
        """N日より古い生データを削除（集計データは残す）"""
        if (
            isinstance(older_than_days, bool)
            or not isinstance(older_than_days, (int, float))
            or older_than_days < 1
        ):
            raise BadRequestError("olderThanDays must be a positive number")

        try:
            cutoff = utc_now() - datetime.timedelta(days=older_than_days)
        except (OverflowError, ValueError):
            raise BadRequestError("olderThanDays is out of range")
        cutoff_str = to_iso(cutoff)

        total_deleted = 0
        while True:
            docs = list(
                self.db.collection(PERFORMANCE_METRICS)
                .where(filter=FieldFilter("timestamp", "<", cutoff_str))
                .limit(RAW_LIMIT)
                .stream()
            )
            if not docs:
                break
            total_deleted += commit_in_batches(
                self.db, (doc.reference for doc in docs), lambda batch, ref: batch.delete(ref)
            )
            if len(docs) < RAW_LIMIT:
                break

        logger.info(f"[Performance] {older_than_days}日より古い生データを{total_deleted}件削除")
        return {
            "success": True,
            "deleted": total_deleted,
            "message": (
                f"Purged {total_deleted} raw metrics older than {older_than_days} days "
                f"(before {cutoff_str[:10]}). Aggregates preserved."
            ),
        }
