"""
通知履歴ページ

送信済み・抑制された通知の一覧（種別・状態・期間で絞り込み、20件ずつ表示）と
通知種別のリファレンス。
"""

from typing import Any, Dict, List

import pandas as pd
import plotly.express as px
import streamlit as st

from sircharge_admin.constants import NOTIFICATION_STATUS_LABELS, NOTIFICATION_TYPE_LABELS
from sircharge_admin.modules.common import csv_download, fetch, refresh_button
from sircharge_admin.notification_history import (
    NOTIFICATION_CATALOG,
    format_relative_time,
    paginate,
    status_color,
    status_label,
    type_label,
)
from sircharge_admin.utils import days_ago_str

TIME_RANGES = {"直近7日": 7, "直近30日": 30, "全期間": 0}


def notifications_frame(records: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = [
        {
            "sent": format_relative_time(r.get("sentAt")),
            "type": type_label(r.get("type")),
            "status": status_label(r.get("status")),
            "title": r.get("title") or "",
            "body": r.get("body") or "",
            "userId": r.get("userId"),
            "suppressionReason": r.get("suppressionReason") or "",
            "sentAt": r.get("sentAt"),
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=[
        "sent", "type", "status", "title", "body", "userId", "suppressionReason", "sentAt",
    ])


def _render_summary(summary: Dict[str, Any]):
    by_status = summary.get("byStatus", {})
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("件数", summary.get("total", 0))
    col2.metric("開封", by_status.get("opened", 0))
    col3.metric("抑制", by_status.get("suppressed", 0))
    col4.metric("開封率", f"{summary.get('openRate', 0) * 100:.1f}%")

    if by_status:
        df = pd.DataFrame([{"status": s, "count": c} for s, c in by_status.items()])
        fig = px.bar(df, x="status", y="count", color="status",
                     color_discrete_map={s: status_color(s) for s in df["status"]})
        st.plotly_chart(fig, use_container_width=True)


def _render_history():
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        notification_type = st.selectbox("種別", ["all"] + list(NOTIFICATION_TYPE_LABELS),
                                         format_func=lambda t: "すべて" if t == "all" else type_label(t))
    with col2:
        status = st.selectbox("状態", ["all"] + list(NOTIFICATION_STATUS_LABELS),
                              format_func=lambda s: "すべて" if s == "all" else status_label(s))
    with col3:
        time_range = st.selectbox("期間", list(TIME_RANGES), index=1)
    with col4:
        user_id = st.text_input("ユーザーID（任意）")

    days = TIME_RANGES[time_range]
    data = fetch(
        "/notifications",
        userId=user_id or None,
        type=None if notification_type == "all" else notification_type,
        status=None if status == "all" else status,
        startDate=days_ago_str(days) if days else None,
        limit=100,
    )
    if not data:
        return

    records = data.get("notifications", [])
    _render_summary(data.get("summary", {}))
    if not records:
        st.info("通知履歴はありません。")
        return

    page_count = paginate(records, 1)["totalPages"]
    page = st.number_input("ページ", min_value=1, max_value=page_count, value=1, step=1)
    current = paginate(records, int(page))
    st.caption(f"{current['total']}件中 {current['page']}/{current['totalPages']}ページ")
    st.dataframe(notifications_frame(current["items"]).drop(columns=["sentAt"]),
                 use_container_width=True, hide_index=True)
    csv_download(notifications_frame(records), "notifications.csv")


def _render_catalog():
    df = pd.DataFrame([info.to_dict() for info in NOTIFICATION_CATALOG])
    st.dataframe(df, use_container_width=True, hide_index=True)


def render_notifications_page():
    """通知ページのメイン描画関数"""
    st.title("🔔 通知")
    refresh_button("notifications_refresh")

    tab1, tab2 = st.tabs(["📜 履歴", "📚 通知種別"])
    with tab1:
        _render_history()
    with tab2:
        _render_catalog()
