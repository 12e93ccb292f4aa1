"""
ユーザー行動分析ページ
"""

from typing import Any, Dict

import pandas as pd
import plotly.express as px
import streamlit as st

from sircharge_admin.modules.common import csv_download, date_range_inputs, fetch, refresh_button


def _format_duration(ms: float) -> str:
    seconds = int((ms or 0) / 1000)
    if seconds < 60:
        return f"{seconds}秒"
    return f"{seconds // 60}分{seconds % 60}秒"


def platform_frame(breakdown: Dict[str, Dict[str, int]]) -> pd.DataFrame:
    return pd.DataFrame([
        {"platform": platform, "users": stats.get("users", 0), "sessions": stats.get("sessions", 0)}
        for platform, stats in breakdown.items()
    ], columns=["platform", "users", "sessions"])


def _render_overview(data: Dict[str, Any]):
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("アクティブユーザー", data.get("activeUsers", 0))
    col2.metric("新規ユーザー", data.get("newUsers", 0))
    col3.metric("セッション", data.get("totalSessions", 0))
    col4.metric("平均セッション時間", _format_duration(data.get("avgSessionDurationMs", 0)))

    trend = pd.DataFrame(data.get("dailyTrend", []))
    if not trend.empty:
        fig = px.line(trend, x="date", y=["activeUsers", "sessions", "screenViews", "featureUses"], markers=True,
                      labels={"date": "日付", "value": "件数", "variable": "指標"})
        st.plotly_chart(fig, use_container_width=True)
        csv_download(trend, f"behavior_{data.get('startDate')}_{data.get('endDate')}.csv")

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("📱 よく見られる画面")
        screens = pd.DataFrame(data.get("topScreens", []))
        if screens.empty:
            st.info("画面閲覧のデータはありません。")
        else:
            st.plotly_chart(px.bar(screens, x="count", y="screen", orientation="h"), use_container_width=True)
    with col2:
        st.subheader("✨ よく使われる機能")
        features = pd.DataFrame(data.get("topFeatures", []))
        if features.empty:
            st.info("機能利用のデータはありません。")
        else:
            st.plotly_chart(px.bar(features, x="count", y="feature", orientation="h"), use_container_width=True)

    platforms = platform_frame(data.get("platformBreakdown", {}))
    if platforms["sessions"].sum() > 0:
        st.plotly_chart(px.pie(platforms, names="platform", values="sessions", title="プラットフォーム別セッション"),
                        use_container_width=True)


def _render_user(user_id: str, start_date: str, end_date: str):
    data = fetch(f"/behavior/{user_id}", startDate=start_date, endDate=end_date)
    if not data:
        return
    col1, col2 = st.columns(2)
    col1.metric("セッション", data.get("totalSessions", 0))
    col2.metric("平均セッション時間", _format_duration(data.get("avgSessionDurationMs", 0)))

    sessions = pd.DataFrame(data.get("sessions", []))
    if sessions.empty:
        st.info("この期間のセッションはありません。")
    else:
        st.dataframe(sessions, use_container_width=True, hide_index=True)
        csv_download(sessions, f"behavior_{user_id}.csv")

    for title, key in (("画面別", "screenBreakdown"), ("機能別", "featureBreakdown")):
        breakdown = data.get(key) or {}
        if breakdown:
            st.caption(title)
            st.bar_chart(pd.Series(breakdown, name="count"))


def render_behavior_page():
    """行動分析ページのメイン描画関数"""
    st.title("🧭 ユーザー行動")
    refresh_button("behavior_refresh")

    start_date, end_date = date_range_inputs("behavior", default_days=7)
    user_id = st.text_input("ユーザーID（空欄で全体）", key="behavior_user")

    with st.spinner("行動データを取得中..."):
        if user_id:
            _render_user(user_id, start_date, end_date)
        else:
            data = fetch("/behavior", startDate=start_date, endDate=end_date)
            if data:
                _render_overview(data)
