"""
アプリのパフォーマンス指標ページ

日次集計（起動時間・画面遷移・スクロールFPS・API応答時間・遅いレンダリング）と
生データの閲覧、手動集計・古い生データの削除を行う。
"""

from typing import Any, Dict, List

import pandas as pd
import plotly.express as px
import streamlit as st

from sircharge_admin.constants import METRIC_TYPES
from sircharge_admin.modules.common import csv_download, date_range_inputs, fetch, mutate, refresh_button
from sircharge_admin.utils import days_ago_str


def startup_frame(aggregates: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = [
        {"date": agg["date"], **agg["startup"]}
        for agg in aggregates if agg.get("startup")
    ]
    return pd.DataFrame(rows, columns=["date", "count", "avgMs", "p50Ms", "p95Ms"])


def keyed_stats_frame(aggregates: List[Dict[str, Any]], field: str, key_name: str) -> pd.DataFrame:
    """screenTransitions / apiLatency / scrollFps のような {キー: 統計} を縦持ちに展開"""
    rows = []
    for agg in aggregates:
        for key, stats in (agg.get(field) or {}).items():
            rows.append({"date": agg.get("date"), key_name: key, **stats})
    return pd.DataFrame(rows)


def _render_summary(summary: Dict[str, Any]):
    col1, col2, col3 = st.columns(3)
    col1.metric("集計日数", summary.get("days", 0))
    col2.metric("メトリクス件数", f"{summary.get('totalMetrics', 0):,}")
    col3.metric("平均起動時間", f"{summary.get('startupAvgMs', 0):,} ms")

    api = summary.get("apiLatency") or {}
    if api:
        df = pd.DataFrame([{"endpoint": endpoint, **stats} for endpoint, stats in api.items()])
        df = df.sort_values(by="count", ascending=False)
        st.dataframe(
            df,
            column_config={
                "endpoint": st.column_config.TextColumn("エンドポイント", width="large"),
                "count": st.column_config.NumberColumn("件数", format="%d"),
                "avgMs": st.column_config.NumberColumn("平均 (ms)", format="%d"),
                "errorRate": st.column_config.ProgressColumn("エラー率", format="%.2f", min_value=0, max_value=1),
            },
            use_container_width=True,
            hide_index=True,
        )


def _render_aggregates(aggregates: List[Dict[str, Any]]):
    if not aggregates:
        st.info("この期間の集計データはありません。「集計を実行」で日次集計を作成できます。")
        return

    tab1, tab2, tab3, tab4 = st.tabs(["🚀 起動", "📱 画面遷移", "🌐 API", "🐢 遅いレンダリング"])

    with tab1:
        df = startup_frame(aggregates)
        if df.empty:
            st.info("起動時間のデータはありません。")
        else:
            fig = px.line(df, x="date", y=["avgMs", "p50Ms", "p95Ms"], markers=True,
                          labels={"date": "日付", "value": "ミリ秒", "variable": "指標"})
            st.plotly_chart(fig, use_container_width=True)

    with tab2:
        df = keyed_stats_frame(aggregates, "screenTransitions", "screen")
        if df.empty:
            st.info("画面遷移のデータはありません。")
        else:
            st.plotly_chart(px.bar(df, x="date", y="avgMs", color="screen", barmode="group"),
                            use_container_width=True)
            st.dataframe(df, use_container_width=True, hide_index=True)
            csv_download(df, "screen_transitions.csv")

    with tab3:
        df = keyed_stats_frame(aggregates, "apiLatency", "endpoint")
        if df.empty:
            st.info("API応答時間のデータはありません。")
        else:
            st.plotly_chart(px.line(df, x="date", y="p95Ms", color="endpoint", markers=True),
                            use_container_width=True)
            st.dataframe(df, use_container_width=True, hide_index=True)
            csv_download(df, "api_latency.csv")

    with tab4:
        rows = [
            {"date": agg.get("date"), **render}
            for agg in aggregates for render in agg.get("slowRenders") or []
        ]
        df = pd.DataFrame(rows)
        if df.empty:
            st.info("レンダリングのデータはありません。")
        else:
            st.dataframe(df, use_container_width=True, hide_index=True)


def _render_raw_metrics(start_date: str, end_date: str):
    col1, col2 = st.columns(2)
    with col1:
        metric_type = st.selectbox("種類", ["すべて"] + METRIC_TYPES, key="perf_metric_type")
    with col2:
        user_id = st.text_input("ユーザーID（任意）", key="perf_raw_user")

    data = fetch(
        "/performance",
        startDate=start_date,
        endDate=end_date,
        mode="raw",
        metricType=None if metric_type == "すべて" else metric_type,
        userId=user_id or None,
    )
    if not data:
        return
    df = pd.DataFrame(data.get("rawMetrics", []))
    if df.empty:
        st.info("生データはありません。")
        return
    st.caption(f"{len(df):,}件")
    st.dataframe(df.drop(columns=["metadata"], errors="ignore"), use_container_width=True, hide_index=True)
    csv_download(df, f"performance_raw_{start_date}_{end_date}.csv")


def _render_maintenance():
    with st.expander("🛠 メンテナンス"):
        with st.form("perf_aggregate_form"):
            date = st.text_input("集計する日付 (YYYY-MM-DD)", days_ago_str(1))
            if st.form_submit_button("集計を実行"):
                result = mutate("POST", "/performance", {"date": date})
                if result:
                    st.success(result.get("message") or f"{date} を集計しました")

        with st.form("perf_purge_form"):
            days = st.number_input("この日数より古い生データを削除", min_value=1, value=30, step=1)
            confirm = st.checkbox("削除を確認しました（集計データは残ります）")
            if st.form_submit_button("生データを削除", type="primary"):
                if not confirm:
                    st.warning("確認にチェックしてください。")
                else:
                    result = mutate("DELETE", "/performance", {"olderThanDays": int(days)})
                    if result:
                        st.success(result.get("message"))


def render_performance_page():
    """パフォーマンスページのメイン描画関数"""
    st.title("⚡ パフォーマンス")
    refresh_button("perf_refresh")

    start_date, end_date = date_range_inputs("perf", default_days=7)
    users = fetch("/performance", startDate=start_date, endDate=end_date, mode="users") or {}
    user_id = st.selectbox("ユーザー", ["全ユーザー"] + users.get("userIds", []), key="perf_user")

    view = st.radio("表示", ["集計", "生データ"], horizontal=True, key="perf_view")
    if view == "生データ":
        _render_raw_metrics(start_date, end_date)
    else:
        data = fetch(
            "/performance",
            startDate=start_date,
            endDate=end_date,
            userId=None if user_id == "全ユーザー" else user_id,
        )
        if data:
            _render_summary(data.get("summary", {}))
            _render_aggregates(data.get("aggregates", []))

    _render_maintenance()
