"""
LLM利用量・コストのページ

主な機能:
- 期間・集計単位（日/週/月）・サービスでの絞り込み
- コスト推移とオペレーション別内訳のグラフ
- コスト上位ユーザーとユーザー別推移
"""

from typing import Any, Dict, List

import pandas as pd
import plotly.express as px
import streamlit as st

from sircharge_admin.constants import OPERATION_LABELS, SERVICE_OPERATIONS_MAP
from sircharge_admin.modules.common import csv_download, date_range_inputs, fetch, format_usd, refresh_button

GROUP_BY_LABELS = {"day": "日別", "week": "週別", "month": "月別"}
PERIOD_COLUMNS = ("date", "week", "month")


def period_column(item: Dict[str, Any]) -> str:
    return next((col for col in PERIOD_COLUMNS if col in item), "date")


def usage_frame(usage: List[Dict[str, Any]]) -> pd.DataFrame:
    """期間ごとの集計をテーブル用のDataFrameに変換"""
    rows = []
    for item in usage:
        rows.append({
            "period": item.get(period_column(item)),
            "totalCostUSD": item.get("totalCostUSD", 0),
            "totalApiCalls": item.get("totalApiCalls", 0),
            "estimatedApiCalls": item.get("estimatedApiCalls", item.get("totalApiCalls", 0)),
            "totalTokens": item.get("totalTokens", 0),
            "userCount": item.get("userCount", 0),
        })
    return pd.DataFrame(rows, columns=[
        "period", "totalCostUSD", "totalApiCalls", "estimatedApiCalls", "totalTokens", "userCount",
    ])


def operation_frame(usage: List[Dict[str, Any]]) -> pd.DataFrame:
    """オペレーション別コストの縦持ちデータ（積み上げ棒グラフ用）"""
    rows = []
    for item in usage:
        period = item.get(period_column(item))
        for operation, cost in (item.get("operationCosts") or {}).items():
            rows.append({
                "period": period,
                "operation": OPERATION_LABELS.get(operation, operation),
                "costUSD": cost,
                "calls": (item.get("operationCounts") or {}).get(operation, 0),
            })
    return pd.DataFrame(rows, columns=["period", "operation", "costUSD", "calls"])


def _render_overview(data: Dict[str, Any], group_by: str):
    totals = data.get("totals", {})
    usage = data.get("usage", [])

    col1, col2, col3 = st.columns(3)
    col1.metric("総コスト", format_usd(totals.get("totalCost"), 4))
    col2.metric("API呼び出し", f"{totals.get('totalApiCalls', 0):,}")
    col3.metric("トークン数", f"{totals.get('totalTokens', 0):,}")

    if not usage:
        st.info("この期間の利用データはありません。")
        return

    df = usage_frame(usage)
    fig = px.line(df, x="period", y="totalCostUSD", markers=True,
                  labels={"period": GROUP_BY_LABELS[group_by], "totalCostUSD": "コスト (USD)"})
    st.plotly_chart(fig, use_container_width=True)

    ops = operation_frame(usage)
    if not ops.empty:
        fig = px.bar(ops, x="period", y="costUSD", color="operation",
                     labels={"period": GROUP_BY_LABELS[group_by], "costUSD": "コスト (USD)", "operation": "機能"})
        st.plotly_chart(fig, use_container_width=True)

    st.dataframe(
        df,
        column_config={
            "period": st.column_config.TextColumn("期間"),
            "totalCostUSD": st.column_config.NumberColumn("コスト", format="$%.4f"),
            "totalApiCalls": st.column_config.NumberColumn("API呼び出し", format="%d"),
            "estimatedApiCalls": st.column_config.NumberColumn("推定呼び出し", format="%d"),
            "totalTokens": st.column_config.NumberColumn("トークン", format="%d"),
            "userCount": st.column_config.NumberColumn("ユーザー数", format="%d"),
        },
        use_container_width=True,
        hide_index=True,
    )
    csv_download(df, f"usage_{data.get('startDate')}_{data.get('endDate')}.csv")


def _render_top_users(top_users: List[Dict[str, Any]]):
    st.subheader("💰 コスト上位ユーザー")
    if not top_users:
        st.info("ユーザー別のデータはありません。")
        return
    df = pd.DataFrame(top_users)
    for col in ("displayName", "email"):
        if col not in df.columns:
            df[col] = ""
    st.dataframe(
        df[["userId", "displayName", "email", "totalCost", "totalApiCalls", "totalTokens"]],
        column_config={
            "userId": st.column_config.TextColumn("ユーザーID"),
            "displayName": st.column_config.TextColumn("表示名"),
            "email": st.column_config.TextColumn("メール"),
            "totalCost": st.column_config.NumberColumn("コスト", format="$%.4f"),
            "totalApiCalls": st.column_config.NumberColumn("API呼び出し", format="%d"),
            "totalTokens": st.column_config.NumberColumn("トークン", format="%d"),
        },
        use_container_width=True,
        hide_index=True,
    )


def _render_user_usage():
    st.subheader("👤 ユーザー別の推移")
    col1, col2 = st.columns([3, 1])
    with col1:
        user_id = st.text_input("ユーザーID", key="usage_user_id")
    with col2:
        period = st.selectbox("期間", ["month", "week", "day"], format_func=lambda p: GROUP_BY_LABELS[p],
                              key="usage_user_period")
    if not user_id:
        return

    data = fetch(f"/usage/{user_id}", period=period)
    if not data:
        return

    totals = data.get("totals", {})
    col1, col2, col3 = st.columns(3)
    col1.metric("コスト", format_usd(totals.get("totalCost")))
    col2.metric("API呼び出し", f"{totals.get('totalApiCalls', 0):,}")
    col3.metric("トークン数", f"{totals.get('totalTokens', 0):,}")

    df = usage_frame(data.get("usage", []))
    if df.empty:
        st.info("このユーザーの利用データはありません。")
        return
    st.plotly_chart(
        px.bar(df, x="period", y="totalCostUSD", labels={"period": "期間", "totalCostUSD": "コスト (USD)"}),
        use_container_width=True,
    )
    breakdown = data.get("breakdown", {})
    if breakdown.get("operationCosts"):
        ops = pd.DataFrame([
            {
                "operation": OPERATION_LABELS.get(op, op),
                "calls": breakdown.get("operationCounts", {}).get(op, 0),
                "costUSD": cost,
            }
            for op, cost in breakdown["operationCosts"].items()
        ])
        st.dataframe(ops, use_container_width=True, hide_index=True)
    csv_download(df, f"usage_{user_id}_{period}.csv")


def render_usage_page():
    """利用量ページのメイン描画関数"""
    st.title("📊 利用量とコスト")
    refresh_button("usage_refresh")

    start_date, end_date = date_range_inputs("usage", default_days=30)
    col1, col2 = st.columns(2)
    with col1:
        group_by = st.radio("集計単位", list(GROUP_BY_LABELS), format_func=GROUP_BY_LABELS.get,
                            horizontal=True, key="usage_group_by")
    with col2:
        service = st.selectbox("サービス", ["すべて"] + sorted(SERVICE_OPERATIONS_MAP), key="usage_service")

    with st.spinner("利用データを取得中..."):
        data = fetch(
            "/usage",
            startDate=start_date,
            endDate=end_date,
            groupBy=group_by,
            service=None if service == "すべて" else service,
        )
    if not data:
        return

    _render_overview(data, group_by)
    _render_top_users(data.get("topUsers", []))
    st.divider()
    _render_user_usage()
