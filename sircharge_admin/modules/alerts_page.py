"""
コストアラートページ
"""

import pandas as pd
import streamlit as st

from sircharge_admin.modules.common import csv_download, fetch, format_usd, mutate, refresh_button


def _render_config(config):
    with st.expander("⚙️ しきい値の設定"):
        with st.form("alert_config_form"):
            enabled = st.checkbox("アラートを有効にする", value=bool(config.get("enabled")))
            daily = st.number_input("日次コスト (USD)", min_value=0.0, value=float(config.get("dailyCostThresholdUSD", 0)))
            monthly = st.number_input("月次コスト (USD)", min_value=0.0,
                                      value=float(config.get("monthlyCostThresholdUSD", 0)))
            per_user = st.number_input("ユーザー別日次コスト (USD)", min_value=0.0,
                                       value=float(config.get("perUserDailyCostThresholdUSD", 0)))
            spike = st.number_input("急増倍率", min_value=1.0, value=float(config.get("spikeMultiplier", 3.0)), step=0.5)
            emails = st.text_area("通知先メール（1行に1件）", "\n".join(config.get("notifyEmails") or []))
            if st.form_submit_button("保存"):
                result = mutate("PUT", "/alerts", {"config": {
                    "enabled": enabled,
                    "dailyCostThresholdUSD": daily,
                    "monthlyCostThresholdUSD": monthly,
                    "perUserDailyCostThresholdUSD": per_user,
                    "spikeMultiplier": spike,
                    "notifyEmails": [line.strip() for line in emails.splitlines() if line.strip()],
                }})
                if result:
                    st.success("設定を保存しました")


def render_alerts_page():
    """コストアラートページのメイン描画関数"""
    st.title("🚨 コストアラート")
    refresh_button("alerts_refresh")

    status = st.radio("状態", ["active", "resolved", "all"], horizontal=True,
                      format_func={"active": "未解決", "resolved": "解決済み", "all": "すべて"}.get)
    data = fetch("/alerts", status=None if status == "all" else status, includeConfig="true")
    if not data:
        return

    st.metric("未解決のアラート", data.get("activeCount", 0))
    _render_config(data.get("config") or {})

    alerts = data.get("alerts", [])
    if not alerts:
        st.info("アラートはありません。")
        return

    df = pd.DataFrame(alerts)
    st.dataframe(df, use_container_width=True, hide_index=True)
    csv_download(df, "cost_alerts.csv")

    for alert in alerts:
        if alert.get("status") != "active":
            continue
        col1, col2 = st.columns([4, 1])
        with col1:
            icon = "🔴" if alert.get("severity") == "critical" else "🟠"
            st.write(f"{icon} **{alert.get('title') or alert.get('type', 'alert')}** {alert.get('details', '')}　"
                     f"{format_usd(alert.get('currentValue'), 2)}（想定 {format_usd(alert.get('expectedValue'), 2)}）")
        with col2:
            if st.button("解決", key=f"resolve_{alert['id']}"):
                if mutate("POST", "/alerts", {"action": "resolve", "alertId": alert["id"]}):
                    st.rerun()
