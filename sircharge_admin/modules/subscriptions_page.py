"""
サブスクリプションのプラン設定ページ
"""

from typing import Any, Dict

import pandas as pd
import streamlit as st

from sircharge_admin.constants import DEFAULT_BASIC_QUOTAS, TIER_KEYS
from sircharge_admin.modules.common import fetch, format_quota, mutate, refresh_button

QUOTA_LABELS = {
    "messagesPerMonth": "メッセージ/月",
    "photosPerMonth": "写真/月",
    "voiceMinutesPerMonth": "音声(分)/月",
    "maxVoiceRecordingSeconds": "最大録音秒数",
    "customActivityTypes": "カスタム活動種別",
    "maxTokensPerDay": "トークン/日",
    "maxApiCallsPerDay": "API呼び出し/日",
    "maxCostPerMonth": "コスト上限/月 (USD)",
    "offlineMode": "オフラインモード",
    "webAccess": "Webアクセス",
}


def tiers_frame(tiers: Dict[str, Dict[str, Any]]) -> pd.DataFrame:
    """プラン × クォータの比較表（-1 は無制限）"""
    rows = []
    for key, label in QUOTA_LABELS.items():
        row = {"quota": label}
        for tier in TIER_KEYS:
            value = (tiers.get(tier) or {}).get(key)
            if isinstance(value, bool):
                row[tier] = "✅" if value else "—"
            else:
                row[tier] = format_quota(value) if value is not None else ""
        rows.append(row)
    return pd.DataFrame(rows, columns=["quota"] + TIER_KEYS)


def _render_tier_form(tier: str, quotas: Dict[str, Any]):
    with st.form(f"tier_form_{tier}"):
        updates: Dict[str, Any] = {}
        for key, label in QUOTA_LABELS.items():
            current = quotas.get(key, DEFAULT_BASIC_QUOTAS.get(key))
            if isinstance(current, bool):
                updates[key] = st.checkbox(label, value=current, key=f"{tier}_{key}")
            elif isinstance(current, float):
                updates[key] = st.number_input(label, min_value=-1.0, value=current, step=1.0, key=f"{tier}_{key}")
            else:
                min_value = 1 if key == "maxVoiceRecordingSeconds" else -1
                updates[key] = st.number_input(label, min_value=min_value, value=int(current), step=1,
                                               key=f"{tier}_{key}")
        notes = st.text_input("変更メモ", key=f"{tier}_notes")
        if st.form_submit_button(f"{tier} を保存"):
            result = mutate("PATCH", "/subscriptions", {"tiers": {tier: updates}, "changeNotes": notes or None})
            if result:
                st.success(f"v{result['config'].get('version')} として保存しました")
                st.rerun()


def render_subscriptions_page():
    """プラン設定ページのメイン描画関数"""
    st.title("💳 サブスクリプション")
    refresh_button("subscriptions_refresh")

    data = fetch("/subscriptions")
    if not data:
        return
    config = data.get("config", {})

    if data.get("isDefault"):
        st.warning("プラン設定はまだFirestoreに保存されていません（既定値を表示中）。")
        if st.button("既定値で初期化", type="primary"):
            if mutate("POST", "/subscriptions"):
                st.success("初期化しました")
                st.rerun()
    else:
        st.caption(f"バージョン v{config.get('version')}・最終更新 {config.get('lastUpdated')}・{config.get('updatedBy')}")
        dynamic = st.toggle("動的設定を有効にする", value=bool(config.get("enableDynamicConfig")))
        if dynamic != bool(config.get("enableDynamicConfig")):
            if mutate("PATCH", "/subscriptions", {"enableDynamicConfig": dynamic}):
                st.rerun()

    tiers = config.get("tiers", {})
    st.dataframe(tiers_frame(tiers), use_container_width=True, hide_index=True)

    if not data.get("isDefault"):
        tabs = st.tabs(TIER_KEYS)
        for tab, tier in zip(tabs, TIER_KEYS):
            with tab:
                _render_tier_form(tier, tiers.get(tier) or {})
