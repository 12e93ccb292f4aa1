"""
ユーザー管理ページ

一覧（検索・ページ送り）、詳細、アカウント停止、プラン変更・クォータ上書き・利用量リセット。
"""

from typing import Any, Dict, List, Optional

import pandas as pd
import streamlit as st

from sircharge_admin.modules.common import csv_download, fetch, format_quota, format_usd, mutate, refresh_button

PAGE_SIZE = 50
OVERRIDE_LABELS = {
    "messagesPerMonth": "メッセージ/月",
    "photosPerMonth": "写真/月",
    "voiceMinutesPerMonth": "音声(分)/月",
}


def custom_limits_update(current: Dict[str, Any], values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """フォーム値から customLimits を作る（0 は未設定）。全て0なら既存の上限を解除する"""
    custom = {k: v for k, v in values.items() if v}
    if custom or current:
        return custom
    return None


def users_frame(users: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = [
        {
            "id": u.get("id"),
            "email": u.get("email") or "",
            "displayName": u.get("displayName") or "",
            "subscription": u.get("subscription") or "free",
            "accountStatus": u.get("accountStatus") or "active",
            "role": u.get("role") or "user",
            "currentMonthCost": u.get("currentMonthCost") or 0,
            "createdAt": u.get("createdAt"),
        }
        for u in users
    ]
    return pd.DataFrame(rows, columns=[
        "id", "email", "displayName", "subscription", "accountStatus", "role", "currentMonthCost", "createdAt",
    ])


def _render_subscription(user_id: str):
    data = fetch(f"/users/{user_id}/subscription")
    if not data:
        return
    subscription = data.get("subscription", {})
    usage = data.get("usage", {})
    limits = data.get("effectiveLimits", {})

    st.markdown(f"**プラン:** {subscription.get('tier')}（{subscription.get('status')}）"
                + ("　🔒 管理者による上書き" if subscription.get("manualOverride") else ""))

    usage_keys = {
        "messagesPerMonth": "messagesThisMonth",
        "photosPerMonth": "photosThisMonth",
        "voiceMinutesPerMonth": "voiceMinutesThisMonth",
    }
    cols = st.columns(3)
    for col, (key, label) in zip(cols, OVERRIDE_LABELS.items()):
        col.metric(label, f"{usage.get(usage_keys[key], 0)} / {format_quota(limits.get(key))}")

    with st.form(f"subscription_form_{user_id}"):
        tiers = ["basic", "premium", "pro"]
        current_tier = subscription.get("tier") if subscription.get("tier") in tiers else "basic"
        tier = st.selectbox("プラン", tiers, index=tiers.index(current_tier))
        overrides = (subscription.get("quotaOverrides") or {})
        use_overrides = st.checkbox("クォータを上書きする", value=bool(overrides))
        values = {}
        for key, label in OVERRIDE_LABELS.items():
            default = overrides.get(key, limits.get(key, 0))
            values[key] = st.number_input(label, min_value=-1, value=int(default or 0), step=1,
                                          help="-1 で無制限", key=f"override_{user_id}_{key}")
        reset_usage = st.checkbox("利用量をリセットする")

        if st.form_submit_button("保存"):
            body: Dict[str, Any] = {"resetUsage": reset_usage}
            if tier != current_tier:
                body["tier"] = tier
            if use_overrides:
                body["quotaOverrides"] = values
            elif overrides:
                body["quotaOverrides"] = None
            if mutate("PATCH", f"/users/{user_id}/subscription", body):
                st.success("サブスクリプションを更新しました")
                st.rerun()


def _render_user_detail(user_id: str):
    data = fetch(f"/users/{user_id}")
    if not data:
        return
    user = data.get("user", {})
    month = data.get("currentMonthUsage") or {}
    today = data.get("todayUsage") or {}

    col1, col2, col3 = st.columns(3)
    col1.metric("今月のコスト", format_usd(month.get("totalCostUSD"), 4))
    col2.metric("今日のAPI呼び出し", today.get("totalApiCalls", 0))
    col3.metric("状態", user.get("accountStatus") or "active")

    with st.form(f"user_form_{user_id}"):
        status = st.radio("アカウント状態", ["active", "suspended"], horizontal=True,
                          index=1 if user.get("accountStatus") == "suspended" else 0)
        limits = user.get("customLimits") or {}
        max_tokens = st.number_input("トークン上限/日", min_value=0, value=int(limits.get("maxTokensPerDay") or 0))
        max_calls = st.number_input("API呼び出し上限/日", min_value=0, value=int(limits.get("maxApiCallsPerDay") or 0))
        max_cost = st.number_input("コスト上限/月 (USD)", min_value=0.0,
                                   value=float(limits.get("maxCostPerMonth") or 0.0))
        if st.form_submit_button("更新"):
            body = {"accountStatus": status}
            custom = custom_limits_update(limits, {
                "maxTokensPerDay": max_tokens,
                "maxApiCallsPerDay": max_calls,
                "maxCostPerMonth": max_cost,
            })
            if custom is not None:
                body["customLimits"] = custom
            if mutate("PATCH", f"/users/{user_id}", body):
                st.success("ユーザー情報を更新しました")
                st.rerun()

    st.subheader("💳 サブスクリプション")
    _render_subscription(user_id)


def render_users_page():
    """ユーザー管理ページのメイン描画関数"""
    st.title("👥 ユーザー")
    refresh_button("users_refresh")

    col1, col2 = st.columns([3, 1])
    with col1:
        search = st.text_input("メール・表示名で検索", key="users_search")
    with col2:
        page = st.number_input("ページ", min_value=1, value=1, step=1, key="users_page")

    data = fetch("/users", page=int(page), limit=PAGE_SIZE, search=search or None)
    if not data:
        return

    st.caption(f"{data.get('total', 0):,}人中 {data.get('page')}/{max(data.get('totalPages', 1), 1)}ページ")
    df = users_frame(data.get("users", []))
    st.dataframe(
        df,
        column_config={
            "id": st.column_config.TextColumn("ユーザーID"),
            "email": st.column_config.TextColumn("メール", width="large"),
            "displayName": st.column_config.TextColumn("表示名"),
            "subscription": st.column_config.TextColumn("プラン"),
            "accountStatus": st.column_config.TextColumn("状態"),
            "role": st.column_config.TextColumn("ロール"),
            "currentMonthCost": st.column_config.NumberColumn("今月のコスト", format="$%.4f"),
            "createdAt": st.column_config.TextColumn("登録日時"),
        },
        use_container_width=True,
        hide_index=True,
    )
    csv_download(df, f"users_page{int(page)}.csv")

    if not df.empty:
        st.divider()
        user_id = st.selectbox("詳細を表示するユーザー", df["id"].tolist(),
                               format_func=lambda uid: f"{uid} ({df.loc[df['id'] == uid, 'email'].iloc[0]})")
        if user_id:
            _render_user_detail(user_id)
