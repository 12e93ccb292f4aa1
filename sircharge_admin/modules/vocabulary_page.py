"""
学習語彙の候補レビューページ
"""

import pandas as pd
import streamlit as st

from sircharge_admin.modules.common import csv_download, fetch, mutate, refresh_button


def render_vocabulary_page():
    """語彙候補ページのメイン描画関数"""
    st.title("📖 語彙候補")
    st.caption("記憶からの抽出で追加された語彙を確認し、承認または却下します。")
    refresh_button("vocabulary_refresh")

    col1, col2 = st.columns([3, 1])
    with col1:
        user_id = st.text_input("ユーザーID（空欄で全ユーザー）", key="vocab_user")
    with col2:
        limit = st.number_input("件数", min_value=10, max_value=500, value=50, step=10, key="vocab_limit")

    data = fetch("/vocabulary/suggestions", userId=user_id or None, limit=int(limit))
    if not data:
        return

    summary = data.get("summary", {})
    st.metric("候補数", summary.get("total", 0))
    if summary.get("byCategory"):
        st.bar_chart(pd.Series(summary["byCategory"], name="count"))

    df = pd.DataFrame(data.get("suggestions", []))
    if df.empty:
        st.info("候補はありません。")
        return

    df.insert(0, "selected", False)
    edited = st.data_editor(
        df,
        column_config={"selected": st.column_config.CheckboxColumn("選択")},
        disabled=[c for c in df.columns if c != "selected"],
        use_container_width=True,
        hide_index=True,
        key="vocab_editor",
    )
    csv_download(df.drop(columns=["selected"]), "vocabulary_suggestions.csv")

    selected = edited[edited["selected"]]
    if selected.empty:
        return

    # 一括操作はユーザー単位で送る
    col1, col2 = st.columns(2)
    for col, action, label in ((col1, "bulk-approve", "✅ 承認"), (col2, "bulk-reject", "🗑 却下")):
        with col:
            if st.button(f"{label}（{len(selected)}件）", key=f"vocab_{action}"):
                done = 0
                for owner, group in selected.groupby("userId"):
                    result = mutate("POST", "/vocabulary/suggestions", {
                        "action": action,
                        "userId": owner,
                        "suggestionIds": group["id"].tolist(),
                    })
                    if result:
                        done += result.get("count", 0)
                st.success(f"{done}件を処理しました")
                st.rerun()
