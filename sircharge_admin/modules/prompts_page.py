"""
プロンプト設定ページ

言語・サービスごとの設定一覧、プロンプト本文の編集、公開状態の切り替え、変更履歴の表示。
"""

from typing import Any, Dict

import pandas as pd
import streamlit as st

from sircharge_admin.constants import PROMPT_SERVICES, PROMPT_STATUSES, SUPPORTED_LANGUAGES
from sircharge_admin.modules.common import fetch, mutate, refresh_button

STATUS_BADGES = {"draft": "📝 下書き", "published": "✅ 公開中", "archived": "📦 アーカイブ"}


def configs_frame(configs) -> pd.DataFrame:
    rows = [
        {
            "service": c.get("service"),
            "language": c.get("language"),
            "status": c.get("status"),
            "enabled": c.get("enabled", False),
            "prompts": len(c.get("prompts") or {}),
            "version": c.get("version"),
            "lastUpdated": c.get("lastUpdated"),
            "updatedBy": c.get("updatedBy"),
        }
        for c in configs
    ]
    return pd.DataFrame(rows, columns=[
        "service", "language", "status", "enabled", "prompts", "version", "lastUpdated", "updatedBy",
    ])


def _render_prompt_editor(service: str, language: str, prompt_id: str, prompt: Dict[str, Any]):
    with st.form(f"prompt_form_{service}_{language}_{prompt_id}"):
        content = st.text_area("本文", prompt.get("content", ""), height=240)
        col1, col2 = st.columns(2)
        with col1:
            model = st.text_input("モデル", prompt.get("model") or "")
        with col2:
            temperature = st.number_input("temperature", 0.0, 2.0, float(prompt.get("temperature") or 0.7), 0.1)
        notes = st.text_input("変更メモ")
        if st.form_submit_button("保存"):
            updates = {"content": content, "temperature": temperature}
            if model:
                updates["model"] = model
            result = mutate("PATCH", f"/prompts/{service}", {
                "language": language,
                "promptId": prompt_id,
                "updates": updates,
                "notes": notes or None,
            })
            if result:
                st.success(f"{prompt_id} を更新しました")
                st.rerun()


def _render_config_detail(service: str, language: str):
    data = fetch(f"/prompts/{service}", language=language)
    if data is None:
        return
    config = data.get("config")
    if not config:
        st.info(f"{service} / {language} の設定はまだありません。")
        if st.button("空の設定を作成", key=f"create_{service}_{language}"):
            if mutate("POST", f"/prompts/{service}", {"language": language}):
                st.rerun()
        return

    st.markdown(f"**状態:** {STATUS_BADGES.get(config.get('status'), config.get('status'))}　"
                f"**有効:** {'はい' if config.get('enabled') else 'いいえ（YAMLにフォールバック）'}")

    col1, col2, col3 = st.columns(3)
    with col1:
        status = st.selectbox("公開状態", PROMPT_STATUSES, index=PROMPT_STATUSES.index(config.get("status", "draft")),
                              format_func=STATUS_BADGES.get, key=f"status_{service}_{language}")
        if status != config.get("status") and st.button("状態を変更", key=f"apply_status_{service}_{language}"):
            if mutate("PATCH", f"/prompts/{service}", {"language": language, "status": status}):
                st.rerun()
    with col2:
        label = "無効にする" if config.get("enabled") else "有効にする"
        if st.button(label, key=f"toggle_{service}_{language}"):
            if mutate("PATCH", f"/prompts/{service}", {"language": language, "enabled": not config.get("enabled")}):
                st.rerun()
    with col3:
        if st.button("🗑 削除", key=f"delete_{service}_{language}"):
            if mutate("DELETE", f"/prompts/{service}", language=language):
                st.success("削除しました")
                st.rerun()

    prompts = config.get("prompts") or {}
    if prompts:
        prompt_id = st.selectbox("プロンプト", sorted(prompts), key=f"prompt_{service}_{language}")
        _render_prompt_editor(service, language, prompt_id, prompts[prompt_id])

    versions = pd.DataFrame(data.get("versions", []))
    if not versions.empty:
        st.subheader("🕘 変更履歴")
        columns = [c for c in ["changedAt", "promptId", "changeType", "changedBy", "changeNotes"] if c in versions]
        st.dataframe(versions[columns], use_container_width=True, hide_index=True)


def render_prompts_page():
    """プロンプト設定ページのメイン描画関数"""
    st.title("🧠 プロンプト設定")
    refresh_button("prompts_refresh")

    language_names = {lang["code"]: lang["name"] for lang in SUPPORTED_LANGUAGES}
    col1, col2 = st.columns(2)
    with col1:
        language = st.selectbox("言語", list(language_names), format_func=lambda c: f"{language_names[c]} ({c})",
                                key="prompts_language")
    with col2:
        service = st.selectbox("サービス", PROMPT_SERVICES, key="prompts_service")

    listing = fetch("/prompts", language=language)
    if listing:
        df = configs_frame(listing.get("configs", []))
        if df.empty:
            st.info("この言語の設定はありません。")
        else:
            st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()
    st.subheader(f"{service} / {language}")
    _render_config_detail(service, language)
