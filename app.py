"""
SirCharge 管理ダッシュボード（Streamlit）

起動:
    streamlit run app.py
"""

import logging
import time

import streamlit as st

# Streamlit設定 - サイドバーを自動展開
st.set_page_config(
    page_title="SirCharge Admin",
    page_icon="⚡",
    layout="wide",
    initial_sidebar_state="expanded",
)

from sircharge_admin.auth import AuthManager
from sircharge_admin.config import configure_logging
from sircharge_admin.modules.alerts_page import render_alerts_page
from sircharge_admin.modules.behavior_page import render_behavior_page
from sircharge_admin.modules.notifications_page import render_notifications_page
from sircharge_admin.modules.performance_page import render_performance_page
from sircharge_admin.modules.prompts_page import render_prompts_page
from sircharge_admin.modules.subscriptions_page import render_subscriptions_page
from sircharge_admin.modules.usage_page import render_usage_page
from sircharge_admin.modules.users_page import render_users_page
from sircharge_admin.modules.vocabulary_page import render_vocabulary_page

configure_logging()
logger = logging.getLogger(__name__)

PAGES = {
    "📊 利用量": render_usage_page,
    "⚡ パフォーマンス": render_performance_page,
    "🧭 行動分析": render_behavior_page,
    "🧠 プロンプト": render_prompts_page,
    "💳 サブスクリプション": render_subscriptions_page,
    "👥 ユーザー": render_users_page,
    "🔔 通知": render_notifications_page,
    "📖 語彙候補": render_vocabulary_page,
    "🚨 アラート": render_alerts_page,
}

# 期限の少し前にIDトークンを更新する
TOKEN_REFRESH_MARGIN_SECONDS = 300


class AdminDashboard:
    """管理ダッシュボードのメインクラス"""

    def __init__(self):
        self.auth_manager = AuthManager()
        self._initialize_session_state()

    def _initialize_session_state(self):
        default_values = {
            "id_token": None,
            "refresh_token": None,
            "email": None,
            "uid": None,
            "token_expires_at": 0.0,
            "page": next(iter(PAGES)),
        }
        for key, value in default_values.items():
            if key not in st.session_state:
                st.session_state[key] = value

    def _store_tokens(self, result: dict, email: str = None):
        st.session_state["id_token"] = result.get("idToken")
        st.session_state["refresh_token"] = result.get("refreshToken")
        st.session_state["uid"] = result.get("localId")
        if email:
            st.session_state["email"] = email
        st.session_state["token_expires_at"] = time.time() + float(result.get("expiresIn") or 3600)

    def ensure_valid_session(self) -> bool:
        """IDトークンの期限切れが近ければリフレッシュ"""
        if not st.session_state.get("id_token"):
            return False
        if time.time() < st.session_state.get("token_expires_at", 0) - TOKEN_REFRESH_MARGIN_SECONDS:
            return True

        refresh_token = st.session_state.get("refresh_token")
        if not refresh_token:
            return False
        result = self.auth_manager.refresh(refresh_token)
        if "error" in result:
            logger.warning(f"[Auth] トークンの更新に失敗: {result['error']}")
            self.logout()
            return False
        self._store_tokens(result)
        return True

    def logout(self):
        for key in ("id_token", "refresh_token", "uid", "email"):
            st.session_state[key] = None
        st.session_state["token_expires_at"] = 0.0
        st.cache_data.clear()

    def _handle_login(self, email: str, password: str):
        with st.spinner("ログイン中..."):
            try:
                result = self.auth_manager.signin(email, password)
            except RuntimeError as e:
                st.error(f"設定エラー: {e}")
                return

        if "error" in result:
            error_message = result["error"].get("message", "")
            if "INVALID_PASSWORD" in error_message or "INVALID_LOGIN_CREDENTIALS" in error_message:
                st.error("メールアドレスまたはパスワードが正しくありません")
            elif "EMAIL_NOT_FOUND" in error_message:
                st.error("このメールアドレスは登録されていません")
            elif "INVALID_EMAIL" in error_message:
                st.error("メールアドレスの形式が正しくありません")
            else:
                st.error(f"ログインエラー: {error_message}")
            return

        self._store_tokens(result, email)
        logger.info(f"管理者ログイン: {email}")
        st.rerun()

    def _render_login_page(self):
        st.title("⚡ SirCharge Admin")
        st.caption("管理者アカウントでログインしてください。")
        with st.form("login_form"):
            email = st.text_input("メールアドレス", placeholder="admin@example.com")
            password = st.text_input("パスワード", type="password")
            if st.form_submit_button("ログイン", type="primary", use_container_width=True):
                if not email or not password:
                    st.error("メールアドレスとパスワードを入力してください")
                else:
                    self._handle_login(email, password)

    def _render_sidebar(self):
        with st.sidebar:
            st.markdown(f"**{st.session_state.get('email') or ''}**")
            st.session_state["page"] = st.radio("ページ", list(PAGES), index=list(PAGES).index(st.session_state["page"]))
            st.divider()
            if st.button("ログアウト", use_container_width=True):
                self.logout()
                st.rerun()

    def run(self):
        if not self.ensure_valid_session():
            self._render_login_page()
            return
        self._render_sidebar()
        PAGES[st.session_state["page"]]()


def main():
    app = AdminDashboard()
    app.run()


if __name__ == "__main__":
    main()
