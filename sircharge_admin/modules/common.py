"""
ページ共通のヘルパー（APIクライアント・キャッシュ・CSV出力・期間選択）
"""

import datetime
from typing import Any, Dict, Optional, Tuple

import pandas as pd
import streamlit as st

from sircharge_admin.api_client import AdminApiClient, AdminApiError
from sircharge_admin.utils import utc_now


def get_client() -> AdminApiClient:
    return AdminApiClient(st.session_state.get("id_token", ""))


@st.cache_data(ttl=300, show_spinner=False)
def _cached_get(id_token: str, path: str, params: Tuple[Tuple[str, Any], ...]) -> Dict[str, Any]:
    return AdminApiClient(id_token).get(path, **dict(params))


def fetch(path: str, **params) -> Optional[Dict[str, Any]]:
    """GETの結果を5分間キャッシュ（失敗時はエラー表示してNone）"""
    try:
        return _cached_get(st.session_state.get("id_token", ""), path, tuple(sorted(params.items())))
    except AdminApiError as e:
        show_api_error(e)
        return None


def mutate(method: str, path: str, body: Optional[Dict[str, Any]] = None, **params) -> Optional[Dict[str, Any]]:
    """更新系の呼び出し（成功したら読み取りキャッシュをクリア）"""
    client = get_client()
    try:
        if method == "DELETE":
            result = client.delete(path, body, **params)
        else:
            result = getattr(client, method.lower())(path, body)
    except AdminApiError as e:
        show_api_error(e)
        return None
    st.cache_data.clear()
    return result


def show_api_error(error: AdminApiError):
    if error.status_code in (401, 403):
        st.error(f"権限エラー: {error.message}")
    else:
        st.error(f"APIエラー: {error.message}")


def refresh_button(key: str):
    if st.button("🔄 データ更新", key=key):
        st.cache_data.clear()
        st.rerun()


def date_range_inputs(key: str, default_days: int = 30) -> Tuple[str, str]:
    """開始日・終了日の入力（YYYY-MM-DD で返す）"""
    today = utc_now().date()
    col1, col2 = st.columns(2)
    with col1:
        start = st.date_input("開始日", today - datetime.timedelta(days=default_days), key=f"{key}_start")
    with col2:
        end = st.date_input("終了日", today, key=f"{key}_end")
    if start > end:
        st.warning("開始日が終了日より後になっています。")
    return start.isoformat(), end.isoformat()


def csv_download(df: pd.DataFrame, filename: str, label: str = "📥 CSVダウンロード"):
    if df.empty:
        return
    st.download_button(
        label,
        df.to_csv(index=False).encode("utf-8"),
        file_name=filename,
        mime="text/csv",
        key=f"download_{filename}",
    )


def format_usd(value: Any, digits: int = 2) -> str:
    return f"${float(value or 0):,.{digits}f}"


def format_quota(value: Any) -> str:
    return "無制限" if value == -1 else f"{value}"
