"""
設定値の読み込み

環境変数 → Streamlit secrets → デフォルト値 の順に参照する。
APIサーバーはStreamlitコンテキスト外で動くため、secretsへのアクセス失敗は無視する。
"""

import json
import logging
import os
from typing import Any, Dict, Optional

import streamlit as st

DEFAULT_API_BASE_URL = "http://localhost:8000"
DEFAULT_API_TIMEOUT = 15
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _read_secret(key: str) -> Any:
    try:
        if hasattr(st, "secrets") and key in st.secrets:
            return st.secrets.get(key)
    except Exception:
        # secrets.toml が存在しない環境（APIサーバー、テスト）
        return None
    return None


def get_setting(key: str, default: Any = None) -> Any:
    """設定値を取得"""
    env_value = os.environ.get(key.upper())
    if env_value not in (None, ""):
        return env_value

    secret_value = _read_secret(key)
    if secret_value not in (None, ""):
        return secret_value

    return default


def get_firebase_credentials() -> Optional[Dict[str, Any]]:
    """サービスアカウント情報を辞書で返す（未設定ならNone = ADCを使用）"""
    raw = get_setting("firebase_credentials")
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
        if raw.startswith("{"):
            return json.loads(raw)
        # ファイルパス指定
        with open(raw, encoding="utf-8") as f:
            return json.load(f)
    return _to_dict(raw)


def _to_dict(obj):
    """secretsのAttrDictを素の辞書に変換"""
    if hasattr(obj, "items"):
        return {k: _to_dict(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_to_dict(i) for i in obj]
    return obj


def get_api_base_url() -> str:
    return str(get_setting("admin_api_base_url", DEFAULT_API_BASE_URL)).rstrip("/")


def get_api_timeout() -> float:
    try:
        return float(get_setting("admin_api_timeout", DEFAULT_API_TIMEOUT))
    except (TypeError, ValueError):
        return float(DEFAULT_API_TIMEOUT)


def configure_logging(level: Optional[str] = None) -> None:
    """プロセスのエントリポイントで呼び出すログ設定"""
    level_name = (level or get_setting("log_level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )
