"""
ダッシュボードから管理APIを呼び出すHTTPクライアント
"""

import logging
from typing import Any, Dict, Optional

import requests

from sircharge_admin.config import get_api_base_url, get_api_timeout

logger = logging.getLogger(__name__)


class AdminApiError(Exception):
    """管理APIがエラーを返した場合の例外"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AdminApiClient:
    """IDトークン付きで /api/admin を呼び出す"""

    def __init__(self, id_token: str, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.id_token = id_token
        self.base_url = (base_url or get_api_base_url()).rstrip("/")
        self.timeout = timeout or get_api_timeout()
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/api/admin{path}"
        if params:
            params = {k: v for k, v in params.items() if v is not None and v != ""}
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {self.id_token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"[ERROR] 管理APIへの接続に失敗: {method} {url}: {e}")
            raise AdminApiError(f"Network error: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok:
            message = data.get("error") or f"HTTP {response.status_code}"
            if data.get("message"):
                message = f"{message}: {data['message']}"
            raise AdminApiError(message, response.status_code)
        return data

    def get(self, path: str, **params) -> Dict[str, Any]:
        return self._request("GET", path, params=params)

    def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("POST", path, json=body or {})

    def patch(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", path, json=body)

    def put(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", path, json=body)

    def delete(self, path: str, body: Optional[Dict[str, Any]] = None, **params) -> Dict[str, Any]:
        return self._request("DELETE", path, params=params, json=body)
