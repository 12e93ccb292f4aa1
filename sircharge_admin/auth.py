"""
Firebase Authentication関連の機能を提供するモジュール

- 管理API: Authorization ヘッダーのIDトークン検証と admin ロールの確認
- ダッシュボード: Identity Toolkit REST API によるメール/パスワードでのサインイン
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
from firebase_admin import auth as firebase_auth

from sircharge_admin.config import get_setting
from sircharge_admin.constants import USERS
from sircharge_admin.errors import AuthError

logger = logging.getLogger(__name__)

AUTH_REQUIRED_MESSAGE = "Authentication required to access this resource"
ADMIN_REQUIRED_MESSAGE = "Admin access required to access this resource"


@dataclass
class AuthenticatedUser:
    """認証済みユーザー"""
    uid: str
    email: Optional[str]
    role: str = "user"
    account_status: str = "active"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _unauthorized(error: str) -> AuthError:
    return AuthError(error, AUTH_REQUIRED_MESSAGE, status_code=401)


def _verify_token(id_token: str, verify_token: Callable[[str], Dict[str, Any]]) -> Dict[str, Any]:
    try:
        return verify_token(id_token)
    except firebase_auth.ExpiredIdTokenError:
        raise _unauthorized("ID token has expired. Please sign in again.")
    except firebase_auth.RevokedIdTokenError:
        raise _unauthorized("ID token has been revoked. Please sign in again.")
    except firebase_auth.InvalidIdTokenError:
        raise _unauthorized("Invalid ID token. Please sign in again.")
    except Exception as e:
        logger.error(f"[Auth] トークン検証に失敗: {e}")
        raise _unauthorized("Token verification failed")


def verify_request(
    authorization: Optional[str],
    db,
    verify_token: Callable[[str], Dict[str, Any]] = firebase_auth.verify_id_token,
) -> AuthenticatedUser:
    """Authorization ヘッダーを検証してユーザー情報を返す

    Raises:
        AuthError: 401（ヘッダー不正・トークン無効・ユーザー不在・停止中）
    """
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    if not authorization.startswith("Bearer "):
        raise _unauthorized("Invalid Authorization header format. Expected: Bearer <token>")

    id_token = authorization[len("Bearer "):].strip()
    if not id_token:
        raise _unauthorized("Empty ID token")

    decoded = _verify_token(id_token, verify_token)
    uid = decoded.get("uid") or decoded.get("sub")

    # ロールとアカウント状態はFirestoreのユーザードキュメントで判定
    user_doc = db.collection(USERS).document(uid).get()
    if not user_doc.exists:
        raise _unauthorized("User not found in database")

    user_data = user_doc.to_dict()
    if not user_data:
        raise _unauthorized("User data is empty")

    if user_data.get("accountStatus") == "suspended":
        raise _unauthorized("Account suspended. Please contact support.")

    return AuthenticatedUser(
        uid=uid,
        email=decoded.get("email"),
        role=user_data.get("role") or "user",
        account_status=user_data.get("accountStatus") or "active",
    )


def require_admin(
    authorization: Optional[str],
    db,
    verify_token: Callable[[str], Dict[str, Any]] = firebase_auth.verify_id_token,
) -> AuthenticatedUser:
    """adminロールを要求（ロール不足は403）"""
    user = verify_request(authorization, db, verify_token)
    if not user.is_admin:
        logger.warning(f"[Auth] 管理者権限が必要ですが、ユーザー {user.uid} のロールは {user.role} です")
        raise AuthError("Forbidden", ADMIN_REQUIRED_MESSAGE, status_code=403)
    return user


class AuthManager:
    """ダッシュボード用のFirebase認証クライアント（REST API）"""

    SIGNIN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"
    REFRESH_URL = "https://securetoken.googleapis.com/v1/token"

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        self.api_key = api_key or get_setting("firebase_api_key")
        self.session = session or self._create_http_session()

    @staticmethod
    def _create_http_session() -> requests.Session:
        session = requests.Session()
        session.headers.update({
            "User-Agent": "SirChargeAdmin/1.0 (Streamlit)",
            "Accept": "application/json",
        })
        return session

    def _ensure_api_key(self):
        if not self.api_key:
            raise RuntimeError("Firebase API key not available")

    def signin(self, email: str, password: str) -> Dict[str, Any]:
        """メール/パスワードでサインイン（idToken, refreshToken, localId を返す）"""
        self._ensure_api_key()
        payload = {"email": email, "password": password, "returnSecureToken": True}
        try:
            response = self.session.post(
                self.SIGNIN_URL, params={"key": self.api_key}, json=payload, timeout=10
            )
            return response.json()
        except requests.exceptions.RequestException as e:
            return {"error": {"message": f"Network error: {str(e)}"}}

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """リフレッシュトークンからIDトークンを再発行"""
        self._ensure_api_key()
        payload = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        try:
            response = self.session.post(
                self.REFRESH_URL, params={"key": self.api_key}, data=payload, timeout=10
            )
            data = response.json()
        except requests.exceptions.RequestException as e:
            return {"error": {"message": f"Network error: {str(e)}"}}

        if "id_token" in data:
            # Secure Token API は snake_case で返すので signin と揃える
            return {
                "idToken": data["id_token"],
                "refreshToken": data.get("refresh_token", refresh_token),
                "localId": data.get("user_id"),
                "expiresIn": data.get("expires_in"),
            }
        return data
