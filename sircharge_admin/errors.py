"""
管理API共通の例外クラス

サービス層はここで定義した例外を送出し、API層がHTTPレスポンスに変換する。
"""

from typing import Optional


class AdminError(Exception):
    """HTTPステータスコードを持つ管理API例外の基底クラス"""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class BadRequestError(AdminError):
    status_code = 400


class NotFoundError(AdminError):
    status_code = 404


class ConflictError(AdminError):
    status_code = 409


class AuthError(AdminError):
    """認証・認可エラー（401 / 403）"""

    status_code = 401

    def __init__(self, error: str, message: str, status_code: int = 401):
        super().__init__(error, status_code)
        self.error = error
        self.detail = message

    def to_dict(self):
        return {"error": self.error, "message": self.detail}
