"""
Firestoreデータベース関連の機能を提供するモジュール

主な変更点:
- firebase_admin の初期化をプロセスで1回に限定
- サービスアカウント情報は secrets / 環境変数から取得（未設定時はADC）
- バッチ書き込みは500件ごとに分割してコミット
"""

import functools
import json
import logging
import os
import tempfile
from typing import Any, Callable, Dict, Iterable, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from sircharge_admin.config import get_firebase_credentials, get_setting
from sircharge_admin.constants import FIRESTORE_BATCH_LIMIT

logger = logging.getLogger(__name__)


class FirestoreManager:
    """Firestoreデータベース操作を管理するクラス"""

    def __init__(self):
        self.app = None
        self.db = None
        self._initialize_firebase()

    def _initialize_firebase(self):
        """Firebase初期化"""
        try:
            self.app = firebase_admin.get_app()
        except ValueError:
            self.app = self._create_app()
        self.db = firestore.client(app=self.app)

    def _create_app(self):
        firebase_creds = get_firebase_credentials()
        project_id = get_setting("firebase_project_id")
        options = {"projectId": project_id} if project_id else None

        if not firebase_creds:
            logger.info("Firebase認証情報が未設定のため Application Default Credentials を使用します")
            return firebase_admin.initialize_app(credentials.ApplicationDefault(), options)

        # 一時ファイルは後で必ず削除
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
                json.dump(firebase_creds, f)
                temp_path = f.name
            creds = credentials.Certificate(temp_path)
            if not project_id and firebase_creds.get("project_id"):
                options = {"projectId": firebase_creds["project_id"]}
            return firebase_admin.initialize_app(creds, options)
        finally:
            if temp_path:
                try:
                    os.unlink(temp_path)
                except OSError as e:
                    logger.warning(f"一時ファイル削除に失敗: {e}")


@functools.lru_cache(maxsize=1)
def get_firestore_manager() -> FirestoreManager:
    """FirestoreManagerのシングルトンインスタンスを取得"""
    return FirestoreManager()


def get_db():
    """Firestoreクライアントを取得"""
    return get_firestore_manager().db


def doc_to_dict(doc) -> Dict[str, Any]:
    """DocumentSnapshot を id付きの辞書に変換"""
    data = doc.to_dict() or {}
    return {"id": doc.id, **data}


def commit_in_batches(
    db,
    refs: Iterable[Any],
    apply: Callable[[Any, Any], None],
    chunk_size: int = FIRESTORE_BATCH_LIMIT,
) -> int:
    """refs に apply(batch, ref) を適用し、chunk_size 件ごとにコミットする

    Returns:
        int: 処理した件数
    """
    total = 0
    batch = db.batch()
    pending = 0
    for ref in refs:
        apply(batch, ref)
        pending += 1
        total += 1
        if pending >= chunk_size:
            batch.commit()
            batch = db.batch()
            pending = 0
    if pending:
        batch.commit()
    return total


def get_document(db, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
    """ドキュメントを1件取得（存在しなければNone）"""
    doc = db.collection(collection).document(document_id).get()
    if not doc.exists:
        return None
    return doc.to_dict() or {}
