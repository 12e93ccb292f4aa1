"""
プロンプト設定管理モジュール

言語ごとのプロンプト設定を promptConfigs/{language}/services/{service} に保存し、
変更履歴を promptVersions に記録する。
"""

import logging
import time
from typing import Any, Dict, List, Optional

from google.cloud.firestore_v1 import FieldFilter, Query

from sircharge_admin.constants import (
    LANGUAGE_CODES,
    PROMPT_CONFIGS,
    PROMPT_SERVICES,
    PROMPT_STATUSES,
    PROMPT_VERSIONS,
    SUPPORTED_LANGUAGES,
)
from sircharge_admin.errors import BadRequestError, NotFoundError
from sircharge_admin.utils import serialize_value, utc_now_iso

logger = logging.getLogger(__name__)


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class PromptService:
    """Firestore上のプロンプト設定のCRUD"""

    def __init__(self, db):
        self.db = db

    def _config_ref(self, language: str, service: str):
        return (
            self.db.collection(PROMPT_CONFIGS)
            .document(language)
            .collection("services")
            .document(service)
        )

    def _services_collection(self, language: str):
        return self.db.collection(PROMPT_CONFIGS).document(language).collection("services")

    def list_configs(self, language: Optional[str] = None, service: Optional[str] = None) -> List[Dict[str, Any]]:
        """プロンプト設定一覧（言語・サービスで絞り込み）"""
        if language and service:
            config = self.get_config(language, service)
            return [config] if config else []

        languages = [language] if language else LANGUAGE_CODES
        configs = []
        for lang in languages:
            for doc in self._services_collection(lang).stream():
                data = doc.to_dict() or {}
                if service and data.get("service", doc.id) != service:
                    continue
                configs.append(serialize_value(data))
        return configs

    def get_config(self, language: str, service: str) -> Optional[Dict[str, Any]]:
        doc = self._config_ref(language, service).get()
        if not doc.exists:
            return None
        return serialize_value(doc.to_dict() or {})

    def save_config(self, config: Dict[str, Any], admin_uid: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """設定を作成または上書き（作成日時・作成者は既存の値を保持）"""
        language = config.get("language")
        service = config.get("service")
        if not language or not service:
            raise BadRequestError("Missing required field: language and service")
        if language not in LANGUAGE_CODES:
            raise BadRequestError(f"Unsupported language: {language}")
        status = config.get("status", "draft")
        if status not in PROMPT_STATUSES:
            raise BadRequestError(f"Invalid status: {status}")

        now = utc_now_iso()
        ref = self._config_ref(language, service)
        existing_doc = ref.get()
        existing = (existing_doc.to_dict() or {}) if existing_doc.exists else None
        is_new = existing is None

        data = {
            "version": config.get("version", "1.0.0"),
            "language": language,
            "service": service,
            "lastUpdated": now,
            "updatedBy": admin_uid,
            "updateNotes": notes or ("Initial creation" if is_new else "Updated"),
            "createdAt": now if is_new else existing.get("createdAt", now),
            "createdBy": admin_uid if is_new else existing.get("createdBy", admin_uid),
            "status": status,
            "enabled": bool(config.get("enabled", False)),
            "prompts": config.get("prompts") or {},
        }
        published_at = now if status == "published" else (existing or {}).get("publishedAt")
        if published_at:
            data["publishedAt"] = published_at

        ref.set(data)
        logger.info(f"[Prompts] {service}/{language} を保存しました（{'新規' if is_new else '更新'}）")
        return serialize_value(data)

    def update_prompt(
        self,
        language: str,
        service: str,
        prompt_id: str,
        updates: Dict[str, Any],
        admin_uid: str,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """設定内の1つのプロンプトを更新し、変更履歴を同じバッチで書き込む

        Returns:
            dict: config（更新後の設定）, version（作成した履歴）
        """
        ref = self._config_ref(language, service)
        doc = ref.get()
        if not doc.exists:
            raise NotFoundError(f"Prompt config not found: {service}/{language}")

        raw = doc.to_dict() or {}
        prompts = dict(raw.get("prompts") or {})
        existing_prompt = prompts.get(prompt_id)
        if not existing_prompt:
            raise NotFoundError(f"Prompt not found: {prompt_id} in {service}/{language}")

        now = utc_now_iso()
        version_id = f"{service}_{language}_{prompt_id}_{_epoch_millis()}"
        version = {
            "id": version_id,
            "language": language,
            "service": service,
            "promptId": prompt_id,
            "previousContent": existing_prompt.get("content"),
            "newContent": updates.get("content") or existing_prompt.get("content"),
            "changedAt": now,
            "changedBy": admin_uid,
            "changeNotes": notes,
            "changeType": "update",
        }

        prompts[prompt_id] = {**existing_prompt, **updates}

        batch = self.db.batch()
        batch.update(ref, {
            "prompts": prompts,
            "lastUpdated": now,
            "updatedBy": admin_uid,
            "updateNotes": notes,
        })
        batch.set(self.db.collection(PROMPT_VERSIONS).document(version_id), version)
        batch.commit()

        logger.info(f"[Prompts] {service}/{language} のプロンプト {prompt_id} を更新しました")
        return {"config": self.get_config(language, service), "version": version}

    def set_enabled(self, language: str, service: str, enabled: bool, admin_uid: str) -> Dict[str, Any]:
        ref = self._config_ref(language, service)
        ref.update({
            "enabled": enabled,
            "lastUpdated": utc_now_iso(),
            "updatedBy": admin_uid,
            "updateNotes": "Enabled Firestore prompts" if enabled else "Disabled (fallback to YAML)",
        })
        return self.get_config(language, service)

    def set_status(self, language: str, service: str, status: str, admin_uid: str) -> Dict[str, Any]:
        """公開状態の変更（履歴は promptId='_status' で記録）"""
        if status not in PROMPT_STATUSES:
            raise BadRequestError(f"Invalid status: {status}")

        now = utc_now_iso()
        updates = {
            "status": status,
            "lastUpdated": now,
            "updatedBy": admin_uid,
            "updateNotes": f"Changed status to {status}",
        }
        if status == "published":
            updates["publishedAt"] = now
        self._config_ref(language, service).update(updates)

        version_id = f"{service}_{language}_status_{_epoch_millis()}"
        self.db.collection(PROMPT_VERSIONS).document(version_id).set({
            "id": version_id,
            "language": language,
            "service": service,
            "promptId": "_status",
            "previousContent": "",
            "newContent": status,
            "changedAt": now,
            "changedBy": admin_uid,
            "changeType": "publish" if status == "published" else "unpublish",
        })
        return self.get_config(language, service)

    def get_version_history(
        self, service: str, language: str, prompt_id: Optional[str] = None, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """変更履歴（新しい順）"""
        query = (
            self.db.collection(PROMPT_VERSIONS)
            .where(filter=FieldFilter("service", "==", service))
            .where(filter=FieldFilter("language", "==", language))
        )
        if prompt_id:
            query = query.where(filter=FieldFilter("promptId", "==", prompt_id))
        query = query.order_by("changedAt", direction=Query.DESCENDING).limit(limit)
        return [serialize_value(doc.to_dict() or {}) for doc in query.stream()]

    def delete_config(self, language: str, service: str) -> None:
        self._config_ref(language, service).delete()
        logger.info(f"[Prompts] {service}/{language} を削除しました")

    @staticmethod
    def get_services() -> List[str]:
        return list(PROMPT_SERVICES)

    @staticmethod
    def get_languages() -> List[Dict[str, str]]:
        return list(SUPPORTED_LANGUAGES)
