"""
コストアラートの一覧・解決・しきい値設定
"""

import logging
from typing import Any, Dict, Optional

from google.cloud.firestore_v1 import FieldFilter, Query

from sircharge_admin.constants import COST_ALERTING_CONFIG_PATH, COST_ALERTS, DEFAULT_COST_ALERTING_CONFIG
from sircharge_admin.errors import BadRequestError, NotFoundError
from sircharge_admin.firestore_db import doc_to_dict
from sircharge_admin.utils import serialize_value, utc_now_iso

logger = logging.getLogger(__name__)

ALERT_STATUSES = ("active", "resolved")


class CostAlerts:
    def __init__(self, db):
        self.db = db

    @property
    def config_ref(self):
        collection, document = COST_ALERTING_CONFIG_PATH
        return self.db.collection(collection).document(document)

    def get_config(self) -> Dict[str, Any]:
        doc = self.config_ref.get()
        config = dict(DEFAULT_COST_ALERTING_CONFIG)
        if doc.exists:
            config.update(doc.to_dict() or {})
        return serialize_value(config)

    def count_active(self) -> int:
        query = self.db.collection(COST_ALERTS).where(filter=FieldFilter("status", "==", "active"))
        result = query.count().get()
        # AggregationQuery.get() は [[AggregationResult]] を返す
        return int(result[0][0].value)

    def list_alerts(self, status: Optional[str] = None, limit: int = 50, include_config: bool = False) -> Dict[str, Any]:
        """アラート一覧（検知日時の新しい順）"""
        if status and status not in ALERT_STATUSES:
            raise BadRequestError(f"Invalid status: {status}")

        query = self.db.collection(COST_ALERTS)
        if status:
            query = query.where(filter=FieldFilter("status", "==", status))
        query = query.order_by("detectedAt", direction=Query.DESCENDING).limit(limit)

        result = {
            "alerts": [serialize_value(doc_to_dict(doc)) for doc in query.stream()],
            "activeCount": self.count_active(),
        }
        if include_config:
            result["config"] = self.get_config()
        return result

    def resolve(self, body: Dict[str, Any], admin) -> Dict[str, Any]:
        alert_id = body.get("alertId")
        if body.get("action") != "resolve" or not alert_id:
            raise BadRequestError('Invalid request. Expected { action: "resolve", alertId: string }')

        ref = self.db.collection(COST_ALERTS).document(alert_id)
        if not ref.get().exists:
            raise NotFoundError("Alert not found")

        ref.update({"status": "resolved", "resolvedAt": utc_now_iso(), "resolvedBy": admin.uid})
        logger.info(f"[Alerts] アラート {alert_id} を解決済みにしました (by {admin.uid})")
        return {"success": True, "alertId": alert_id}

    def update_config(self, config: Optional[Dict[str, Any]], admin) -> Dict[str, Any]:
        if not config or not isinstance(config, dict):
            raise BadRequestError("Missing config in request body")

        self.config_ref.set(
            {**config, "updatedAt": utc_now_iso(), "updatedBy": admin.uid},
            merge=True,
        )
        logger.info(f"[Alerts] コストアラート設定を更新しました (by {admin.uid})")
        return {"success": True}
