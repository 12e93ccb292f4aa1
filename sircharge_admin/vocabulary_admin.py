"""
学習語彙の候補レビュー

記憶抽出（memory_extraction）で users/{uid}/learnedVocabulary に追加された語彙を
承認（verified）または却下（削除）する。
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from google.cloud.firestore_v1 import FieldFilter, Query

from sircharge_admin.constants import LEARNED_VOCABULARY, USERS
from sircharge_admin.errors import BadRequestError
from sircharge_admin.firestore_db import commit_in_batches
from sircharge_admin.utils import serialize_value, utc_now_iso

logger = logging.getLogger(__name__)

SUGGESTION_SOURCE = "memory_extraction"
ACTIONS = ("approve", "reject", "bulk-approve", "bulk-reject")


class VocabularyAdmin:
    def __init__(self, db):
        self.db = db

    def _vocabulary(self, user_id: str):
        return self.db.collection(USERS).document(user_id).collection(LEARNED_VOCABULARY)

    def list_suggestions(self, user_id: Optional[str] = None, limit: int = 50) -> Dict[str, Any]:
        """候補一覧（新しい順）とカテゴリ別件数"""
        source = self._vocabulary(user_id) if user_id else self.db.collection_group(LEARNED_VOCABULARY)
        query = (
            source.where(filter=FieldFilter("source", "==", SUGGESTION_SOURCE))
            .order_by("createdAt", direction=Query.DESCENDING)
            .limit(limit)
        )

        suggestions: List[Dict[str, Any]] = []
        for doc in query.stream():
            owner = doc.reference.parent.parent
            suggestions.append(serialize_value({
                "id": doc.id,
                "userId": owner.id if owner is not None else None,
                **(doc.to_dict() or {}),
            }))

        by_category = Counter(s.get("category") or "unknown" for s in suggestions)
        return {
            "suggestions": suggestions,
            "summary": {"total": len(suggestions), "byCategory": dict(by_category)},
        }

    def apply_action(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """approve / reject / bulk-approve / bulk-reject"""
        action = body.get("action")
        user_id = body.get("userId")
        if action not in ACTIONS or not user_id:
            raise BadRequestError("Invalid action")

        vocabulary = self._vocabulary(user_id)
        approval = {"verified": True, "updatedAt": utc_now_iso()}

        if action in ("approve", "reject"):
            suggestion_id = body.get("suggestionId")
            if not suggestion_id:
                raise BadRequestError("Invalid action")
            ref = vocabulary.document(suggestion_id)
            if action == "approve":
                ref.update(approval)
                result = "approved"
            else:
                ref.delete()
                result = "rejected"
            logger.info(f"[Vocabulary] {user_id}/{suggestion_id} を{result}")
            return {"success": True, "action": result, "id": suggestion_id}

        suggestion_ids = body.get("suggestionIds")
        if not isinstance(suggestion_ids, list):
            raise BadRequestError("Invalid action")

        refs = [vocabulary.document(sid) for sid in suggestion_ids]
        if action == "bulk-approve":
            count = commit_in_batches(self.db, refs, lambda batch, ref: batch.update(ref, approval))
            result = "bulk-approved"
        else:
            count = commit_in_batches(self.db, refs, lambda batch, ref: batch.delete(ref))
            result = "bulk-rejected"

        logger.info(f"[Vocabulary] {user_id}: {count}件を{result}")
        return {"success": True, "action": result, "count": count}
