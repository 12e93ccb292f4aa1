"""
Tests for the learned vocabulary review.

Covers:
  - Suggestions across all users (collection group) and for one user
  - Category summary
  - Single and bulk approve / reject
  - Invalid action payloads
"""

import pytest

from sircharge_admin.errors import BadRequestError
from sircharge_admin.vocabulary_admin import VocabularyAdmin


@pytest.fixture
def vocab(db):
    db.add("users/u1/learnedVocabulary/v1", {"term": "Sato", "category": "person", "source": "memory_extraction",
                                             "createdAt": "2024-03-01T00:00:00.000Z"})
    db.add("users/u1/learnedVocabulary/v2", {"term": "Yoga", "source": "memory_extraction",
                                             "createdAt": "2024-03-03T00:00:00.000Z"})
    db.add("users/u2/learnedVocabulary/v3", {"term": "Kyoto", "category": "place", "source": "memory_extraction",
                                             "createdAt": "2024-03-02T00:00:00.000Z"})
    db.add("users/u2/learnedVocabulary/v4", {"term": "manual", "source": "user",
                                             "createdAt": "2024-03-04T00:00:00.000Z"})
    return VocabularyAdmin(db)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

class TestListSuggestions:
    def test_all_users(self, vocab):
        result = vocab.list_suggestions()
        assert [(s["id"], s["userId"]) for s in result["suggestions"]] == [("v2", "u1"), ("v3", "u2"), ("v1", "u1")]
        assert result["summary"] == {"total": 3, "byCategory": {"unknown": 1, "place": 1, "person": 1}}

    def test_single_user_and_limit(self, vocab):
        result = vocab.list_suggestions(user_id="u1", limit=1)
        assert [s["id"] for s in result["suggestions"]] == ["v2"]
        assert result["suggestions"][0]["userId"] == "u1"


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class TestApplyAction:
    def test_approve(self, vocab, db):
        result = vocab.apply_action({"action": "approve", "userId": "u1", "suggestionId": "v1"})
        assert result == {"success": True, "action": "approved", "id": "v1"}
        assert db.doc("users/u1/learnedVocabulary/v1")["verified"] is True

    def test_reject_deletes(self, vocab, db):
        result = vocab.apply_action({"action": "reject", "userId": "u1", "suggestionId": "v1"})
        assert result["action"] == "rejected"
        assert db.doc("users/u1/learnedVocabulary/v1") is None

    def test_bulk_approve(self, vocab, db):
        result = vocab.apply_action({"action": "bulk-approve", "userId": "u1", "suggestionIds": ["v1", "v2"]})
        assert result == {"success": True, "action": "bulk-approved", "count": 2}
        assert db.doc("users/u1/learnedVocabulary/v2")["verified"] is True
        assert db.commits == [2]

    def test_bulk_reject(self, vocab, db):
        result = vocab.apply_action({"action": "bulk-reject", "userId": "u2", "suggestionIds": ["v3"]})
        assert result["count"] == 1
        assert db.ids("users/u2/learnedVocabulary") == ["v4"]

    @pytest.mark.parametrize("body", [
        {"action": "approve", "userId": "u1"},
        {"action": "promote", "userId": "u1", "suggestionId": "v1"},
        {"action": "approve", "suggestionId": "v1"},
        {"action": "bulk-reject", "userId": "u1", "suggestionIds": "v1"},
    ])
    def test_invalid(self, vocab, body):
        with pytest.raises(BadRequestError, match="Invalid action"):
            vocab.apply_action(body)
