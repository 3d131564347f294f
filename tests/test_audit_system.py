"""Tests for the deduplication audit trail and review queue."""

import pytest


def candidate(record_id="existing-1", total=0.92):
    return {"id": record_id, "match_type": "similarity", "similarity": {"total": total}}


class TestReviewTasks:
    """Test the human review queue."""

    def test_create_and_list(self, audit):
        task_id = audit.create_review_task(
            {"type": "AIRSTRIKE", "location": "حلب"}, [candidate()], priority="high", created_by="analyst-1"
        )

        pending = audit.get_pending_reviews()
        assert [t.task_id for t in pending] == [task_id]
        task = pending[0]
        assert task.incident["location"] == "حلب"
        assert task.candidates[0]["id"] == "existing-1"
        assert task.priority == "high"
        assert task.created_by == "analyst-1"

    def test_priority_filter(self, audit):
        audit.create_review_task({}, [candidate()], priority="high")
        audit.create_review_task({}, [candidate()], priority="low")

        assert len(audit.get_pending_reviews(priority="low")) == 1
        assert len(audit.get_pending_reviews()) == 2

    def test_complete_task(self, audit):
        task_id = audit.create_review_task({}, [candidate(total=0.88)])

        assert audit.complete_review_task(task_id, "reviewer-1", "separate", notes="different buildings")

        task = audit.get_review_task(task_id)
        assert task.status == "completed"
        assert task.decision == "separate"
        assert task.reviewer_notes == "different buildings"
        assert task.completed_at is not None
        assert audit.get_pending_reviews() == []

        history = audit.get_audit_history(operation_type="review_completed")
        assert history[0].incident_ids == ["new", "existing-1"]
        assert history[0].similarity_score == pytest.approx(0.88)
        assert history[0].decision_maker == "reviewer-1"

    def test_task_completed_once(self, audit):
        task_id = audit.create_review_task({}, [candidate()])
        assert audit.complete_review_task(task_id, "reviewer-1", "merge")
        assert not audit.complete_review_task(task_id, "reviewer-2", "separate")

    def test_unknown_decision(self, audit):
        task_id = audit.create_review_task({}, [candidate()])
        with pytest.raises(ValueError):
            audit.complete_review_task(task_id, "reviewer-1", "maybe")

    def test_missing_task(self, audit):
        assert audit.get_review_task("missing") is None


class TestMergeAudit:
    """Test merge records."""

    def test_record_merge_keeps_full_state(self, audit):
        audit_id = audit.record_merge(
            canonical_before={"id": "a", "casualties": 3},
            absorbed=[{"id": "b", "casualties": 5}, {"id": "c", "casualties": 1}],
            merged={"id": "a", "casualties": 5},
            decision_maker="admin",
            similarity_score=0.93,
            evidence={"changed_fields": ["casualties"]},
        )

        record = audit.get_audit_history()[0]
        assert record.audit_id == audit_id
        assert record.operation_type == "consolidation"
        assert record.incident_ids == ["a", "b", "c"]
        assert record.before_state["absorbed"][0]["casualties"] == 5
        assert record.after_state["deleted_ids"] == ["b", "c"]
        assert record.evidence["changed_fields"] == ["casualties"]

    def test_history_filters_by_operation(self, audit):
        audit.record_merge({"id": "a"}, [{"id": "b"}], {"id": "a"})
        audit.record_merge({"id": "c"}, [{"id": "d"}], {"id": "c"}, operation_type="creation_merge")

        assert [r.incident_ids for r in audit.get_audit_history(operation_type="creation_merge")] == [["c", "d"]]
        assert len(audit.get_audit_history()) == 2

    def test_statistics(self, audit):
        audit.create_review_task({}, [candidate()])
        audit.record_merge({"id": "a"}, [{"id": "b"}], {"id": "a"}, operation_type="race_merge")

        stats = audit.get_statistics()
        assert stats["pending_reviews"] == 1
        assert stats["review_tasks_created"] == 1
        assert stats["merges_recorded"] == 1
        assert stats["audit_records_by_operation"] == {"race_merge": 1}

    def test_get_audit_record(self, audit):
        audit_id = audit.record_merge({"id": "a", "verified": False}, [{"id": "b"}], {"id": "a", "verified": True})

        record = audit.get_audit_record(audit_id)
        assert record.before_state["canonical"]["verified"] is False
        assert record.after_state["merged"]["verified"] is True
        assert audit.get_audit_record("missing") is None
