"""
Tests for the Supabase data gateway and ranking aggregation.
"""

from types import SimpleNamespace

import pytest
from unittest.mock import MagicMock

from database import LMSDatabase, calculate_ranking_stats, calculate_rankings, flatten_task
from exceptions import ExternalServiceError, ResourceNotFoundError


def _fake_client(data=None, count=None, error=None):
    """Supabase client whose query builder chains back to itself."""
    query = MagicMock()
    for name in ("select", "eq", "order", "limit", "range", "update", "insert"):
        getattr(query, name).return_value = query
    if error is not None:
        query.execute.side_effect = error
    else:
        query.execute.return_value = SimpleNamespace(data=data, count=count)

    client = MagicMock()
    client.table.return_value = query
    client.rpc.return_value = query
    return client


class TestCalculateRankings:
    def test_points_and_grades_from_graded_submissions(self):
        students = [
            {
                "id": "u1",
                "full_name": "Ada",
                "submissions": [
                    {"status": "graded", "points": 45, "task": {"max_score": 50},
                     "submitted_at": "2024-01-02T00:00:00Z"},
                    {"status": "graded", "points": 80, "task": [{"max_score": None}],
                     "submitted_at": "2024-01-03T00:00:00Z"},
                    {"status": "pending", "points": None, "task": {"max_score": 10},
                     "submitted_at": "2024-01-04T00:00:00Z"},
                ],
            },
            {"id": "u2", "full_name": "Bob", "submissions": []},
        ]

        rankings = calculate_rankings(students)

        assert [r["student_id"] for r in rankings] == ["u1", "u2"]
        ada = rankings[0]
        assert ada["total_points"] == 125
        assert ada["average_grade"] == round(125 / 150 * 100, 1)
        assert ada["completion_rate"] == round(2 / 3 * 100, 1)
        assert ada["last_submission"] == "2024-01-04T00:00:00Z"
        assert rankings[1]["average_grade"] == 0.0
        assert rankings[1]["last_submission"] is None

    def test_sorted_by_total_points(self):
        students = [
            {"id": "low", "submissions": [{"status": "graded", "points": 10}]},
            {"id": "high", "submissions": [{"status": "graded", "points": 90}]},
        ]
        assert [r["student_id"] for r in calculate_rankings(students)] == ["high", "low"]


class TestRankingStats:
    def test_empty(self):
        stats = calculate_ranking_stats([])
        assert stats["total_active_students"] == 0
        assert stats["top_performer"] == "N/A"

    def test_summary(self):
        rankings = [
            {"full_name": "Ada", "total_submissions": 4, "average_grade": 90.0, "completion_rate": 50.0},
            {"full_name": "Bob", "total_submissions": 0, "average_grade": 0.0, "completion_rate": 0.0},
            {"full_name": "Cy", "total_submissions": 2, "average_grade": 60.0, "completion_rate": 100.0},
        ]
        stats = calculate_ranking_stats(rankings)

        assert stats["total_active_students"] == 2
        assert stats["average_class_grade"] == 50.0
        assert stats["total_submissions"] == 6
        assert stats["top_performer"] == "Ada"
        assert stats["most_improved"] == "Cy"


class TestLMSDatabase:
    def test_unconfigured_client(self):
        db = LMSDatabase(client_factory=lambda: None)
        assert db.is_configured is False
        with pytest.raises(ExternalServiceError):
            db.client

    @pytest.mark.asyncio
    async def test_query_error_wrapped(self):
        db = LMSDatabase(client_factory=lambda: _fake_client(error=RuntimeError("connection reset")))

        with pytest.raises(ExternalServiceError) as exc_info:
            await db.list_courses()

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == {"operation": "list_courses", "reason": "connection reset"}

    @pytest.mark.asyncio
    async def test_missing_row_raises_not_found(self):
        db = LMSDatabase(client_factory=lambda: _fake_client(data=[]))

        with pytest.raises(ResourceNotFoundError) as exc_info:
            await db.get_course("course-404")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_list_submissions_returns_total(self):
        rows = [{"id": "s1", "student": [{"id": "u1"}], "task": {"id": "t1"}}]
        db = LMSDatabase(client_factory=lambda: _fake_client(data=rows, count=7))

        data, total = await db.list_submissions("pending", 10, 0)

        assert total == 7
        assert data[0]["student"] == {"id": "u1"}

    @pytest.mark.asyncio
    async def test_dashboard_stats_counts(self):
        client = _fake_client(data=[
            {"id": "x", "status": "completed"},
            {"id": "y", "status": "pending"},
        ])
        db = LMSDatabase(client_factory=lambda: client)

        stats = await db.get_dashboard_stats("u1")

        assert stats["total_tasks"] == 2
        assert stats["completed_tasks"] == 1
        assert stats["pending_tasks"] == 1
        assert stats["total_courses"] == 2
        assert stats["recent_messages"] == 2
        assert "generated_at" in stats

    @pytest.mark.asyncio
    async def test_rankings_fall_back_when_rpc_fails(self):
        client = _fake_client(data=[
            {"id": "u1", "full_name": "Ada", "submissions": [{"status": "graded", "points": 5}]},
        ])
        client.rpc.return_value = _fake_client(error=RuntimeError("function does not exist")).table.return_value
        db = LMSDatabase(client_factory=lambda: client)

        rankings = await db.get_student_rankings()

        assert rankings[0]["student_id"] == "u1"
        assert rankings[0]["total_points"] == 5

    @pytest.mark.asyncio
    async def test_list_tasks_with_counts(self):
        rows = [{"id": "t1", "title": "Loops", "topic": [{"id": "topic-1", "module": None}]}]
        client = _fake_client(data=rows, count=3)
        db = LMSDatabase(client_factory=lambda: client)

        tasks = await db.list_tasks("topic-1", include_counts=True)

        assert tasks[0]["topic"] == {"id": "topic-1", "module": None}
        assert tasks[0]["_count"] == {"submissions": 3}
        client.table.return_value.eq.assert_any_call("topic_id", "topic-1")

    @pytest.mark.asyncio
    async def test_list_tasks_without_counts(self):
        db = LMSDatabase(client_factory=lambda: _fake_client(data=[{"id": "t1", "topic": None}]))

        tasks = await db.list_tasks()

        assert tasks == [{"id": "t1", "topic": None}]


class TestFlattenTask:
    def test_nested_relations_collapsed(self):
        task = {
            "id": "t1",
            "topic": [{
                "id": "topic-1",
                "module": [{"id": "m1", "course": [{"id": "c1", "title": "Python 101"}]}],
            }],
        }

        flat = flatten_task(task)

        assert flat["topic"]["module"]["course"] == {"id": "c1", "title": "Python 101"}
        assert flat["topic"]["module"]["id"] == "m1"

    def test_missing_topic(self):
        assert flatten_task({"id": "t1", "topic": []})["topic"] is None
