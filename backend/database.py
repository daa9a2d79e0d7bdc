"""
Supabase-backed data access for the LMS backend.

Every query runs on the service-role client in a worker thread (supabase-py
is synchronous). Query failures are raised as ExternalServiceError so that
callers and the request manager can count them.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from auth.supabase_client import supabase_client
from exceptions import ExternalServiceError, ResourceNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUBMISSION_SELECT = """
    id,
    student_id,
    task_id,
    file_url,
    file_path,
    submitted_at,
    graded_at,
    status,
    points,
    feedback,
    student:user_profiles!student_id (id, full_name, profile_image_url),
    task:tasks (id, title, max_score, topic_id)
"""

TASK_LIST_SELECT = """
    id,
    title,
    description,
    content,
    instructions,
    topics,
    due_date,
    attachments,
    created_by,
    is_published,
    max_score,
    topic_id,
    created_at,
    updated_at,
    topic:topics (
        id,
        title,
        module:modules (
            id,
            title,
            course:courses (id, title)
        )
    )
"""

CHAT_MESSAGE_SELECT = """
    id,
    content,
    created_at,
    user_id,
    user_profiles!inner (id, full_name, profile_image_url)
"""


def _first(value: Any) -> Any:
    """Supabase returns embedded relations as a list or a dict."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def flatten_task(task: Dict[str, Any]) -> Dict[str, Any]:
    """Collapse the embedded topic -> module -> course relations to objects."""
    topic = _first(task.get("topic"))
    if topic:
        module = _first(topic.get("module"))
        if module:
            module = {**module, "course": _first(module.get("course"))}
        topic = {**topic, "module": module}
    return {**task, "topic": topic}


def calculate_rankings(students: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Build ranking rows from student profiles with embedded submissions.

    Ungraded submissions count towards totals but not towards points;
    tasks without max_score are scored out of 100.
    """
    rankings = []
    for student in students:
        submissions = student.get("submissions") or []
        graded = [s for s in submissions if s.get("status") == "graded"]

        total_points = sum(s.get("points") or 0 for s in graded)
        total_possible = sum(
            (_first(s.get("task")) or {}).get("max_score") or 100 for s in graded
        )
        average_grade = total_points / total_possible * 100 if total_possible > 0 else 0.0
        completion_rate = len(graded) / len(submissions) * 100 if submissions else 0.0

        submitted = [s["submitted_at"] for s in submissions if s.get("submitted_at")]
        rankings.append({
            "student_id": student["id"],
            "full_name": student.get("full_name") or "",
            "total_points": total_points,
            "total_submissions": len(submissions),
            "graded_submissions": len(graded),
            "average_grade": round(average_grade, 1),
            "completion_rate": round(completion_rate, 1),
            "last_submission": max(submitted) if submitted else None,
        })

    rankings.sort(key=lambda r: r["total_points"], reverse=True)
    return rankings


def calculate_ranking_stats(rankings: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Class-wide summary of a ranking list sorted by total points."""
    if not rankings:
        return {
            "total_active_students": 0,
            "average_class_grade": 0,
            "total_submissions": 0,
            "completion_rate": 0,
            "top_performer": "N/A",
            "most_improved": "N/A",
        }

    count = len(rankings)
    # Highest completion rate stands in for improvement until history is tracked
    most_improved = max(rankings, key=lambda r: r["completion_rate"])
    return {
        "total_active_students": sum(1 for r in rankings if r["total_submissions"] > 0),
        "average_class_grade": round(sum(r["average_grade"] for r in rankings) / count, 1),
        "total_submissions": sum(r["total_submissions"] for r in rankings),
        "completion_rate": round(sum(r["completion_rate"] for r in rankings) / count, 1),
        "top_performer": rankings[0]["full_name"],
        "most_improved": most_improved["full_name"],
    }


class LMSDatabase:
    """Table gateway over the Supabase service-role client."""

    def __init__(self, client_factory: Callable[[], Any] = supabase_client.get_admin_client):
        self._client_factory = client_factory

    @property
    def client(self):
        client = self._client_factory()
        if client is None:
            raise ExternalServiceError("connect", "Supabase is not configured")
        return client

    @property
    def is_configured(self) -> bool:
        return self._client_factory() is not None

    async def _run(self, operation: str, query: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(query)
        except ExternalServiceError:
            raise
        except Exception as e:
            logger.error(f"Supabase {operation} failed: {e}")
            raise ExternalServiceError(operation, str(e)) from e

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user_profile(self, user_id: str) -> Dict[str, Any]:
        response = await self._run(
            "get_user_profile",
            lambda: self.client.table("user_profiles").select("*").eq("id", user_id).limit(1).execute(),
        )
        if not response.data:
            raise ResourceNotFoundError("user_profile", user_id)
        return response.data[0]

    async def update_user_profile(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = {**fields, "updated_at": datetime.now(timezone.utc).isoformat()}
        response = await self._run(
            "update_user_profile",
            lambda: self.client.table("user_profiles").update(fields).eq("id", user_id).execute(),
        )
        if not response.data:
            raise ResourceNotFoundError("user_profile", user_id)
        return response.data[0]

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def get_dashboard_stats(self, user_id: str) -> Dict[str, Any]:
        client = self.client
        profile, tasks, courses, messages = await asyncio.gather(
            self._run(
                "dashboard_profile",
                lambda: client.table("user_profiles").select("*").eq("id", user_id).limit(1).execute(),
            ),
            self._run(
                "dashboard_tasks",
                lambda: client.table("tasks").select("id, status").eq("user_id", user_id).execute(),
            ),
            self._run(
                "dashboard_courses",
                lambda: client.table("courses").select("id, title").execute(),
            ),
            self._run(
                "dashboard_messages",
                lambda: client.table("chat_messages").select("id").eq("user_id", user_id)
                .order("created_at", desc=True).limit(10).execute(),
            ),
        )

        task_rows = tasks.data or []
        return {
            "profile": profile.data[0] if profile.data else None,
            "total_tasks": len(task_rows),
            "completed_tasks": sum(1 for t in task_rows if t.get("status") == "completed"),
            "pending_tasks": sum(1 for t in task_rows if t.get("status") == "pending"),
            "total_courses": len(courses.data or []),
            "recent_messages": len(messages.data or []),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def list_chat_messages(self, limit: int, offset: int) -> List[Dict[str, Any]]:
        response = await self._run(
            "list_chat_messages",
            lambda: self.client.table("chat_messages").select(CHAT_MESSAGE_SELECT)
            .order("created_at").range(offset, offset + limit - 1).execute(),
        )
        return [
            {
                "id": row["id"],
                "content": row["content"],
                "created_at": row["created_at"],
                "user_id": row["user_id"],
                "user_profiles": _first(row.get("user_profiles")),
            }
            for row in response.data or []
        ]

    async def insert_chat_message(self, user_id: str, content: str) -> Dict[str, Any]:
        response = await self._run(
            "insert_chat_message",
            lambda: self.client.table("chat_messages")
            .insert({"user_id": user_id, "content": content}).execute(),
        )
        return response.data[0]

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    async def get_student_rankings(self) -> List[Dict[str, Any]]:
        """Rankings from the get_student_rankings RPC, or computed from submissions."""
        try:
            response = await self._run(
                "get_student_rankings",
                lambda: self.client.rpc("get_student_rankings").execute(),
            )
            return response.data or []
        except ExternalServiceError as e:
            logger.warning(f"Rankings RPC unavailable, computing from submissions: {e.details}")

        response = await self._run(
            "rankings_fallback",
            lambda: self.client.table("user_profiles").select(
                "id, full_name, submissions:submissions (id, points, status, submitted_at, task:tasks (id, max_score))"
            ).eq("role", "student").execute(),
        )
        return calculate_rankings(response.data or [])

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    async def list_submissions(
        self,
        status: Optional[str],
        limit: int,
        offset: int,
    ) -> Tuple[List[Dict[str, Any]], int]:
        def query():
            q = self.client.table("submissions").select(SUBMISSION_SELECT, count="exact")
            if status:
                q = q.eq("status", status)
            return q.order("submitted_at", desc=True).range(offset, offset + limit - 1).execute()

        response = await self._run("list_submissions", query)
        rows = [
            {**row, "student": _first(row.get("student")), "task": _first(row.get("task"))}
            for row in response.data or []
        ]
        return rows, response.count or 0

    async def grade_submission(
        self,
        submission_id: str,
        points: float,
        feedback: Optional[str],
    ) -> Dict[str, Any]:
        fields = {
            "points": points,
            "feedback": feedback,
            "status": "graded",
            "graded_at": datetime.now(timezone.utc).isoformat(),
        }
        response = await self._run(
            "grade_submission",
            lambda: self.client.table("submissions").update(fields).eq("id", submission_id).execute(),
        )
        if not response.data:
            raise ResourceNotFoundError("submission", submission_id)
        return response.data[0]

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------

    async def list_courses(self) -> List[Dict[str, Any]]:
        response = await self._run(
            "list_courses",
            lambda: self.client.table("courses").select("*").order("created_at", desc=True).execute(),
        )
        return response.data or []

    async def get_course(self, course_id: str) -> Dict[str, Any]:
        response = await self._run(
            "get_course",
            lambda: self.client.table("courses").select("*").eq("id", course_id).limit(1).execute(),
        )
        if not response.data:
            raise ResourceNotFoundError("course", course_id)
        return response.data[0]

    async def list_course_modules(self, course_id: str) -> List[Dict[str, Any]]:
        response = await self._run(
            "list_course_modules",
            lambda: self.client.table("modules").select("*, topics (*)")
            .eq("course_id", course_id).order("position").execute(),
        )
        return response.data or []

    async def update_course(self, course_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._run(
            "update_course",
            lambda: self.client.table("courses").update(fields).eq("id", course_id).execute(),
        )
        if not response.data:
            raise ResourceNotFoundError("course", course_id)
        return response.data[0]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def list_tasks(
        self,
        topic_id: Optional[str] = None,
        include_counts: bool = False,
    ) -> List[Dict[str, Any]]:
        """Tasks, newest first, with topic/module/course and optional submission counts."""
        def query():
            q = self.client.table("tasks").select(TASK_LIST_SELECT)
            if topic_id:
                q = q.eq("topic_id", topic_id)
            return q.order("created_at", desc=True).execute()

        response = await self._run("list_tasks", query)
        tasks = [flatten_task(row) for row in response.data or []]
        if not include_counts:
            return tasks

        counts = await asyncio.gather(*(self.count_submissions(task["id"]) for task in tasks))
        return [
            {**task, "_count": {"submissions": count}}
            for task, count in zip(tasks, counts)
        ]

    async def count_submissions(self, task_id: str) -> int:
        response = await self._run(
            "count_submissions",
            lambda: self.client.table("submissions").select("id", count="exact", head=True)
            .eq("task_id", task_id).execute(),
        )
        return response.count or 0

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        response = await self._run(
            "get_task",
            lambda: self.client.table("tasks").select("*").eq("id", task_id).limit(1).execute(),
        )
        if not response.data:
            raise ResourceNotFoundError("task", task_id)
        return response.data[0]

    async def update_task(self, task_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._run(
            "update_task",
            lambda: self.client.table("tasks").update(fields).eq("id", task_id).execute(),
        )
        if not response.data:
            raise ResourceNotFoundError("task", task_id)
        return response.data[0]


# Global instance
db = LMSDatabase()


def get_db() -> LMSDatabase:
    """Dependency to get the data gateway."""
    return db
