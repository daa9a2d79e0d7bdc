"""
Admin API Router

Rankings, task lists and grading for administrators.

- GET /rankings is cached in the user cache under students:rankings
- GET /tasks is cached in the task cache under tasks:all or tasks:topic:<id>
- PATCH /submissions/{id} grades a submission and invalidates everything
  derived from it (submission lists, rankings, admin stats, dashboards,
  task lists with submission counts)
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from auth.dependencies import require_admin
from auth.models import UserProfile
from cache import CacheKeys
from cache_registry import CacheRegistry, get_cache_registry
from config import settings
from coordination import RequestManager, get_request_manager, guarded_fetch
from database import LMSDatabase, calculate_ranking_stats, get_db

logger = logging.getLogger(__name__)
router = APIRouter()


class RankingsResponse(BaseModel):
    data: List[Dict[str, Any]]
    stats: Dict[str, Any]
    cached: bool


class TasksResponse(BaseModel):
    data: List[Dict[str, Any]]
    count: int
    cached: bool


class SubmissionsResponse(BaseModel):
    data: List[Dict[str, Any]]
    count: int
    total: int


class GradeSubmissionRequest(BaseModel):
    points: float = Field(..., ge=0)
    feedback: Optional[str] = None


@router.get("/rankings", response_model=RankingsResponse)
async def get_rankings(
    admin: UserProfile = Depends(require_admin),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
):
    """Student rankings with class-wide summary stats."""
    rankings, cached = await guarded_fetch(
        CacheKeys.student_rankings(),
        db.get_student_rankings,
        registry.user,
        manager=manager,
        context="admin-rankings",
        ttl=settings.rankings_ttl,
    )
    return RankingsResponse(data=rankings, stats=calculate_ranking_stats(rankings), cached=cached)


@router.get("/tasks", response_model=TasksResponse)
async def list_tasks(
    topic_id: Optional[str] = Query(None),
    include_counts: bool = Query(False),
    admin: UserProfile = Depends(require_admin),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
):
    """Tasks with their topic, module and course, optionally with submission counts."""
    if topic_id:
        key = CacheKeys.tasks_for_topic(topic_id, include_counts)
    else:
        key = CacheKeys.tasks_all(include_counts)

    tasks, cached = await guarded_fetch(
        key,
        lambda: db.list_tasks(topic_id, include_counts),
        registry.task,
        manager=manager,
        context="admin-tasks",
    )
    return TasksResponse(data=tasks, count=len(tasks), cached=cached)


@router.get("/submissions", response_model=SubmissionsResponse)
async def list_submissions(
    status: Optional[Literal["pending", "graded"]] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: UserProfile = Depends(require_admin),
    db: LMSDatabase = Depends(get_db),
):
    """Submissions for grading, newest first. Not cached: graders need fresh data."""
    rows, total = await db.list_submissions(status, limit, offset)
    return SubmissionsResponse(data=rows, count=len(rows), total=total)


@router.patch("/submissions/{submission_id}")
async def grade_submission(
    submission_id: str,
    body: GradeSubmissionRequest,
    admin: UserProfile = Depends(require_admin),
    registry: CacheRegistry = Depends(get_cache_registry),
    db: LMSDatabase = Depends(get_db),
):
    """Grade a submission."""
    submission = await db.grade_submission(submission_id, body.points, body.feedback)
    registry.invalidate_submission(
        submission_id,
        student_id=submission.get("student_id"),
        task_id=submission.get("task_id"),
    )
    logger.info(f"Submission {submission_id} graded by {admin.id}")
    return submission
