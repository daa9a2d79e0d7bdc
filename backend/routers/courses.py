"""
Courses and Tasks API Routers

Course data changes rarely and is cached in the course cache (30 minutes);
tasks use the task cache (15 minutes). Admin updates invalidate the
affected entries.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth.dependencies import get_current_user, require_admin
from auth.models import User, UserProfile
from cache import CacheKeys
from cache_registry import CacheRegistry, get_cache_registry
from coordination import RequestManager, get_request_manager, guarded_fetch
from database import LMSDatabase, get_db

logger = logging.getLogger(__name__)
router = APIRouter()
tasks_router = APIRouter()


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_published: Optional[bool] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    instructions: Optional[str] = None
    due_date: Optional[str] = None
    max_score: Optional[float] = Field(None, gt=0)
    is_published: Optional[bool] = None


def _changed_fields(body: BaseModel) -> Dict[str, Any]:
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    return fields


# ============================================================================
# Courses
# ============================================================================

@router.get("")
async def list_courses(
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
) -> List[Dict[str, Any]]:
    courses, _ = await guarded_fetch(
        CacheKeys.courses_all(),
        db.list_courses,
        registry.course,
        manager=manager,
        context="courses",
    )
    return courses


@router.get("/{course_id}")
async def get_course(
    course_id: str,
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
) -> Dict[str, Any]:
    course, _ = await guarded_fetch(
        CacheKeys.course(course_id),
        lambda: db.get_course(course_id),
        registry.course,
        manager=manager,
        context="courses",
    )
    return course


@router.get("/{course_id}/modules")
async def list_course_modules(
    course_id: str,
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
) -> List[Dict[str, Any]]:
    modules, _ = await guarded_fetch(
        CacheKeys.course_modules(course_id),
        lambda: db.list_course_modules(course_id),
        registry.course,
        manager=manager,
        context="course-modules",
    )
    return modules


@router.patch("/{course_id}")
async def update_course(
    course_id: str,
    body: CourseUpdate,
    admin: UserProfile = Depends(require_admin),
    registry: CacheRegistry = Depends(get_cache_registry),
    db: LMSDatabase = Depends(get_db),
) -> Dict[str, Any]:
    course = await db.update_course(course_id, _changed_fields(body))
    registry.invalidate_course(course_id)
    return course


# ============================================================================
# Tasks
# ============================================================================

@tasks_router.get("/{task_id}")
async def get_task(
    task_id: str,
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
) -> Dict[str, Any]:
    task, _ = await guarded_fetch(
        CacheKeys.task(task_id),
        lambda: db.get_task(task_id),
        registry.task,
        manager=manager,
        context="tasks",
    )
    return task


@tasks_router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    admin: UserProfile = Depends(require_admin),
    registry: CacheRegistry = Depends(get_cache_registry),
    db: LMSDatabase = Depends(get_db),
) -> Dict[str, Any]:
    task = await db.update_task(task_id, _changed_fields(body))
    registry.invalidate_task(task_id, topic_id=task.get("topic_id"))
    return task
