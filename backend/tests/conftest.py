"""
Pytest fixtures for LMS backend tests.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from unittest.mock import MagicMock, AsyncMock


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    """Cache registry with default sizes/TTLs on a fake clock."""
    from cache_registry import CacheRegistry
    from config import Settings
    return CacheRegistry(Settings(), clock=clock)


@pytest.fixture
def manager(clock):
    """Request manager on a fake clock."""
    from coordination import RequestManager
    return RequestManager(clock=clock)


@pytest.fixture
def mock_db():
    """Mock Supabase data gateway."""
    db = MagicMock()
    db.is_configured = True
    db.get_user_profile = AsyncMock(return_value={"id": "test-user-123", "full_name": "Test Student", "role": "student"})
    db.update_user_profile = AsyncMock(return_value={"id": "test-user-123", "full_name": "Renamed", "role": "student"})
    db.get_dashboard_stats = AsyncMock(return_value={
        "profile": {"id": "test-user-123", "full_name": "Test Student"},
        "total_tasks": 4,
        "completed_tasks": 1,
        "pending_tasks": 3,
        "total_courses": 2,
        "recent_messages": 5,
        "generated_at": "2024-01-01T00:00:00+00:00",
    })
    db.list_chat_messages = AsyncMock(return_value=[])
    db.insert_chat_message = AsyncMock(return_value={"id": "msg-1", "content": "hi", "user_id": "test-user-123"})
    db.get_student_rankings = AsyncMock(return_value=[])
    db.list_submissions = AsyncMock(return_value=([], 0))
    db.grade_submission = AsyncMock(return_value={
        "id": "sub-1", "student_id": "test-user-123", "task_id": "task-1", "status": "graded", "points": 90,
    })
    db.list_courses = AsyncMock(return_value=[{"id": "course-1", "title": "Python 101"}])
    db.get_course = AsyncMock(return_value={"id": "course-1", "title": "Python 101"})
    db.list_course_modules = AsyncMock(return_value=[])
    db.update_course = AsyncMock(return_value={"id": "course-1", "title": "Python 201"})
    db.list_tasks = AsyncMock(return_value=[{"id": "task-1", "title": "Loops", "topic_id": "topic-1", "topic": None}])
    db.get_task = AsyncMock(return_value={"id": "task-1", "title": "Loops", "topic_id": "topic-1"})
    db.update_task = AsyncMock(return_value={"id": "task-1", "title": "While loops", "topic_id": "topic-1"})
    return db


@pytest.fixture
def mock_user():
    """Create a mock authenticated user."""
    from auth.models import User
    return User(
        id="test-user-123",
        email="test@example.com",
        email_confirmed=True,
        created_at="2024-01-01T00:00:00Z"
    )


@pytest.fixture
def admin_profile():
    from auth.models import UserProfile
    return UserProfile(id="admin-1", full_name="Admin", role="admin")


# Import app lazily to avoid circular imports
@pytest.fixture
def app():
    """Get FastAPI app instance."""
    from main import app
    return app


@pytest_asyncio.fixture
async def async_client(app, registry, manager, mock_db, mock_user, admin_profile):
    """HTTP client with auth, caches, request manager and Supabase replaced."""
    from auth.dependencies import get_current_user, require_admin
    from cache_registry import get_cache_registry
    from coordination import get_request_manager
    from database import get_db

    app.dependency_overrides[get_current_user] = lambda: mock_user
    app.dependency_overrides[require_admin] = lambda: admin_profile
    app.dependency_overrides[get_cache_registry] = lambda: registry
    app.dependency_overrides[get_request_manager] = lambda: manager
    app.dependency_overrides[get_db] = lambda: mock_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
