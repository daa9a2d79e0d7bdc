"""API Routers for the LMS backend."""

from . import admin, auth, chat, courses, dashboard, system

__all__ = [
    "admin",
    "auth",
    "chat",
    "courses",
    "dashboard",
    "system",
]
