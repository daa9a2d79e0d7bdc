"""
Middleware package for the LMS backend.

Includes:
- add_error_handlers: JSON exception handlers for application and HTTP errors
"""

from middleware.error_handlers import add_error_handlers

__all__ = [
    "add_error_handlers",
]
