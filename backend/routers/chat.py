"""
Chat API Router

Handles the course-wide chat feed.

Caching:
- Pages of messages are cached for chat_messages_ttl (2 minutes) under
  chat_messages:limit:<n>|offset:<m>
- Posting a message invalidates every cached page
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from auth.dependencies import get_current_user
from auth.models import User
from cache import CacheKeys
from cache_registry import CacheRegistry, get_cache_registry
from config import settings
from coordination import RequestManager, get_request_manager, guarded_fetch
from database import LMSDatabase, get_db

logger = logging.getLogger(__name__)
router = APIRouter()

CONTEXT = "chat-messages"


class ChatMessagesResponse(BaseModel):
    data: List[Dict[str, Any]]
    count: int
    cached: bool
    timestamp: str


class ChatMessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


@router.get("/messages", response_model=ChatMessagesResponse)
async def list_messages(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
):
    """Page of chat messages, oldest first."""
    messages, cached = await guarded_fetch(
        CacheKeys.chat_messages(limit, offset),
        lambda: db.list_chat_messages(limit, offset),
        registry.default,
        manager=manager,
        context=CONTEXT,
        ttl=settings.chat_messages_ttl,
    )

    return ChatMessagesResponse(
        data=messages,
        count=len(messages),
        cached=cached,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.post("/messages", status_code=201)
async def post_message(
    body: ChatMessageCreate,
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    db: LMSDatabase = Depends(get_db),
):
    """Post a chat message as the current user."""
    message = await db.insert_chat_message(user.id, body.content)
    registry.invalidate_chat()
    return message
