"""API router for v1 endpoints."""

from fastapi import APIRouter

from consultant.api import chat

router = APIRouter()

# Consultant chat, session transcripts and rate-limit status
router.include_router(chat.router, tags=["chat"])
