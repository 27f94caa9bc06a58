"""
FastAPI dependency providers.

External collaborators are built per request from settings and swapped
out in tests through app.dependency_overrides.
"""
from __future__ import annotations

import hmac
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Header

from app.clients.classifier import IntentClassifier, LLMIntentClassifier
from app.clients.llm import ChatCompletionClient
from app.clients.replies import LLMReplyGenerator, ReplyGenerator
from app.clients.sender import ChannelSender, TwilioSender
from app.core.config import settings
from app.core.errors import UnauthorizedJobError
from app.services.intent_router import EngineServices


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def get_chat_client() -> ChatCompletionClient:
    return ChatCompletionClient.from_settings()


def get_classifier(client: ChatCompletionClient = Depends(get_chat_client)) -> IntentClassifier:
    return LLMIntentClassifier(client)


def get_reply_generator(client: ChatCompletionClient = Depends(get_chat_client)) -> ReplyGenerator:
    return LLMReplyGenerator(client)


def get_sender() -> ChannelSender:
    return TwilioSender.from_settings()


def get_engine_services(
    classifier: IntentClassifier = Depends(get_classifier),
    replies: ReplyGenerator = Depends(get_reply_generator),
    sender: ChannelSender = Depends(get_sender),
) -> EngineServices:
    return EngineServices(classifier=classifier, replies=replies, sender=sender)


def verify_job_token(authorization: Optional[str] = Header(default=None)) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` when a secret is configured."""
    if not settings.CRON_SECRET:
        return
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise UnauthorizedJobError()
