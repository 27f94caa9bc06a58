"""
Inbound message webhook.

POST /webhooks/messages - single entry point for patient messages
"""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_engine_services, get_now
from app.db.base import get_db
from app.schemas.common import ValidationErrorResponse
from app.schemas.inbound import InboundMessageRequest, InboundMessageResponse
from app.services.intent_router import EngineServices, InboundMessage, handle_inbound_message

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/messages",
    response_model=InboundMessageResponse,
    summary="Receive an inbound patient message",
    responses={
        200: {"description": "Message handled (or recognized as a duplicate delivery)."},
        422: {"model": ValidationErrorResponse, "description": "Missing sender or empty body."},
    },
)
def receive_message(
    payload: InboundMessageRequest,
    db: Session = Depends(get_db),
    services: EngineServices = Depends(get_engine_services),
    now: datetime = Depends(get_now),
):
    """
    Classify the message and advance the patient's conversation.

    Always answers 200 once the payload is valid: processing failures are
    reported as `success: false` with an `error` string, and a repeated
    `external_id` is reported as `duplicate: true` without side effects.
    """
    result = handle_inbound_message(
        db,
        services,
        InboundMessage(
            phone_number=payload.from_number,
            text=payload.body,
            external_id=payload.external_id,
            profile_name=payload.profile_name,
        ),
        now,
    )
    return InboundMessageResponse(
        success=result.success,
        duplicate=result.duplicate,
        intent=result.intent.value if result.intent else None,
        route=result.route.value if result.route else None,
        error=result.error,
    )
