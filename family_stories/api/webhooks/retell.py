"""Retell call-event webhook."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from family_stories.core.dependencies import get_call_reconciler, get_post_call_hooks
from family_stories.services.calls.hooks import PostCallHook, run_post_call_hooks
from family_stories.services.calls.reconciler import (
    CallCompletionEvent,
    CallReconciler,
    ReconciliationStatus,
)

router = APIRouter()
logger = logging.getLogger(__name__)

CALL_ENDED = "call_ended"


class RetellWebhookPayload(BaseModel):
    """Webhook envelope. ``call`` is validated only for events we handle."""

    event: str
    call: Optional[Dict[str, Any]] = None


@router.post("/webhook/retell")
async def handle_retell_webhook(
    request: Request,
    payload: RetellWebhookPayload,
    background_tasks: BackgroundTasks,
    reconciler: CallReconciler = Depends(get_call_reconciler),
    hooks: List[PostCallHook] = Depends(get_post_call_hooks),
):
    """
    Handle a call event from Retell.

    Only ``call_ended`` is processed; every other event is acknowledged and ignored.
    """
    call = payload.call or {}
    call_id = call.get("call_id")
    logger.info(
        f"[WEBHOOK] Received Retell event '{payload.event}' - call: {call_id}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    if payload.event != CALL_ENDED:
        return {"status": "ignored"}

    try:
        event = CallCompletionEvent(
            call_id=call_id,
            transcript=call.get("transcript"),
            transcript_object=call.get("transcript_object") or [],
            recording_url=call.get("recording_url"),
        )
    except ValidationError as e:
        logger.warning(f"[WEBHOOK] Malformed call_ended payload: {e}")
        return JSONResponse(
            status_code=400,
            content={"error": "Failed to process webhook", "details": "Invalid call payload"},
        )

    try:
        outcome = await reconciler.handle_call_completion(event)
    except Exception as e:
        logger.error(
            f"[WEBHOOK] Error processing call {call_id} - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=400,
            content={"error": "Failed to process webhook", "details": str(e)},
        )

    if outcome.status == ReconciliationStatus.NOT_FOUND:
        return JSONResponse(
            status_code=404,
            content={"error": "No matching story found for this call"},
        )
    if outcome.status == ReconciliationStatus.DUPLICATE:
        return {"status": "duplicate"}

    if hooks:
        background_tasks.add_task(run_post_call_hooks, hooks, outcome, event.call_id)
    return {"status": "success"}
