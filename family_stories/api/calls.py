"""Web call endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from family_stories.core.dependencies import get_web_call_service
from family_stories.core.errors import AgentNotFoundError
from family_stories.services.calls.web_calls import WebCallService

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateWebCallRequest(BaseModel):
    """JSON body of a web call request. Query parameters fill in missing fields."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    question: Optional[str] = None
    existing_story_id: Optional[str] = Field(default=None, alias="existingStoryId")


@router.post("/create-web-call")
async def create_web_call(
    body: Optional[CreateWebCallRequest] = None,
    user_id: Optional[str] = Query(None),
    category_id: Optional[str] = Query(None),
    question: Optional[str] = Query(None),
    existing_story_id: Optional[str] = Query(None),
    service: WebCallService = Depends(get_web_call_service),
):
    """Start a web call, creating the story if needed, and return the client access token."""
    body = body or CreateWebCallRequest()
    user_id = body.user_id or user_id
    category_id = body.category_id or category_id
    question = body.question or question
    existing_story_id = body.existing_story_id or existing_story_id

    if not user_id or not category_id or not question:
        return JSONResponse(status_code=400, content={"error": "Missing required parameters"})

    logger.info(
        f"[WEB CALL] Request received - user: {user_id}, "
        f"category: {category_id}, story: {existing_story_id or 'new'}"
    )
    try:
        result = await service.create_web_call(
            user_id=user_id,
            category_id=category_id,
            question=question,
            existing_story_id=existing_story_id,
        )
    except AgentNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except Exception as e:
        logger.error(
            f"[WEB CALL] Error creating web call - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"error": str(e)})

    return {
        "accessToken": result.access_token,
        "callId": result.call_id,
        "storyId": result.story_id,
        "sessionId": result.session_id,
    }
