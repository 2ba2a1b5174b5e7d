"""Book creation endpoint."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from family_stories.core.dependencies import get_book_service
from family_stories.core.errors import NoStoriesError
from family_stories.services.books.service import BookService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/create-book")
async def create_book(
    user_id: Optional[str] = Query(None),
    service: BookService = Depends(get_book_service),
):
    """Assemble a book from all of a user's stories."""
    if not user_id:
        return JSONResponse(status_code=400, content={"error": "user_id is required"})

    logger.info(f"[BOOK] Create book requested for user {user_id}")
    try:
        result = await service.create_book(user_id)
    except NoStoriesError:
        return JSONResponse(status_code=404, content={"error": "No stories found for this user"})
    except Exception as e:
        logger.error(
            f"[BOOK] Error creating book for user {user_id} - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to create book", "details": str(e)},
        )

    return {
        "status": "success",
        "bookId": result.book_id,
        "title": result.title,
        "chaptersCount": len(result.chapters),
    }
