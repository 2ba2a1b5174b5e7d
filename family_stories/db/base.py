"""Document store interface."""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel

# Collection names
USERS = "users"
STORIES = "stories"
CATEGORIES = "categories"
AGENTS = "agents"
UPCOMING_QUESTIONS = "upcoming_questions"
CALL_INDEX = "call_index"


def books_collection(user_id: str) -> str:
    """Path of the per-user books sub-collection."""
    return f"{USERS}/{user_id}/books"


def call_history_collection(user_id: str) -> str:
    """Path of the per-user call history sub-collection."""
    return f"{USERS}/{user_id}/call_history"


class StoredDocument(BaseModel):
    """A document read from the store."""

    id: str
    data: Dict[str, Any]


class WriteOp(BaseModel):
    """One write inside an atomic batch."""

    kind: Literal["set", "update"]
    collection: str
    doc_id: str
    data: Dict[str, Any]


Filter = Tuple[str, str, Any]


class DocumentStore(ABC):
    """Abstract base class for document stores.

    Update payloads use dotted field paths (``"sessions.abc.updated"``) so that
    only the named leaves are written and sibling fields are left untouched.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a document's data, or None if it does not exist."""
        pass

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create or overwrite a document."""
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        """Apply field-path updates to an existing document.

        Raises:
            DocumentNotFoundError: if the document does not exist.
        """
        pass

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        doc_id: str,
        condition: Callable[[Dict[str, Any]], bool],
        updates: Dict[str, Any],
    ) -> bool:
        """Atomically apply updates only when ``condition(current_data)`` holds.

        Returns:
            True if the updates were applied, False if the condition failed.
        """
        pass

    @abstractmethod
    async def list_documents(self, collection: str) -> List[StoredDocument]:
        """Return every document in a collection."""
        pass

    @abstractmethod
    async def query(self, collection: str, filters: List[Filter]) -> List[StoredDocument]:
        """Return documents matching all filters. Only equality (``==``) filters are supported."""
        pass

    @abstractmethod
    async def commit(self, writes: List[WriteOp]) -> None:
        """Apply a list of writes atomically."""
        pass

    @abstractmethod
    def new_id(self, collection: str) -> str:
        """Generate a fresh document id for a collection."""
        pass
