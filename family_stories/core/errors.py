"""Domain exceptions."""


class FamilyStoriesError(Exception):
    """Base class for all application errors."""


class NotFoundError(FamilyStoriesError):
    """A referenced record does not exist."""


class DocumentNotFoundError(NotFoundError):
    """Raised by the document store when updating a missing document."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class StoryNotFoundError(NotFoundError):
    pass


class CategoryNotFoundError(NotFoundError):
    pass


class AgentNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class NoStoriesError(NotFoundError):
    pass


class UpstreamError(FamilyStoriesError):
    """An external collaborator (OpenAI, Retell, storage) failed."""


class CallPlatformError(UpstreamError):
    pass


class DispatchFailedError(UpstreamError):
    pass


class GenerationError(UpstreamError):
    pass


class PersistenceError(FamilyStoriesError):
    """A document store write failed."""


class ReconciliationError(FamilyStoriesError):
    """Processing a call-completion event failed."""
