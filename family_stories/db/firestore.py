"""Firestore-backed document store."""
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from family_stories.core.config import Settings
from family_stories.core.errors import DocumentNotFoundError, PersistenceError
from family_stories.db.base import DocumentStore, Filter, StoredDocument, WriteOp

logger = logging.getLogger(__name__)


def initialize_firebase(settings: Settings) -> firebase_admin.App:
    """Initialize the default Firebase app once and return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        logger.info(
            f"[FIREBASE] Initializing Firebase app for project {settings.firebase_project_id}"
        )
        cred = credentials.Certificate(settings.firebase_credentials())
        return firebase_admin.initialize_app(
            cred, {"storageBucket": settings.firebase_storage_bucket}
        )


class FirestoreDocumentStore(DocumentStore):
    """Document store on top of the (synchronous) firebase_admin Firestore client.

    Client calls run in a thread pool so they never block the event loop.
    """

    def __init__(self, settings: Settings, max_workers: int = 10):
        self.settings = settings
        self.client = None
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="firestore"
        )

    def initialize(self) -> None:
        """Create the Firestore client (call once at startup)."""
        if self.client is not None:
            return
        app = initialize_firebase(self.settings)
        self.client = firestore.client(app)

    def shutdown(self) -> None:
        """Shutdown the thread pool executor. Call during app shutdown."""
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None

    async def _run_sync(self, operation: str, path: str, func, *args, **kwargs):
        """Run a synchronous Firestore operation in the thread pool."""
        if self.client is None:
            self.initialize()
        loop = asyncio.get_running_loop()
        start_time = time.time()
        try:
            return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))
        finally:
            logger.debug(
                f"[FIRESTORE] {operation} {path} took {(time.time() - start_time) * 1000:.0f}ms"
            )

    def _doc(self, collection: str, doc_id: str):
        return self.client.collection(collection).document(doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        def _sync_get():
            snapshot = self._doc(collection, doc_id).get()
            return snapshot.to_dict() if snapshot.exists else None

        return await self._run_sync("get", f"{collection}/{doc_id}", _sync_get)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        def _sync_add():
            _, ref = self.client.collection(collection).add(data)
            return ref.id

        try:
            return await self._run_sync("add", collection, _sync_add)
        except google_exceptions.GoogleAPICallError as e:
            raise PersistenceError(f"Failed to add document to {collection}: {e}") from e

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        def _sync_set():
            self._doc(collection, doc_id).set(data)

        try:
            await self._run_sync("set", f"{collection}/{doc_id}", _sync_set)
        except google_exceptions.GoogleAPICallError as e:
            raise PersistenceError(f"Failed to set {collection}/{doc_id}: {e}") from e

    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        def _sync_update():
            self._doc(collection, doc_id).update(updates)

        try:
            await self._run_sync("update", f"{collection}/{doc_id}", _sync_update)
        except google_exceptions.NotFound as e:
            raise DocumentNotFoundError(collection, doc_id) from e
        except google_exceptions.GoogleAPICallError as e:
            raise PersistenceError(f"Failed to update {collection}/{doc_id}: {e}") from e

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        condition: Callable[[Dict[str, Any]], bool],
        updates: Dict[str, Any],
    ) -> bool:
        def _sync_update_if():
            ref = self._doc(collection, doc_id)

            @firestore.transactional
            def _in_transaction(transaction):
                snapshot = ref.get(transaction=transaction)
                if not snapshot.exists:
                    raise DocumentNotFoundError(collection, doc_id)
                if not condition(snapshot.to_dict()):
                    return False
                transaction.update(ref, updates)
                return True

            return _in_transaction(self.client.transaction())

        try:
            return await self._run_sync("update_if", f"{collection}/{doc_id}", _sync_update_if)
        except google_exceptions.GoogleAPICallError as e:
            raise PersistenceError(f"Failed to update {collection}/{doc_id}: {e}") from e

    async def list_documents(self, collection: str) -> List[StoredDocument]:
        def _sync_list():
            return [
                StoredDocument(id=snapshot.id, data=snapshot.to_dict() or {})
                for snapshot in self.client.collection(collection).stream()
            ]

        return await self._run_sync("list", collection, _sync_list)

    async def query(self, collection: str, filters: List[Filter]) -> List[StoredDocument]:
        def _sync_query():
            query = self.client.collection(collection)
            for field, op, value in filters:
                query = query.where(filter=FieldFilter(field, op, value))
            return [
                StoredDocument(id=snapshot.id, data=snapshot.to_dict() or {})
                for snapshot in query.stream()
            ]

        return await self._run_sync("query", collection, _sync_query)

    async def commit(self, writes: List[WriteOp]) -> None:
        def _sync_commit():
            batch = self.client.batch()
            for write in writes:
                ref = self._doc(write.collection, write.doc_id)
                if write.kind == "set":
                    batch.set(ref, write.data)
                else:
                    batch.update(ref, write.data)
            batch.commit()

        try:
            await self._run_sync("commit", f"{len(writes)} writes", _sync_commit)
        except google_exceptions.NotFound as e:
            raise PersistenceError(f"Batch referenced a missing document: {e}") from e
        except google_exceptions.GoogleAPICallError as e:
            raise PersistenceError(f"Failed to commit batch: {e}") from e

    def new_id(self, collection: str) -> str:
        if self.client is None:
            self.initialize()
        return self.client.collection(collection).document().id
