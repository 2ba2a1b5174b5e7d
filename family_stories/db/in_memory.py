"""In-memory document store."""
import asyncio
import copy
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from family_stories.core.errors import DocumentNotFoundError
from family_stories.db.base import DocumentStore, Filter, StoredDocument, WriteOp


def _apply_field_paths(document: Dict[str, Any], updates: Dict[str, Any]) -> None:
    """Write dotted field paths into a nested dict in place."""
    for path, value in updates.items():
        parts = path.split(".")
        target = document
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = copy.deepcopy(value)


def _lookup(document: Dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(document: Dict[str, Any], filters: List[Filter]) -> bool:
    for field, op, expected in filters:
        actual = _lookup(document, field)
        if op == "==":
            if actual != expected:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return True


class InMemoryDocumentStore(DocumentStore):
    """Document store kept in process memory, optionally seeded from YAML.

    Every operation yields to the event loop once before touching data, the way a
    network round trip would, and then runs to completion without suspending.
    """

    def __init__(self, seed_file: Optional[str] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        if seed_file is not None:
            self.load_seed(seed_file)

    def load_seed(self, seed_file: str) -> None:
        """Load ``{collection: {doc_id: data}}`` from a YAML file."""
        with open(Path(seed_file), "r") as f:
            data = yaml.safe_load(f) or {}
        for collection, documents in data.items():
            for doc_id, document in (documents or {}).items():
                self._collections.setdefault(collection, {})[str(doc_id)] = document

    def snapshot(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Synchronous read, for tests and debugging."""
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def clear(self) -> None:
        self._collections.clear()

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        return self.snapshot(collection, doc_id)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        await asyncio.sleep(0)
        doc_id = self.new_id(collection)
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self._update_now(collection, doc_id, updates)

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        condition: Callable[[Dict[str, Any]], bool],
        updates: Dict[str, Any],
    ) -> bool:
        await asyncio.sleep(0)
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise DocumentNotFoundError(collection, doc_id)
        if not condition(copy.deepcopy(document)):
            return False
        _apply_field_paths(document, updates)
        return True

    async def list_documents(self, collection: str) -> List[StoredDocument]:
        await asyncio.sleep(0)
        return [
            StoredDocument(id=doc_id, data=copy.deepcopy(document))
            for doc_id, document in self._collections.get(collection, {}).items()
        ]

    async def query(self, collection: str, filters: List[Filter]) -> List[StoredDocument]:
        await asyncio.sleep(0)
        return [
            StoredDocument(id=doc_id, data=copy.deepcopy(document))
            for doc_id, document in self._collections.get(collection, {}).items()
            if _matches(document, filters)
        ]

    async def commit(self, writes: List[WriteOp]) -> None:
        await asyncio.sleep(0)
        # Validate first so a failing batch leaves nothing behind
        for write in writes:
            if write.kind == "update" and write.doc_id not in self._collections.get(write.collection, {}):
                raise DocumentNotFoundError(write.collection, write.doc_id)
        for write in writes:
            if write.kind == "set":
                self._collections.setdefault(write.collection, {})[write.doc_id] = copy.deepcopy(write.data)
            else:
                self._update_now(write.collection, write.doc_id, write.data)

    def new_id(self, collection: str) -> str:
        return uuid.uuid4().hex[:20]

    def _update_now(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise DocumentNotFoundError(collection, doc_id)
        _apply_field_paths(document, updates)
