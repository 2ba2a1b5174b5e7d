"""Firebase Storage for generated images."""
import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import quote

import httpx
from firebase_admin import storage

from family_stories.core.config import Settings
from family_stories.db.firestore import initialize_firebase

logger = logging.getLogger(__name__)


class FirebaseBlobStorage:
    """Copies remote images into the Firebase Storage bucket."""

    def __init__(self, settings: Settings, timeout: float = 60.0):
        self.bucket_name = settings.firebase_storage_bucket
        self.settings = settings
        self.timeout = timeout
        self._bucket = None
        self._executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="blob")

    def initialize(self) -> None:
        if self._bucket is None:
            app = initialize_firebase(self.settings)
            self._bucket = storage.bucket(self.bucket_name, app=app)

    async def _run_async(self, func, *args, **kwargs):
        """Run a sync function in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    def download_url(self, blob_name: str, token: str) -> str:
        return (
            f"https://firebasestorage.googleapis.com/v0/b/{self.bucket_name}/o/"
            f"{quote(blob_name, safe='')}?alt=media&token={token}"
        )

    async def store_remote_image(self, source_url: str, content_type: str = "image/png") -> str:
        """Download an image and upload it to ``images/<uuid>.png``.

        Returns:
            Public download URL carrying a Firebase download token.
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(source_url)
            response.raise_for_status()
            content = response.content

        self.initialize()
        blob_name = f"images/{uuid.uuid4()}.png"
        token = str(uuid.uuid4())

        def _upload():
            blob = self._bucket.blob(blob_name)
            blob.metadata = {"firebaseStorageDownloadTokens": token}
            blob.upload_from_string(content, content_type=content_type)

        await self._run_async(_upload)
        logger.info(f"[BLOB] Stored image {blob_name} ({len(content)} bytes)")
        return self.download_url(blob_name, token)

    def shutdown(self) -> None:
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None
