"""
Seller product image uploads to the storage bucket.

Objects are stored at ``{owner_id}/{epoch_ms}.{ext}``; the product row keeps
the bucket's public URL.
"""
import time
from typing import Callable, Optional

from storefront.auth.session import AuthSession
from storefront.core.config import StorefrontConfig, get_config
from storefront.core.errors import ValidationError
from storefront.utils.logger import get_logger, kv
from storefront.utils.supabase_client import SupabaseClient

logger = get_logger("catalog.images")


class StorageBucket:
    """One bucket of the hosted blob store."""

    def __init__(self, client: SupabaseClient, bucket: str):
        self._client = client
        self.bucket = bucket

    def upload(self, path: str, content: bytes, content_type: str) -> None:
        self._client.upload(self.bucket, path, content, content_type, upsert=False)

    def public_url(self, path: str) -> str:
        return self._client.public_url(self.bucket, path)


def content_type_for(ext: str) -> str:
    return "image/png" if ext == "png" else "image/jpeg"


def object_path(owner_id: str, filename: str, now_ms: int) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "jpg"
    return f"{owner_id}/{now_ms}.{ext}"


class ImageUploader:
    def __init__(self, bucket: StorageBucket, config: Optional[StorefrontConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.bucket = bucket
        self.config = config or get_config()
        self._clock = clock

    def upload_image(self, session: AuthSession, filename: str, content: bytes) -> str:
        """Upload a product image and return its public URL."""
        session.require("can_manage_catalog", "upload images")
        if not content:
            raise ValidationError("File does not exist", {"filename": filename})
        if len(content) > self.config.max_image_bytes:
            limit_mb = self.config.max_image_bytes // (1024 * 1024)
            raise ValidationError(f"Image must be smaller than {limit_mb}MB", {"size": len(content)})

        path = object_path(session.user_id, filename, int(self._clock() * 1000))
        ext = path.rsplit(".", 1)[-1]
        self.bucket.upload(path, content, content_type_for(ext))
        url = self.bucket.public_url(path)
        logger.info("images: %s", kv(method="upload_image", user_id=session.user_id, path=path, size=len(content), result="success"))
        return url
