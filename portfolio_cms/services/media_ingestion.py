# portfolio_cms/services/media_ingestion.py

import hashlib
import logging
import re
import uuid
from typing import Any, Dict, List, Optional

from portfolio_cms.config import MAX_UPLOAD_BYTES, MEDIA_ROOT_FOLDER
from portfolio_cms.services.errors import InvalidType, TooLarge
from portfolio_cms.services.media_host import (
    CloudinaryHost,
    MediaHost,
    VARIANT_TRANSFORMATIONS,
)

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = MEDIA_ROOT_FOLDER
GALLERY_FOLDER = f"{MEDIA_ROOT_FOLDER}/gallery"

# Hosted URLs look like .../image/upload/[transformations/]v1712345678/<public_id>.<ext>
HOSTED_URL_REGEX = re.compile(r"/v\d+/(.+)\.\w+$")


def public_id_from_url(url: Optional[str]) -> Optional[str]:
    """
    Extract the host public id from a hosted image URL.
    Returns None for anything that does not look like a hosted asset.
    """
    if not url:
        return None
    match = HOSTED_URL_REGEX.search(url.split("?", 1)[0])
    return match.group(1) if match else None


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class MediaIngestion:
    """
    Validates, deduplicates and stores images on the media host.

    Identical bytes uploaded twice into the same folder resolve to the
    asset stored the first time: the SHA-256 of the bytes is attached to
    every upload and looked up before uploading again.
    """

    def __init__(self, host: MediaHost, max_bytes: int = MAX_UPLOAD_BYTES):
        self.host = host
        self.max_bytes = max_bytes

    def check_upload(self, mime_type: Optional[str], size: Optional[int]):
        """
        Type and size checks. `size` may be None when it is not known yet.
        """
        if not mime_type or not mime_type.lower().startswith("image/"):
            raise InvalidType("Only image files are allowed")
        if size is not None and size > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise TooLarge(f"File size must be less than {limit_mb}MB")

    async def upload(
        self,
        data: bytes,
        mime_type: Optional[str],
        folder: str = DEFAULT_FOLDER,
    ) -> Dict[str, Any]:
        """
        Returns {url, publicId, width, height, format}.
        """
        self.check_upload(mime_type, len(data))
        folder = (folder or DEFAULT_FOLDER).strip("/")
        digest = content_hash(data)

        existing = await self.host.find_by_hash(folder, digest)
        if existing:
            logger.info("Reusing %s for duplicate upload into %s", existing["publicId"], folder)
            asset = existing
        else:
            # Never reuse the client filename: random names cannot collide
            asset = await self.host.upload(
                data,
                folder=folder,
                name=uuid.uuid4().hex,
                content_hash=digest,
            )

        return {
            "url": asset["url"],
            "publicId": asset["publicId"],
            "width": asset.get("width"),
            "height": asset.get("height"),
            "format": asset.get("format"),
        }

    async def delete(self, public_id: str) -> bool:
        """
        True when the host deleted the asset, False when it did not exist.
        """
        deleted = await self.host.destroy(public_id)
        if not deleted:
            logger.info("Media asset %s not found on host", public_id)
        return deleted

    async def list(self, folder: str = GALLERY_FOLDER, max_results: int = 500) -> List[Dict[str, Any]]:
        """
        Assets under `folder`, newest first, with derived size variants.
        """
        assets = await self.host.search(folder.strip("/"), max_results)
        assets = sorted(assets, key=lambda a: a.get("createdAt") or "", reverse=True)
        results = []
        for asset in assets:
            item = {
                "id": asset["publicId"],
                "url": asset["url"],
                "width": asset.get("width"),
                "height": asset.get("height"),
                "format": asset.get("format"),
                "createdAt": asset.get("createdAt"),
            }
            for size, transformation in VARIANT_TRANSFORMATIONS.items():
                item[size] = self.host.variant_url(asset["publicId"], transformation)
            results.append(item)
        return results


def get_media_ingestion() -> MediaIngestion:
    """
    FastAPI dependency: media ingestion backed by Cloudinary credentials
    from the environment. Missing credentials surface as NotConfigured on
    first use, not here.
    """
    return MediaIngestion(CloudinaryHost())
