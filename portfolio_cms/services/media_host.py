# portfolio_cms/services/media_host.py

import hashlib
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from portfolio_cms.config import (
    CLOUDINARY_CLOUD_NAME,
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
    MEDIA_HTTP_TIMEOUT,
)
from portfolio_cms.services.errors import NotConfigured, RemoteError

logger = logging.getLogger(__name__)

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"
CLOUDINARY_DELIVERY_BASE = "https://res.cloudinary.com"

# Derived presentation sizes for gallery assets
VARIANT_TRANSFORMATIONS: Dict[str, str] = {
    "thumbnail": "w_300,h_300,c_fill,q_auto,f_auto",
    "medium": "w_800,c_limit,q_auto,f_auto",
    "large": "w_1920,c_limit,q_auto,f_auto",
}


class MediaHost:
    """
    Interface of the external image host that MediaIngestion delegates to.

    Assets are returned as plain dicts:
      {"url", "publicId", "width", "height", "format", "createdAt"}
    """

    async def find_by_hash(self, folder: str, content_hash: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def upload(
        self,
        data: bytes,
        *,
        folder: str,
        name: str,
        content_hash: str,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def destroy(self, public_id: str) -> bool:
        raise NotImplementedError

    async def search(self, folder: str, max_results: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def variant_url(self, public_id: str, transformation: str) -> str:
        raise NotImplementedError


def hash_tag(content_hash: str) -> str:
    return f"sha256_{content_hash}"


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    """
    Cloudinary request signature: sorted `key=value` pairs joined by '&',
    secret appended, SHA-1 hex digest. Empty values are not signed.
    """
    to_sign = "&".join(
        f"{key}={value}"
        for key, value in sorted(params.items())
        if value is not None and value != ""
    )
    return hashlib.sha1((to_sign + api_secret).encode("utf-8")).hexdigest()


def _asset_from_resource(resource: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "url": resource.get("secure_url") or resource.get("url"),
        "publicId": resource.get("public_id"),
        "width": resource.get("width"),
        "height": resource.get("height"),
        "format": resource.get("format"),
        "createdAt": resource.get("created_at"),
    }


class CloudinaryHost(MediaHost):
    """
    Cloudinary over its REST API.

    - signed upload/destroy on the Upload API
    - the Admin API tag listing (basic auth) for hash lookups
    - the Search API (basic auth) for listing folders
    """

    def __init__(
        self,
        cloud_name: Optional[str] = CLOUDINARY_CLOUD_NAME,
        api_key: Optional[str] = CLOUDINARY_API_KEY,
        api_secret: Optional[str] = CLOUDINARY_API_SECRET,
        timeout: float = MEDIA_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def _ensure_configured(self):
        if not self.is_configured:
            raise NotConfigured(
                "Cloudinary credentials not configured. "
                "Set CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
            )

    def _api_url(self, path: str) -> str:
        return f"{CLOUDINARY_API_BASE}/{self.cloud_name}/{path.lstrip('/')}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {k: v for k, v in params.items() if v is not None}
        params["timestamp"] = int(time.time())
        params["signature"] = sign_params(params, self.api_secret)
        params["api_key"] = self.api_key
        return params

    async def _send(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        self._ensure_configured()
        try:
            async with self._client() as client:
                resp = await client.request(method, self._api_url(path), **kwargs)
        except httpx.HTTPError as e:
            raise RemoteError(f"Media host request failed: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code >= 400:
            message = (payload.get("error") or {}).get("message") or resp.text[:200]
            raise RemoteError(
                f"Media host returned {resp.status_code}: {message}",
                details={"status": resp.status_code},
            )
        return payload

    async def find_by_hash(self, folder: str, content_hash: str) -> Optional[Dict[str, Any]]:
        # Admin API tag listing: reflects uploads immediately
        payload = await self._send(
            "GET",
            f"resources/image/tags/{hash_tag(content_hash)}",
            params={"max_results": 100},
            auth=(self.api_key, self.api_secret),
        )
        for resource in payload.get("resources") or []:
            if (resource.get("public_id") or "").rpartition("/")[0] == folder:
                return _asset_from_resource(resource)
        return None

    async def upload(
        self,
        data: bytes,
        *,
        folder: str,
        name: str,
        content_hash: str,
    ) -> Dict[str, Any]:
        params = self._signed(
            {
                "folder": folder,
                "public_id": name,
                "tags": hash_tag(content_hash),
                # Limit max width and let the CDN pick quality/format
                "transformation": "w_1920,c_limit/q_auto/f_auto",
            }
        )
        payload = await self._send(
            "POST",
            "image/upload",
            data=params,
            files={"file": (name, data)},
        )
        logger.info("Uploaded %s to media host folder %s", payload.get("public_id"), folder)
        return _asset_from_resource(payload)

    async def destroy(self, public_id: str) -> bool:
        payload = await self._send(
            "POST",
            "image/destroy",
            data=self._signed({"public_id": public_id}),
        )
        return payload.get("result") == "ok"

    async def search(self, folder: str, max_results: int) -> List[Dict[str, Any]]:
        payload = await self._send(
            "POST",
            "resources/search",
            json={
                "expression": f'folder="{folder}"',
                "sort_by": [{"created_at": "desc"}],
                "max_results": max_results,
            },
            auth=(self.api_key, self.api_secret),
        )
        return [_asset_from_resource(r) for r in payload.get("resources") or []]

    def variant_url(self, public_id: str, transformation: str) -> str:
        return f"{CLOUDINARY_DELIVERY_BASE}/{self.cloud_name}/image/upload/{transformation}/{public_id}"
