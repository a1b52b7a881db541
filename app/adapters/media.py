from __future__ import annotations

import logging
from io import BytesIO
from urllib.parse import urljoin

from PIL import Image, UnidentifiedImageError

from app.adapters.twitter import InboundTweet, TweetIncludes
from app.core.http import ResilientHTTPClient, ResponseTooLarge

logger = logging.getLogger(__name__)

IMAGE_MEDIA_TYPES = {"photo", "animated_gif"}
ALLOWED_IMAGE_PREFIX = "https://pbs.twimg.com/"
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_REDIRECTS = 3
URI_KEYS = ("gateway_url", "ipfs_url", "uri", "url", "ipfsUri", "cid")


class ImageError(Exception):
    pass


def image_url_for(tweet: InboundTweet, includes: TweetIncludes | None) -> str | None:
    if not tweet.media_keys or includes is None or not includes.media:
        return None
    by_key = {m.media_key: m for m in includes.media}
    for key in tweet.media_keys:
        item = by_key.get(key)
        if item and item.type in IMAGE_MEDIA_TYPES:
            return item.url or item.preview_image_url
    return None


class ImageUploader:
    def __init__(
        self,
        http: ResilientHTTPClient,
        upload_url: str,
        allowed_prefix: str = ALLOWED_IMAGE_PREFIX,
        max_bytes: int = MAX_IMAGE_BYTES,
    ) -> None:
        self.http = http
        self.upload_url = upload_url
        self.allowed_prefix = allowed_prefix
        self.max_bytes = max_bytes

    async def download_image(self, url: str) -> bytes:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            if not current.startswith(self.allowed_prefix):
                raise ImageError("Invalid image URL: only Twitter media URLs are accepted")
            try:
                resp, body = await self.http.get_bytes(current, self.max_bytes)
            except ResponseTooLarge as exc:
                raise ImageError(str(exc)) from exc
            if resp.is_redirect:
                location = resp.headers.get("location")
                if not location:
                    raise ImageError("Image redirect without location")
                current = urljoin(current, location)
                continue
            return body
        raise ImageError("Too many redirects fetching image")

    @staticmethod
    def sniff_content_type(data: bytes) -> str:
        try:
            with Image.open(BytesIO(data)) as img:
                fmt = img.format
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise ImageError("Attachment is not a readable image") from exc
        return Image.MIME.get(fmt or "", "image/jpeg")

    async def upload_image(self, data: bytes) -> str:
        content_type = self.sniff_content_type(data)
        ext = content_type.split("/")[-1]
        resp = await self.http.post_file(self.upload_url, "file", f"market-image.{ext}", data, content_type)
        if resp.is_error:
            raise ImageError(f"Image upload failed ({resp.status_code}): {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ImageError(f"Failed to parse upload response: {resp.text[:200]}") from exc

        if isinstance(payload, dict):
            for key in URI_KEYS:
                if payload.get(key):
                    uri = str(payload[key])
                    logger.info("image_uploaded_to_ipfs", extra={"event": "image_uploaded_to_ipfs", "uri": uri})
                    return uri
        logger.error("image_upload_unexpected_response", extra={"event": "image_upload_unexpected_response", "response": resp.text[:500]})
        raise ImageError(f"Unexpected upload response: {resp.text[:200]}")

    async def resolve(self, url: str) -> str:
        data = await self.download_image(url)
        return await self.upload_image(data)
