"""
Cloudinary unsigned upload.
"""
import logging
import time
from typing import Optional

import httpx

from luba.config import get_settings
from luba.errors import NetworkError, ValidationError

logger = logging.getLogger(__name__)
settings = get_settings()


async def upload_image(
    content: bytes,
    folder: Optional[str] = None,
    content_type: str = "image/jpeg",
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Upload image bytes with the configured preset and return the hosted https URL."""
    if not content:
        raise ValidationError("Please choose an image to upload.")
    if not content_type.startswith("image/"):
        raise ValidationError("Only image files can be uploaded.")

    url = f"https://api.cloudinary.com/v1_1/{settings.image_host_cloud_name}/image/upload"
    data = {
        "upload_preset": settings.image_host_upload_preset,
        "folder": folder or settings.image_host_folder,
    }
    files = {"file": (f"upload_{int(time.time() * 1000)}.jpg", content, content_type)}
    try:
        if client is not None:
            resp = await client.post(url, data=data, files=files)
        else:
            async with httpx.AsyncClient(timeout=settings.image_host_timeout_seconds) as own:
                resp = await own.post(url, data=data, files=files)
    except httpx.HTTPError as exc:
        logger.error("Image upload failed: %s", exc)
        raise NetworkError("Image upload failed. Please try again.") from exc

    if resp.status_code >= 400:
        logger.error("Image host error %s: %s", resp.status_code, resp.text)
        raise NetworkError("Image upload failed. Please try again.")
    secure_url = resp.json().get("secure_url")
    if not secure_url:
        raise NetworkError("Image upload returned no URL.")
    return secure_url
