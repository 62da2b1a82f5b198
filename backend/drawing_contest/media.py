"""
Media CDN client.

Images are sent to Cloudinary as unsigned uploads (file + upload preset); the
CDN answers with a public ``secure_url`` that is stored on the drawing or theme.
"""

import logging
import os
from dataclasses import dataclass
from typing import Protocol

import requests

from .errors import ServiceUnavailable, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}
CLOUDINARY_UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/image/upload"


@dataclass
class ImageUpload:
    filename: str
    content_type: str
    data: bytes

    def validate(self) -> None:
        if not self.data:
            raise ValidationFailed("No file selected")
        if not self.content_type or not self.content_type.startswith("image/"):
            raise ValidationFailed("Please upload an image file")
        ext = os.path.splitext(self.filename or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationFailed("Accepted formats: JPEG, PNG, GIF, WebP")


class MediaUploader(Protocol):
    def upload(self, image: ImageUpload) -> str: ...


class CloudinaryUploader:
    def __init__(self, cloud_name: str, upload_preset: str, timeout: float = 20.0):
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset
        self.timeout = timeout

    @property
    def url(self) -> str:
        return CLOUDINARY_UPLOAD_URL.format(cloud_name=self.cloud_name)

    def upload(self, image: ImageUpload) -> str:
        if not self.cloud_name or not self.upload_preset:
            logger.error("Cloudinary is not configured (CLOUDINARY_CLOUD_NAME / CLOUDINARY_UPLOAD_PRESET)")
            raise ServiceUnavailable("Image uploads are not available right now")
        try:
            response = requests.post(
                self.url,
                data={"upload_preset": self.upload_preset},
                files={"file": (image.filename, image.data, image.content_type)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Cloudinary upload failed for %s: %s", image.filename, e)
            raise ServiceUnavailable("Image upload failed, please try again") from e

        if not response.ok:
            logger.warning(
                "Cloudinary rejected %s: HTTP %s %s",
                image.filename, response.status_code, response.text[:200],
            )
            raise ServiceUnavailable("Image upload failed, please try again")

        secure_url = response.json().get("secure_url")
        if not secure_url:
            logger.warning("Cloudinary response for %s has no secure_url", image.filename)
            raise ServiceUnavailable("Image upload failed, please try again")
        logger.info("Uploaded %s -> %s", image.filename, secure_url)
        return secure_url
