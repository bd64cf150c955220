from minio import Minio
from minio.error import S3Error
from io import BytesIO
import logging
import os
import uuid

from taskhub.errors import TransientInfraError, ValidationError
from taskhub.messaging_service.schemas import (
    AudioAttachment, FileAttachment, ImageAttachment, VideoAttachment
)

logger = logging.getLogger(__name__)

MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "messages")
MINIO_PUBLIC_URL = os.getenv("MINIO_PUBLIC_URL", f"http://{MINIO_ENDPOINT}")

MAX_FILES = 5
MAX_FILE_SIZE = 15 * 1024 * 1024
ALLOWED_MIMES = {
    "image/jpeg", "image/png", "image/gif", "image/webp",
    "application/pdf", "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "video/mp4", "video/quicktime",
    "audio/mpeg", "audio/mp3",
    "text/plain",
}

_minio_client = None


def get_minio() -> Minio:
    global _minio_client
    if _minio_client is None:
        _minio_client = Minio(
            MINIO_ENDPOINT,
            access_key=MINIO_ACCESS_KEY,
            secret_key=MINIO_SECRET_KEY,
            secure=False
        )
    return _minio_client


def validate_upload(mime_type: str, size: int):
    if mime_type not in ALLOWED_MIMES:
        raise ValidationError("Unsupported file type")
    if size > MAX_FILE_SIZE:
        raise ValidationError("File too large")


def build_attachment(url: str, file_name: str, mime_type: str, size: int):
    """Pick the attachment variant from the MIME family."""
    fields = {"url": url, "file_name": file_name, "file_size": size, "mime_type": mime_type}
    if mime_type.startswith("image/"):
        return ImageAttachment(**fields)
    if mime_type.startswith("video/"):
        return VideoAttachment(**fields)
    if mime_type.startswith("audio/"):
        return AudioAttachment(**fields)
    return FileAttachment(**fields)


def ensure_bucket(client: Minio, bucket_name: str):
    if not client.bucket_exists(bucket_name):
        client.make_bucket(bucket_name)
        logger.info("Created bucket %s", bucket_name)


def upload_attachment(file_name: str, data: bytes, mime_type: str, client: Minio = None):
    validate_upload(mime_type, len(data))
    client = client or get_minio()
    extension = os.path.splitext(file_name or "")[1]
    object_name = f"{uuid.uuid4().hex}{extension}"
    try:
        ensure_bucket(client, MINIO_BUCKET)
        client.put_object(
            MINIO_BUCKET,
            object_name,
            BytesIO(data),
            length=len(data),
            content_type=mime_type
        )
    except S3Error as exc:
        logger.error("Error uploading attachment %s: %s", file_name, exc)
        raise TransientInfraError("Attachment storage unavailable") from exc
    url = f"{MINIO_PUBLIC_URL}/{MINIO_BUCKET}/{object_name}"
    return build_attachment(url, file_name, mime_type, len(data))
