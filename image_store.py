import logging
import os

import config
from aws_clients import get_client

logger = logging.getLogger(__name__)


def face_image_key(student_id: str) -> str:
    return f"faces/{student_id}.jpg"


class S3ImageStore:
    def __init__(self, client=None, bucket=None):
        self.client = client or get_client("s3")
        self.bucket = bucket or config.S3_BUCKET

    def save_face_image(self, student_id: str, image_bytes: bytes) -> str:
        key = face_image_key(student_id)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=image_bytes,
            ContentType="image/jpeg",
        )
        logger.info("Stored face image s3://%s/%s", self.bucket, key)
        return key


class LocalImageStore:
    """Face images on local disk under UPLOAD_DIR"""

    def __init__(self, base_dir=None):
        self.base_dir = base_dir or config.UPLOAD_DIR
        os.makedirs(os.path.join(self.base_dir, "faces"), exist_ok=True)

    def save_face_image(self, student_id: str, image_bytes: bytes) -> str:
        key = face_image_key(student_id)
        with open(os.path.join(self.base_dir, key), "wb") as f:
            f.write(image_bytes)
        return key


def create_image_store():
    if config.STORAGE_TYPE == "s3":
        return S3ImageStore()
    return LocalImageStore()
