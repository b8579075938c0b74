import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

import config
from aws_clients import get_client
from exceptions import FaceNotDetectedError

logger = logging.getLogger(__name__)

FACE_NOT_RECOGNIZED = (
    "Face not recognized. Please ensure your face is clearly visible "
    "and matches your registered photo."
)
FACE_MISMATCH = "Face does not match registered photo"
FACE_VERIFICATION_FAILED = "Face verification failed. Please try again."


@dataclass
class FaceVerification:
    verified: bool
    confidence: float = 0.0
    message: str = ""


class RekognitionFaceService:
    """Face indexing and matching against an AWS Rekognition collection"""

    def __init__(self, client=None, collection_id: Optional[str] = None,
                 threshold: Optional[float] = None):
        self.client = client or get_client("rekognition")
        self.collection_id = collection_id or config.FACE_COLLECTION_ID
        self.threshold = config.FACE_MATCH_THRESHOLD if threshold is None else threshold

    def ensure_collection(self) -> bool:
        """Create the collection if it does not exist yet. Returns True when created."""
        collections = []
        paginator = self.client.get_paginator("list_collections")
        for page in paginator.paginate():
            collections.extend(page.get("CollectionIds", []))

        if self.collection_id in collections:
            return False

        self.client.create_collection(CollectionId=self.collection_id)
        logger.info("Created Rekognition collection %s", self.collection_id)
        return True

    def index_face(self, image_bytes: bytes, external_id: str) -> str:
        """Index the single most prominent face under external_id and return its FaceId"""
        response = self.client.index_faces(
            CollectionId=self.collection_id,
            Image={"Bytes": image_bytes},
            ExternalImageId=external_id,
            MaxFaces=1,
            QualityFilter="AUTO",
            DetectionAttributes=["DEFAULT"],
        )
        records = response.get("FaceRecords") or []
        if not records:
            raise FaceNotDetectedError("No face detected in image")
        return records[0]["Face"]["FaceId"]

    def search_face(self, image_bytes: bytes) -> Optional[Dict[str, Any]]:
        """Best match above the threshold: {faceId, externalImageId, similarity} or None"""
        response = self.client.search_faces_by_image(
            CollectionId=self.collection_id,
            Image={"Bytes": image_bytes},
            MaxFaces=1,
            FaceMatchThreshold=self.threshold,
        )
        matches = response.get("FaceMatches") or []
        if not matches:
            return None

        best = matches[0]
        return {
            "faceId": best["Face"]["FaceId"],
            "externalImageId": best["Face"].get("ExternalImageId"),
            "similarity": float(best["Similarity"]),
        }

    def verify_student_face(self, image_bytes: bytes, student_id: str) -> FaceVerification:
        try:
            match = self.search_face(image_bytes)
        except (ClientError, BotoCoreError) as e:
            logger.error("[FACE] Rekognition search failed: %s", e)
            return FaceVerification(False, 0.0, FACE_VERIFICATION_FAILED)

        if match is None:
            return FaceVerification(False, 0.0, FACE_NOT_RECOGNIZED)

        if match["similarity"] < self.threshold or match["externalImageId"] != student_id:
            logger.info(
                "[FACE] Mismatch for %s: matched %s at %.2f",
                student_id, match["externalImageId"], match["similarity"],
            )
            return FaceVerification(False, match["similarity"], FACE_MISMATCH)

        return FaceVerification(True, match["similarity"], "Face verified")


class LocalFaceService:
    """Simulated face matching for development without Rekognition"""

    SIMULATED_CONFIDENCE = 95.50

    def ensure_collection(self) -> bool:
        return False

    def index_face(self, image_bytes: bytes, external_id: str) -> str:
        if not image_bytes:
            raise FaceNotDetectedError("No face detected in image")
        return f"local_face_{external_id}"

    def verify_student_face(self, image_bytes: bytes, student_id: str) -> FaceVerification:
        logger.info("[FACE] Local mode: accepting face for %s", student_id)
        return FaceVerification(True, self.SIMULATED_CONFIDENCE, "Face verified (local mode)")


def create_face_service():
    if config.FACE_PROVIDER == "rekognition":
        return RekognitionFaceService()
    return LocalFaceService()
