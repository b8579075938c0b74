"""
Create the DynamoDB tables, the S3 bucket and the Rekognition collection.

Usage (LocalStack):
    AWS_ENDPOINT_URL=http://localhost:4566 python setup_aws.py
"""
import logging

from botocore.exceptions import ClientError

import config
from aws_clients import get_client
from dynamodb_manager import DynamoDBManager
from face_service import RekognitionFaceService

logger = logging.getLogger("setup_aws")


def ensure_bucket(s3=None) -> bool:
    s3 = s3 or get_client("s3")
    try:
        s3.head_bucket(Bucket=config.S3_BUCKET)
        logger.info("Bucket %s already exists", config.S3_BUCKET)
        return False
    except ClientError as e:
        if e.response["Error"]["Code"] not in ("404", "NoSuchBucket", "NotFound"):
            raise

    kwargs = {"Bucket": config.S3_BUCKET}
    # us-east-1 rejects an explicit LocationConstraint
    if config.AWS_REGION != "us-east-1":
        kwargs["CreateBucketConfiguration"] = {"LocationConstraint": config.AWS_REGION}
    s3.create_bucket(**kwargs)
    logger.info("Created bucket %s", config.S3_BUCKET)
    return True


def main():
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(message)s")
    created = DynamoDBManager().setup_tables()
    logger.info("Tables created: %s", ", ".join(created) or "none")
    ensure_bucket()
    RekognitionFaceService().ensure_collection()


if __name__ == "__main__":
    main()
