"""S3 provider query."""

from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from stackshift.providers.base import ProviderQuery
from stackshift.providers.ec2 import tags_to_dict
from stackshift.utils.aws_client import AWSClientManager
from stackshift.utils.errors import ErrorContext, error_handler


class S3BucketQuery(ProviderQuery):
    """aws_s3_bucket via s3:HeadBucket, GetBucketLocation and GetBucketTagging."""

    def __init__(self, client_manager: AWSClientManager):
        self.client_manager = client_manager

    def describe(self, resource_type: str, provider_id: str) -> Optional[Dict[str, Any]]:
        s3 = self.client_manager.get_client("s3")
        context = ErrorContext(operation="head_bucket", resource_key=f"{resource_type}:{provider_id}")

        try:
            s3.head_bucket(Bucket=provider_id)
            location = s3.get_bucket_location(Bucket=provider_id).get("LocationConstraint")
        except ClientError as e:
            if error_handler.is_not_found(e):
                return None
            raise error_handler.handle_exception(e, context) from e

        try:
            tags = tags_to_dict(s3.get_bucket_tagging(Bucket=provider_id).get("TagSet"))
        except ClientError as e:
            if error_handler.error_code(e) != "NoSuchTagSet":
                raise error_handler.handle_exception(e, context) from e
            tags = {}

        return {
            "id": provider_id,
            "bucket": provider_id,
            # An empty LocationConstraint means us-east-1
            "region": location or "us-east-1",
            "tags": tags,
        }
