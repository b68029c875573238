"""Read-only provider queries used for existence and compatibility checks."""

from stackshift.providers.base import CompositeProviderQuery, ProviderQuery
from stackshift.providers.ec2 import EC2InstanceQuery, SecurityGroupQuery
from stackshift.providers.s3 import S3BucketQuery
from stackshift.utils.aws_client import AWSClientManager


def aws_provider_query(client_manager: AWSClientManager) -> CompositeProviderQuery:
    """Query covering every resource type with a declaration schema."""
    return CompositeProviderQuery({
        "aws_instance": EC2InstanceQuery(client_manager),
        "aws_security_group": SecurityGroupQuery(client_manager),
        "aws_s3_bucket": S3BucketQuery(client_manager),
    })


__all__ = [
    "ProviderQuery",
    "CompositeProviderQuery",
    "EC2InstanceQuery",
    "SecurityGroupQuery",
    "S3BucketQuery",
    "aws_provider_query",
]
