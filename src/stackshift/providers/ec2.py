"""EC2 provider queries: instances and security groups."""

from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from stackshift.providers.base import ProviderQuery
from stackshift.utils.aws_client import AWSClientManager
from stackshift.utils.errors import ErrorContext, error_handler
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)

# Instance states that no longer count as an existing resource
GONE_INSTANCE_STATES = {"shutting-down", "terminated"}


def tags_to_dict(tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in tags or []}


class EC2InstanceQuery(ProviderQuery):
    """aws_instance via ec2:DescribeInstances."""

    def __init__(self, client_manager: AWSClientManager):
        self.client_manager = client_manager

    def describe(self, resource_type: str, provider_id: str) -> Optional[Dict[str, Any]]:
        ec2 = self.client_manager.get_client("ec2")
        try:
            response = ec2.describe_instances(InstanceIds=[provider_id])
        except ClientError as e:
            if error_handler.is_not_found(e):
                logger.debug(f"Instance {provider_id} not found")
                return None
            raise error_handler.handle_exception(
                e, ErrorContext(operation="describe_instances", resource_key=f"{resource_type}:{provider_id}")
            ) from e

        instances = [
            instance
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]
        if not instances:
            return None

        instance = instances[0]
        if instance.get("State", {}).get("Name") in GONE_INSTANCE_STATES:
            logger.debug(f"Instance {provider_id} is {instance['State']['Name']}")
            return None

        return {
            "id": instance["InstanceId"],
            "ami": instance.get("ImageId"),
            "instance_type": instance.get("InstanceType"),
            "subnet_id": instance.get("SubnetId"),
            "availability_zone": instance.get("Placement", {}).get("AvailabilityZone"),
            "key_name": instance.get("KeyName"),
            "vpc_security_group_ids": [g["GroupId"] for g in instance.get("SecurityGroups", [])],
            "tags": tags_to_dict(instance.get("Tags")),
        }


class SecurityGroupQuery(ProviderQuery):
    """aws_security_group via ec2:DescribeSecurityGroups."""

    def __init__(self, client_manager: AWSClientManager):
        self.client_manager = client_manager

    def describe(self, resource_type: str, provider_id: str) -> Optional[Dict[str, Any]]:
        ec2 = self.client_manager.get_client("ec2")
        try:
            response = ec2.describe_security_groups(GroupIds=[provider_id])
        except ClientError as e:
            if error_handler.is_not_found(e):
                return None
            raise error_handler.handle_exception(
                e, ErrorContext(operation="describe_security_groups", resource_key=f"{resource_type}:{provider_id}")
            ) from e

        groups = response.get("SecurityGroups", [])
        if not groups:
            return None

        group = groups[0]
        return {
            "id": group["GroupId"],
            "name": group.get("GroupName"),
            "description": group.get("Description"),
            "vpc_id": group.get("VpcId"),
            "tags": tags_to_dict(group.get("Tags")),
        }
