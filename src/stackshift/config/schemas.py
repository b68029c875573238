"""Typed declarations per resource kind, checked against provider attributes at plan time."""

from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stackshift.utils.errors import ConfigurationError, ErrorContext


class ResourceSchema(BaseModel):
    """Base for declared resource configuration.

    ``immutable_fields`` are attributes the provider cannot change in place;
    a mismatch there means the declaration describes a different resource.
    """

    model_config = ConfigDict(extra="forbid")

    immutable_fields: ClassVar[Tuple[str, ...]] = ()

    tags: Dict[str, str] = Field(default_factory=dict)


class AwsInstanceConfig(ResourceSchema):
    """aws_instance"""

    immutable_fields: ClassVar[Tuple[str, ...]] = (
        "ami",
        "subnet_id",
        "availability_zone",
        "key_name",
    )

    ami: str = Field(..., pattern=r"^ami-[0-9a-f]+$")
    instance_type: str = Field(..., min_length=1)
    subnet_id: Optional[str] = Field(None, pattern=r"^subnet-[0-9a-f]+$")
    availability_zone: Optional[str] = None
    key_name: Optional[str] = None
    vpc_security_group_ids: Optional[List[str]] = None


class AwsSecurityGroupConfig(ResourceSchema):
    """aws_security_group"""

    immutable_fields: ClassVar[Tuple[str, ...]] = ("name", "description", "vpc_id")

    name: str = Field(..., min_length=1, max_length=255)
    description: str = "Managed by Terraform"
    vpc_id: Optional[str] = Field(None, pattern=r"^vpc-[0-9a-f]+$")


class AwsS3BucketConfig(ResourceSchema):
    """aws_s3_bucket"""

    immutable_fields: ClassVar[Tuple[str, ...]] = ("bucket", "region")

    bucket: str = Field(..., min_length=3, max_length=63, pattern=r"^[a-z0-9][a-z0-9.-]+[a-z0-9]$")
    region: Optional[str] = None


RESOURCE_SCHEMAS: Dict[str, Type[ResourceSchema]] = {
    "aws_instance": AwsInstanceConfig,
    "aws_security_group": AwsSecurityGroupConfig,
    "aws_s3_bucket": AwsS3BucketConfig,
}


def validate_declaration(
    resource_type: str,
    declared: Dict[str, Any],
    context: Optional[ErrorContext] = None
) -> ResourceSchema:
    """Parse a raw declaration into its typed schema.

    Raises:
        ConfigurationError: If the type has no schema or the declaration is invalid
    """
    schema = RESOURCE_SCHEMAS.get(resource_type)
    if schema is None:
        raise ConfigurationError(
            f"No declaration schema for resource type '{resource_type}'",
            context=context,
            suggestions=[f"Supported types: {', '.join(sorted(RESOURCE_SCHEMAS))}"],
        )

    try:
        return schema(**declared)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid {resource_type} declaration: {'; '.join(problems)}",
            context=context,
            cause=e,
        )


def compare_attributes(
    declaration: ResourceSchema,
    actual: Dict[str, Any]
) -> Tuple[Dict[str, Tuple[Any, Any]], Dict[str, Tuple[Any, Any]]]:
    """Compare explicitly declared fields with provider-reported attributes.

    Returns:
        (mismatches, drift): immutable fields that differ, and mutable fields
        that differ. Each maps field -> (declared, actual).
    """
    mismatches: Dict[str, Tuple[Any, Any]] = {}
    drift: Dict[str, Tuple[Any, Any]] = {}

    for field in sorted(declaration.model_fields_set):
        declared_value = getattr(declaration, field)
        actual_value = actual.get(field)
        if isinstance(declared_value, list) and isinstance(actual_value, list):
            equal = sorted(declared_value) == sorted(actual_value)
        else:
            equal = declared_value == actual_value
        if equal:
            continue

        if field in declaration.immutable_fields:
            mismatches[field] = (declared_value, actual_value)
        else:
            drift[field] = (declared_value, actual_value)

    return mismatches, drift
