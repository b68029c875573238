"""Configuration management for stackshift."""

from .models import (
    DeploymentConfig,
    ProjectConfig,
    RetryConfig,
    SettingsConfig,
    StackConfig,
)
from .parser import Config, ConfigValidationError
from .schemas import (
    RESOURCE_SCHEMAS,
    AwsInstanceConfig,
    AwsS3BucketConfig,
    AwsSecurityGroupConfig,
    ResourceSchema,
    compare_attributes,
    validate_declaration,
)

__all__ = [
    "DeploymentConfig",
    "ProjectConfig",
    "RetryConfig",
    "SettingsConfig",
    "StackConfig",
    "Config",
    "ConfigValidationError",
    "RESOURCE_SCHEMAS",
    "ResourceSchema",
    "AwsInstanceConfig",
    "AwsSecurityGroupConfig",
    "AwsS3BucketConfig",
    "compare_attributes",
    "validate_declaration",
]
