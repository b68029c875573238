"""Pydantic models for configuration schema."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from stackshift.state.models import resource_type_of

NAME_PATTERN = "^[a-z][a-z0-9_-]*$"
REGION_PATTERN = "^[a-z]{2}(-gov)?-[a-z]+-[0-9]$"


class RetryConfig(BaseModel):
    """Backoff for transient backend and provider failures."""

    max_retries: int = Field(3, ge=0, le=10)
    base_delay: float = Field(0.5, gt=0)
    max_delay: float = Field(10.0, gt=0)
    exponential_base: float = Field(2.0, ge=1.0)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay cannot exceed max_delay")
        return self


class SettingsConfig(BaseModel):
    """Coordinator-wide settings."""

    state_dir: str = Field(".stackshift/state", min_length=1)
    ownership_file: Optional[str] = ".stackshift/ownership.json"
    plans_dir: Optional[str] = Field(".stackshift/plans", description="Where started transfer plans are checkpointed")
    lock_timeout: float = Field(30.0, gt=0, description="Seconds to wait for a state lock")
    io_timeout: Optional[float] = Field(
        20.0, gt=0, description="Seconds a single backend/provider call may take"
    )
    default_stack: Optional[str] = None
    retry: RetryConfig = Field(default_factory=RetryConfig)


class ProjectConfig(BaseModel):
    """Project-level configuration."""

    name: str = Field(..., min_length=1, max_length=64, pattern="^[a-z0-9-]+$")
    region: str = Field("us-east-1", pattern=REGION_PATTERN)


class DeploymentConfig(BaseModel):
    """One independently-stateful environment (dev, prod, ...)."""

    name: str = Field(..., min_length=1, max_length=64, pattern=NAME_PATTERN)
    account: Optional[str] = Field(None, pattern="^[0-9]{12}$")
    region: Optional[str] = Field(None, pattern=REGION_PATTERN)
    profile: Optional[str] = None
    role_arn: Optional[str] = Field(None, pattern=r"^arn:aws[a-z-]*:iam::[0-9]{12}:role/.+$")
    state_path: Optional[str] = None
    components: Dict[str, Dict[str, Dict[str, Any]]] = Field(
        default_factory=dict,
        description="component -> resource address -> declared attributes",
    )

    @field_validator("components")
    @classmethod
    def validate_components(
        cls, v: Dict[str, Dict[str, Dict[str, Any]]]
    ) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Validate component names and resource addresses."""
        for component, resources in v.items():
            if not component or ":" in component or "." in component:
                raise ValueError(f"Invalid component name: {component!r}")
            for address, declared in (resources or {}).items():
                resource_type_of(address)
                if not isinstance(declared, dict):
                    raise ValueError(
                        f"Declaration for {component}/{address} must be a mapping"
                    )
        return {name: resources or {} for name, resources in v.items()}

    def declaration(self, component: str, address: str) -> Optional[Dict[str, Any]]:
        """Declared attributes for a resource, if the component declares it."""
        return self.components.get(component, {}).get(address)


class StackConfig(BaseModel):
    """A stack and its deployments."""

    name: str = Field(..., min_length=1, max_length=64, pattern=NAME_PATTERN)
    deployments: Dict[str, DeploymentConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_deployments(self):
        if not self.deployments:
            raise ValueError(f"Stack '{self.name}' must define at least one deployment")
        return self
