"""YAML configuration parser for stackshift."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from .models import (
    DeploymentConfig,
    ProjectConfig,
    SettingsConfig,
    StackConfig,
)


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  • {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Configuration for stacks, deployments and coordinator settings."""

    def __init__(self, config_path: str = "stackshift.yaml"):
        """Initialize configuration manager.

        Args:
            config_path: Path to stackshift.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.project: Optional[ProjectConfig] = None
        self.settings: SettingsConfig = SettingsConfig()
        self.stacks: Dict[str, StackConfig] = {}

    def load(self) -> "Config":
        """Load and validate configuration from YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        return self.load_data(data)

    def load_data(self, data: Dict[str, Any]) -> "Config":
        """Validate and parse an already-decoded configuration mapping.

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        if not isinstance(data, dict):
            raise ConfigValidationError("Configuration must be a mapping")
        self.data = data

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        self.project = ProjectConfig(**self.data["project"])
        self.settings = SettingsConfig(**(self.data.get("settings") or {}))
        self.stacks = {
            name: self._build_stack(name, stack_data)
            for name, stack_data in self.data["stacks"].items()
        }
        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if "project" not in self.data:
            errors.append({"loc": ["project"], "msg": "Required field 'project' is missing"})
        else:
            errors.extend(self._collect(["project"], ProjectConfig, self.data["project"]))

        if "settings" in self.data:
            errors.extend(self._collect(["settings"], SettingsConfig, self.data["settings"] or {}))

        stacks = self.data.get("stacks")
        if stacks is None:
            errors.append({"loc": ["stacks"], "msg": "Required field 'stacks' is missing"})
        elif not isinstance(stacks, dict) or not stacks:
            errors.append({"loc": ["stacks"], "msg": "At least one stack must be defined"})
        else:
            for stack_name, stack_data in stacks.items():
                try:
                    self._build_stack(stack_name, stack_data)
                except ValidationError as e:
                    for error in e.errors():
                        errors.append(
                            {
                                "loc": ["stacks", stack_name] + list(error["loc"]),
                                "msg": error["msg"],
                            }
                        )
                except (TypeError, AttributeError):
                    errors.append(
                        {"loc": ["stacks", stack_name], "msg": "Stack must be a mapping"}
                    )

            default_stack = (self.data.get("settings") or {}).get("default_stack")
            if default_stack and default_stack not in stacks:
                errors.append(
                    {
                        "loc": ["settings", "default_stack"],
                        "msg": f"Unknown stack '{default_stack}'",
                    }
                )

        return errors

    @property
    def default_stack(self) -> Optional[str]:
        """Stack used for locators written without one."""
        if self.settings.default_stack:
            return self.settings.default_stack
        if len(self.stacks) == 1:
            return next(iter(self.stacks))
        return None

    def state_path_for(self, stack_name: str, deployment: DeploymentConfig) -> Path:
        """Path of a deployment's state document."""
        if deployment.state_path:
            path = Path(deployment.state_path)
        else:
            path = Path(self.settings.state_dir) / stack_name / f"{deployment.name}.json"

        if not path.is_absolute():
            path = self.config_path.parent / path
        return path

    def plans_path(self) -> Optional[Path]:
        if not self.settings.plans_dir:
            return None
        path = Path(self.settings.plans_dir)
        if not path.is_absolute():
            path = self.config_path.parent / path
        return path

    def ownership_path(self) -> Optional[Path]:
        if not self.settings.ownership_file:
            return None
        path = Path(self.settings.ownership_file)
        if not path.is_absolute():
            path = self.config_path.parent / path
        return path

    def _build_stack(self, stack_name: str, stack_data: Dict) -> StackConfig:
        deployments = {
            deployment_name: DeploymentConfig(name=deployment_name, **(deployment_data or {}))
            for deployment_name, deployment_data in (stack_data.get("deployments") or {}).items()
        }
        return StackConfig(name=stack_name, deployments=deployments)

    @staticmethod
    def _collect(loc: List, model, data) -> List[Dict]:
        try:
            model(**data)
        except ValidationError as e:
            return [
                {"loc": loc + list(error["loc"]), "msg": error["msg"]}
                for error in e.errors()
            ]
        except TypeError:
            return [{"loc": loc, "msg": "Must be a mapping"}]
        return []

    def to_dict(self) -> Dict:
        """Convert configuration to dictionary."""
        return {
            "project": self.project.model_dump() if self.project else {},
            "settings": self.settings.model_dump(),
            "stacks": {name: stack.model_dump() for name, stack in self.stacks.items()},
        }
