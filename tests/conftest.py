"""Shared fixtures: a two-deployment stack on local file backends and a fake provider."""

import os
from typing import Any, Dict, List, Optional

import pytest
import yaml

from stackshift.config.parser import Config
from stackshift.orchestrator.coordinator import RefactorCoordinator
from stackshift.providers.base import ProviderQuery
from stackshift.state.backend import StateBackend
from stackshift.state.models import ResourceInstance
from stackshift.utils.retry import RetryStrategy

INSTANCE_ID = "i-0123456789abcdef0"
AMI = "ami-0abc1234"
SUBNET = "subnet-0aa11"

INSTANCE_ATTRIBUTES = {
    "id": INSTANCE_ID,
    "ami": AMI,
    "instance_type": "t3.micro",
    "subnet_id": SUBNET,
    "availability_zone": "us-east-1a",
    "key_name": None,
    "vpc_security_group_ids": [],
    "tags": {"Name": "web"},
}

CONFIG = {
    "project": {"name": "web-app", "region": "us-east-1"},
    "settings": {
        "state_dir": "state",
        "ownership_file": "ownership.json",
        "plans_dir": "plans",
        "lock_timeout": 0.5,
        "io_timeout": None,
        "default_stack": "app",
        "retry": {"max_retries": 2, "base_delay": 0.01, "max_delay": 0.05, "jitter": False},
    },
    "stacks": {
        "app": {
            "deployments": {
                "dev": {
                    "region": "us-east-1",
                    "components": {
                        "web": {
                            "aws_instance.test": {"ami": AMI, "instance_type": "t3.micro"},
                        },
                    },
                },
                "prod": {
                    "region": "us-east-1",
                    "account": "123456789012",
                    "components": {
                        "web": {
                            "aws_instance.promoted": {
                                "ami": AMI,
                                "instance_type": "t3.small",
                                "subnet_id": SUBNET,
                            },
                            "aws_instance.wrong_ami": {"ami": "ami-0fff9999", "instance_type": "t3.micro"},
                            "aws_s3_bucket.assets": {"bucket": "web-assets"},
                        },
                    },
                },
                "staging": {},
            },
        },
    },
}


class FakeProviderQuery(ProviderQuery):
    """In-memory provider: provider_id -> attributes."""

    def __init__(self, resources: Optional[Dict[str, Dict[str, Any]]] = None):
        self.resources = dict(resources or {})
        self.calls: List[str] = []
        self.failures: List[Exception] = []

    def describe(self, resource_type: str, provider_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(provider_id)
        if self.failures:
            raise self.failures.pop(0)
        attributes = self.resources.get(provider_id)
        return dict(attributes) if attributes is not None else None


def make_instance(address: str = "aws_instance.test", provider_id: str = INSTANCE_ID, **kwargs) -> ResourceInstance:
    return ResourceInstance(
        address=address,
        type=address.split(".")[0],
        provider_id=provider_id,
        attributes=dict(INSTANCE_ATTRIBUTES, id=provider_id),
        **kwargs
    )


def seed(backend: StateBackend, component: str, resource: ResourceInstance) -> None:
    with backend.locked(timeout=1):
        state = backend.read()
        state.add_resource(component, resource)
        backend.write(state)


@pytest.fixture
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "stackshift.yaml"
    path.write_text(yaml.safe_dump(CONFIG))
    return path


@pytest.fixture
def config(config_file):
    return Config(str(config_file)).load()


@pytest.fixture
def provider():
    return FakeProviderQuery({INSTANCE_ID: INSTANCE_ATTRIBUTES})


@pytest.fixture
def retry():
    return RetryStrategy(max_retries=2, base_delay=0.01, jitter=False, sleep=lambda delay: None)


@pytest.fixture
def coordinator(config, provider, retry):
    coordinator = RefactorCoordinator(
        config,
        query_factory=lambda stack_id, deployment: provider,
        retry_strategy=retry,
    )
    yield coordinator
    coordinator.close()


@pytest.fixture
def dev_backend(coordinator):
    return coordinator.locator.backend_for_key("app:dev")


@pytest.fixture
def prod_backend(coordinator):
    return coordinator.locator.backend_for_key("app:prod")


@pytest.fixture
def seeded(coordinator, dev_backend):
    """dev:web:aws_instance.test manages the instance and dev owns it."""
    seed(dev_backend, "web", make_instance())
    coordinator.ownership.claim(f"aws_instance:{INSTANCE_ID}", "app:dev")
    return coordinator
