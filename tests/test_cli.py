"""Tests for the command line interface."""

import json
import logging

import pytest
from click.testing import CliRunner

from stackshift.cli.main import cli
from stackshift.config.parser import Config
from stackshift.orchestrator.coordinator import RefactorCoordinator
from stackshift.orchestrator.models import TransferPhase
from stackshift.state.mutation import BackendStateMutation
from stackshift.state.ownership import OwnershipRegistry

from conftest import INSTANCE_ID

SOURCE = "dev:web:aws_instance.test"
DESTINATION = "prod:web:aws_instance.promoted"
RESOURCE_KEY = f"aws_instance:{INSTANCE_ID}"


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fake_provider(monkeypatch, provider, retry):
    """Coordinators built by the CLI query the in-memory provider."""
    def build(config_path="stackshift.yaml", **kwargs):
        return RefactorCoordinator(
            Config(config_path).load(),
            query_factory=lambda stack_id, deployment: provider,
            retry_strategy=retry,
            **kwargs
        )

    monkeypatch.setattr(RefactorCoordinator, "from_config_file", staticmethod(build))


@pytest.fixture
def run(config_file, fake_provider):
    runner = CliRunner()

    def invoke(*args, **kwargs):
        return runner.invoke(
            cli, ["--config", str(config_file), "--log-level", "error", *args], obj={}, **kwargs
        )

    return invoke


class TestPlan:
    def test_plan_as_json(self, seeded, run):
        result = run("plan", SOURCE, DESTINATION, "--json")

        assert result.exit_code == 0, result.output
        summary = json.loads(result.output)
        assert summary["resource_key"] == RESOURCE_KEY
        assert summary["status"] == "pending"
        assert summary["scope"] == ["app:dev", "app:prod"]
        assert summary["drift"] == {"instance_type": ["t3.small", "t3.micro"]}

    def test_plan_panel(self, seeded, run):
        result = run("plan", SOURCE, DESTINATION)

        assert result.exit_code == 0, result.output
        assert "Transfer plan" in result.output
        assert "instance_type" in result.output

    def test_extra_scope(self, seeded, run):
        result = run("plan", SOURCE, DESTINATION, "--scope", "app:staging", "--json")

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["scope"] == ["app:dev", "app:prod", "app:staging"]

    def test_missing_source_fails(self, run):
        result = run("plan", SOURCE, DESTINATION)

        assert result.exit_code == 1
        assert "ERROR" in result.output

    def test_malformed_locator(self, run):
        result = run("plan", "dev", DESTINATION)
        assert result.exit_code == 1


class TestTransfer:
    def test_transfer_with_yes(self, seeded, run, dev_backend, prod_backend, tmp_path):
        result = run("transfer", SOURCE, DESTINATION, "--yes")

        assert result.exit_code == 0, result.output
        assert "Transfer Complete" in result.output
        assert not dev_backend.read().has_resource("web", "aws_instance.test")
        assert prod_backend.read().get_resource("web", "aws_instance.promoted").provider_id == INSTANCE_ID
        assert OwnershipRegistry(str(tmp_path / "ownership.json")).owner_of(RESOURCE_KEY) == "app:prod"

    def test_declined_confirmation_changes_nothing(self, seeded, run, dev_backend, prod_backend):
        result = run("transfer", SOURCE, DESTINATION, input="n\n")

        assert result.exit_code == 0, result.output
        assert "Transfer cancelled" in result.output
        assert dev_backend.read().has_resource("web", "aws_instance.test")
        assert not prod_backend.exists()

    def test_incompatible_destination(self, seeded, run, dev_backend):
        result = run("transfer", SOURCE, "prod:web:aws_instance.wrong_ami", "--yes")

        assert result.exit_code == 1
        assert "ami" in result.output
        assert dev_backend.read().has_resource("web", "aws_instance.test")


class TestShow:
    def test_show_table(self, seeded, run):
        result = run("show", "app:dev")

        assert result.exit_code == 0, result.output
        assert "aws_instance.test" in result.output
        assert "app:dev" in result.output

    def test_show_json(self, seeded, run):
        result = run("show", "app:dev", "--format", "json")

        assert result.exit_code == 0, result.output
        state = json.loads(result.output)
        assert state["stack_id"] == "app"
        assert state["components"]["web"]["resources"]["aws_instance.test"]["provider_id"] == INSTANCE_ID

    def test_show_empty_deployment(self, run):
        result = run("show", "app:staging")

        assert result.exit_code == 0, result.output
        assert "manages no resources" in result.output

    def test_show_unknown_deployment(self, run):
        result = run("show", "app:qa")
        assert result.exit_code == 1


class TestOwner:
    def test_claim_and_show(self, run):
        assert run("owner", "claim", RESOURCE_KEY, "app:dev").exit_code == 0

        result = run("owner", "show", RESOURCE_KEY)

        assert result.exit_code == 0, result.output
        assert "app:dev" in result.output

    def test_second_claim_fails(self, run):
        run("owner", "claim", RESOURCE_KEY, "app:dev")

        result = run("owner", "claim", RESOURCE_KEY, "app:prod")

        assert result.exit_code == 1
        assert "already owned" in result.output

    def test_transfer(self, run, tmp_path):
        run("owner", "claim", RESOURCE_KEY, "app:dev")

        result = run("owner", "transfer", RESOURCE_KEY, "app:dev", "app:prod")

        assert result.exit_code == 0, result.output
        assert OwnershipRegistry(str(tmp_path / "ownership.json")).owner_of(RESOURCE_KEY) == "app:prod"

    def test_show_without_records(self, run):
        result = run("owner", "show")

        assert result.exit_code == 0, result.output
        assert "No ownership recorded" in result.output

    def test_every_owner_command_closes_the_coordinator(self, run, monkeypatch):
        closed = []
        monkeypatch.setattr(RefactorCoordinator, "close", lambda self: closed.append(self))

        run("owner", "claim", RESOURCE_KEY, "app:dev")
        run("owner", "claim", RESOURCE_KEY, "app:prod")
        run("owner", "transfer", RESOURCE_KEY, "app:dev", "app:prod")
        run("owner", "show")
        run("owner", "show", RESOURCE_KEY)

        assert len(closed) == 5


class TestResume:
    def interrupt(self, coordinator, dev_backend, phases):
        """Leave a started plan behind as a crashed process would."""
        plan = coordinator.plan(SOURCE, DESTINATION)
        for phase in phases:
            plan.advance(phase)
        with dev_backend.locked(timeout=1):
            BackendStateMutation().remove(dev_backend, "web", "aws_instance.test")
        coordinator.planner.record(plan)
        return plan

    def test_resume_rolls_back_interrupted_remove(self, seeded, run, dev_backend, prod_backend, tmp_path):
        plan = self.interrupt(seeded, dev_backend, [TransferPhase.REMOVING])

        result = run("resume", plan.plan_id)

        assert result.exit_code == 0, result.output
        assert "Transfer Rolled Back" in result.output
        assert dev_backend.read().get_resource("web", "aws_instance.test").provider_id == INSTANCE_ID
        assert not prod_backend.read().has_resource("web", "aws_instance.promoted")
        assert list((tmp_path / "plans").iterdir()) == []

    def test_resume_finishes_committed_remove(self, seeded, run, dev_backend, prod_backend, tmp_path):
        plan = self.interrupt(seeded, dev_backend, [TransferPhase.REMOVING, TransferPhase.REMOVED])

        result = run("resume", plan.plan_id)

        assert result.exit_code == 0, result.output
        assert "Transfer Complete" in result.output
        assert prod_backend.read().get_resource("web", "aws_instance.promoted").provider_id == INSTANCE_ID
        assert OwnershipRegistry(str(tmp_path / "ownership.json")).owner_of(RESOURCE_KEY) == "app:prod"

    def test_resume_unknown_plan(self, run):
        result = run("resume", "0123456789ab")

        assert result.exit_code == 1
        assert "No plan" in result.output


class TestConfigErrors:
    def test_missing_config(self, tmp_path):
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "absent.yaml"), "show", "app:dev"], obj={})

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "stackshift.yaml"
        path.write_text("stacks: {}\n")

        result = CliRunner().invoke(cli, ["--config", str(path), "show", "app:dev"], obj={})

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output
