"""Tests for file state backends and the remove/import primitives."""

import json

import pytest

from stackshift.state.backend import FileStateBackend
from stackshift.state.models import DeploymentState, resource_type_of
from stackshift.state.mutation import BackendStateMutation
from stackshift.utils.errors import ConflictError, StateError, StateLockError, TransientBackendError

from conftest import INSTANCE_ID, make_instance


@pytest.fixture
def backend(tmp_path):
    return FileStateBackend("app", "dev", str(tmp_path / "state" / "app" / "dev.json"))


class TestModels:
    @pytest.mark.parametrize("address,expected", [
        ("aws_instance.web", "aws_instance"),
        ("aws_instance.web[0]", "aws_instance"),
        ('module.net["a"].aws_security_group.web', "aws_security_group"),
    ])
    def test_resource_type_of(self, address, expected):
        assert resource_type_of(address) == expected

    @pytest.mark.parametrize("address", ["web", "module.net", "1bad.name"])
    def test_resource_type_of_rejects(self, address):
        with pytest.raises(ValueError):
            resource_type_of(address)

    def test_removing_last_resource_drops_component(self):
        state = DeploymentState(stack_id="app", deployment_id="dev")
        state.add_resource("web", make_instance())

        removed = state.remove_resource("web", "aws_instance.test")

        assert removed.provider_id == INSTANCE_ID
        assert state.components == {}

    def test_find_by_key(self):
        state = DeploymentState(stack_id="app", deployment_id="dev")
        state.add_resource("web", make_instance())

        component, resource = state.find_by_key(f"aws_instance:{INSTANCE_ID}")

        assert component == "web"
        assert resource.address == "aws_instance.test"


class TestFileStateBackend:
    def test_missing_file_reads_as_empty(self, backend):
        state = backend.read()

        assert state.serial == 0
        assert state.components == {}
        assert not backend.exists()

    def test_write_requires_lock(self, backend):
        with pytest.raises(StateError, match="without holding its lock"):
            backend.write(backend.read())

    def test_write_bumps_serial_and_keeps_lineage(self, backend):
        with backend.locked(timeout=1):
            first = backend.write(backend.read())
            second = backend.write(backend.read())

        assert (first.serial, second.serial) == (1, 2)
        assert first.lineage == second.lineage == backend.read().lineage

    def test_round_trip(self, backend):
        with backend.locked(timeout=1):
            state = backend.read()
            state.add_resource("web", make_instance(dependencies=["aws_security_group.web"]))
            backend.write(state)

        resource = backend.read().get_resource("web", "aws_instance.test")

        assert resource.dependencies == ["aws_security_group.web"]
        assert not backend.state_path.with_suffix(".tmp").exists()

    def test_corrupt_file(self, backend):
        backend.state_path.parent.mkdir(parents=True)
        backend.state_path.write_text("{")

        with pytest.raises(StateError, match="Failed to parse"):
            backend.read()

    def test_document_of_another_deployment(self, backend):
        backend.state_path.parent.mkdir(parents=True)
        other = DeploymentState(stack_id="app", deployment_id="prod")
        backend.state_path.write_text(json.dumps(other.to_dict()))

        with pytest.raises(StateError, match="belongs to app:prod"):
            backend.read()

    def test_lock_is_exclusive(self, backend):
        other = FileStateBackend("app", "dev", str(backend.state_path))
        backend.lock(timeout=1)
        try:
            with pytest.raises(StateLockError):
                other.lock(timeout=0.05)
        finally:
            backend.unlock()

        other.lock(timeout=0.1)
        assert other.is_locked
        other.unlock()

    def test_lock_errors_are_transient(self):
        assert issubclass(StateLockError, TransientBackendError)

    def test_locked_releases_on_error(self, backend):
        with pytest.raises(RuntimeError):
            with backend.locked(timeout=1):
                raise RuntimeError("boom")
        assert not backend.is_locked


class TestBackendStateMutation:
    def test_remove_and_import(self, backend, tmp_path):
        mutation = BackendStateMutation()
        target = FileStateBackend("app", "prod", str(tmp_path / "state" / "app" / "prod.json"))

        with backend.locked(timeout=1), target.locked(timeout=1):
            mutation.import_resource(backend, "web", make_instance())
            removed = mutation.remove(backend, "web", "aws_instance.test")
            removed.address = "aws_instance.promoted"
            imported = mutation.import_resource(target, "web", removed)

        assert not backend.read().has_resource("web", "aws_instance.test")
        assert target.read().get_resource("web", "aws_instance.promoted").provider_id == INSTANCE_ID
        assert "imported_at" in imported.metadata

    def test_remove_is_idempotent(self, backend):
        mutation = BackendStateMutation()
        with backend.locked(timeout=1):
            assert mutation.remove(backend, "web", "aws_instance.test") is None
        assert not backend.exists()

    def test_import_is_idempotent(self, backend):
        mutation = BackendStateMutation()
        with backend.locked(timeout=1):
            first = mutation.import_resource(backend, "web", make_instance())
            second = mutation.import_resource(backend, "web", make_instance())

        assert first == second
        assert backend.read().serial == 1

    def test_import_onto_a_different_resource(self, backend):
        mutation = BackendStateMutation()
        with backend.locked(timeout=1):
            mutation.import_resource(backend, "web", make_instance())
            with pytest.raises(ConflictError):
                mutation.import_resource(backend, "web", make_instance(provider_id="i-0999"))
