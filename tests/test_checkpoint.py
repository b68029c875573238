"""Tests for plan checkpoints."""

import json

import pytest

from stackshift.orchestrator.checkpoint import PlanCheckpointStore
from stackshift.orchestrator.models import ResourceLocator, TransferPhase, TransferPlan
from stackshift.utils.errors import StateError

from conftest import INSTANCE_ID, make_instance


def make_plan(**kwargs) -> TransferPlan:
    plan = TransferPlan(
        source=ResourceLocator.parse("app:dev:web:aws_instance.test"),
        destination=ResourceLocator.parse("app:prod:web:aws_instance.promoted"),
        resource_type="aws_instance",
        provider_id=INSTANCE_ID,
        snapshot=make_instance(),
        scope=["app:dev", "app:prod"],
        drift={"instance_type": ("t3.small", "t3.micro")},
        **kwargs
    )
    plan.advance(TransferPhase.REMOVING)
    return plan


@pytest.fixture
def store(tmp_path):
    return PlanCheckpointStore(str(tmp_path / "plans"))


class TestPlanCheckpointStore:
    def test_saved_plan_loads_back(self, store):
        plan = make_plan()
        plan.source_touched = True

        store.save(plan)
        loaded = store.load(plan.plan_id)

        assert loaded.plan_id == plan.plan_id
        assert loaded.phase == TransferPhase.REMOVING
        assert loaded.source == plan.source
        assert loaded.snapshot == plan.snapshot
        assert loaded.drift == {"instance_type": ("t3.small", "t3.micro")}
        assert loaded.source_touched
        assert [step.to_phase for step in loaded.history] == [TransferPhase.REMOVING]

    def test_save_replaces_earlier_checkpoint(self, store):
        plan = make_plan()
        store.save(plan)
        plan.advance(TransferPhase.REMOVED)

        store.save(plan)

        assert store.load(plan.plan_id).phase == TransferPhase.REMOVED
        assert len(store.list_plans()) == 1

    def test_missing_plan(self, store):
        assert store.load("absent") is None
        assert store.list_plans() == []

    def test_clear(self, store):
        plan = make_plan()
        store.save(plan)

        store.clear(plan.plan_id)
        store.clear(plan.plan_id)

        assert store.load(plan.plan_id) is None

    def test_file_is_plain_json(self, store, tmp_path):
        plan = make_plan()
        store.save(plan)

        path = tmp_path / "plans" / f"{plan.plan_id}.plan.json"
        data = json.loads(path.read_text())

        assert data["phase"] == "removing"
        assert data["source"]["deployment_id"] == "dev"
        assert not path.with_suffix(".tmp").exists()

    def test_corrupt_checkpoint(self, store, tmp_path):
        (tmp_path / "plans").mkdir()
        (tmp_path / "plans" / "broken.plan.json").write_text("{not json")

        with pytest.raises(StateError, match="broken"):
            store.list_plans()

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = PlanCheckpointStore(str(blocker / "plans"))

        with pytest.raises(StateError, match="Failed to checkpoint"):
            store.save(make_plan())
