"""Example: promote an instance built in dev so prod manages it."""

from stackshift.orchestrator import RefactorCoordinator
from stackshift.utils.errors import RefactorError, RollbackFailure, error_handler


def example_plan(coordinator: RefactorCoordinator):
    """Example: Validate a transfer without touching state."""
    print("=== Plan ===")

    try:
        plan = coordinator.plan("dev:web:aws_instance.test", "prod:web:aws_instance.promoted")
    except RefactorError as e:
        print(e.to_user_message())
        return None

    print(f"✓ Plan {plan.plan_id}")
    print(f"  Resource: {plan.resource_key}")
    print(f"  Locks: {', '.join(plan.scope)}")
    for field, (declared, actual) in plan.drift.items():
        print(f"  Drift: {field} declared {declared!r}, actual {actual!r}")
    for warning in plan.warnings:
        print(f"  ⚠ {warning}")
    return plan


def example_execute(coordinator: RefactorCoordinator, plan):
    """Example: Apply a plan, resuming if the rollback got stuck."""
    print("\n=== Execute ===")

    try:
        plan = coordinator.execute(plan)
        print(f"✓ {plan.resource_key} is now managed by {plan.destination}")
    except RollbackFailure as e:
        error_handler.log_error(e)
        print(f"Plan {plan.plan_id} is stuck in {plan.phase.value}; retrying the rollback")
        try:
            coordinator.resume(plan.plan_id)
        except RollbackFailure as again:
            print(again.to_user_message())
    except RefactorError as e:
        print(f"✗ Rolled back: {e.message}")


def example_ownership(coordinator: RefactorCoordinator):
    """Example: Inspect who owns what."""
    print("\n=== Ownership ===")

    for record in coordinator.ownership.records():
        readers = ", ".join(sorted(record.readers)) or "-"
        print(f"  {record.resource_key}: owner {record.owning_deployment}, readers {readers}")


if __name__ == "__main__":
    coordinator = RefactorCoordinator.from_config_file("examples/stackshift.yaml")
    try:
        plan = example_plan(coordinator)
        if plan is not None:
            example_execute(coordinator, plan)
        example_ownership(coordinator)
    finally:
        coordinator.close()
