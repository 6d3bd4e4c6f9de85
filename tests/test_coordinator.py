"""Tests for the execution lifecycle: failure policies, cancel, resume, concurrency."""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from helpers import finished_result, make_step, make_workflow, wait_until
from response_engine.errors import (
    ExecutionNotFoundError,
    ExecutionStateError,
    WorkflowNotFoundError,
)
from response_engine.models.execution import (
    EscalationRecord,
    Execution,
    ExecutionStatus,
    StepStatus,
)
from response_engine.services.actions import InMemoryActionRegistry
from response_engine.services.coordinator import ExecutionCoordinator, parse_guard
from response_engine.services.escalation import EscalationManager
from response_engine.services.registry import WorkflowRegistry
from response_engine.services.step_executor import StepExecutor


def _statuses(execution):
    return [(r.step_id, r.status.value) for r in execution.step_results]


class TestHappyPath:
    def test_all_steps_complete(self, harness):
        workflow = make_workflow(steps=[make_step("a"), make_step("b"), make_step("c")])
        execution = harness.run(workflow)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.current_step == 3
        assert _statuses(execution) == [("a", "completed"), ("b", "completed"), ("c", "completed")]
        assert harness.actions.calls == ["a", "b", "c"]
        assert execution.completed_at >= execution.started_at
        assert execution.metrics.steps_executed == 3
        assert execution.metrics.automation_percentage == 1.0
        assert execution.executed_by == "tester"

    def test_execution_is_persisted(self, harness):
        execution = harness.run(make_workflow())
        stored = harness.executions.get(execution.id)
        assert stored == execution
        assert harness.coordinator.list(incident_id="INC-1") == [stored]

    def test_round_trip_serialization(self, harness):
        execution = harness.run(
            make_workflow(steps=[make_step("a"), make_step("b", action="fail", on_failure="continue")])
        )
        restored = Execution.model_validate_json(execution.model_dump_json())
        assert restored == execution

    def test_unknown_workflow(self, harness):
        with pytest.raises(WorkflowNotFoundError):
            harness.coordinator.create("INC-1", "missing")

    def test_get_returns_independent_copy(self, harness):
        execution = harness.run(make_workflow())
        snapshot = harness.coordinator.get(execution.id)
        snapshot.step_results.clear()
        assert len(harness.coordinator.get(execution.id).step_results) == 1

    def test_get_unknown_execution(self, harness):
        with pytest.raises(ExecutionNotFoundError):
            harness.coordinator.get("exec_missing")


class TestFailurePolicies:
    def test_stop_aborts_remaining_steps(self, harness):
        workflow = make_workflow(
            steps=[make_step("a"), make_step("b", action="fail", on_failure="stop"), make_step("c")]
        )
        execution = harness.run(workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert _statuses(execution) == [("a", "completed"), ("b", "failed")]
        assert "c" not in harness.actions.calls
        assert execution.failed_step.step_id == "b"
        assert execution.failed_step.error == "boom"

    def test_continue_runs_remaining_steps_but_execution_fails(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="raise", on_failure="continue"), make_step("b")]
        )
        execution = harness.run(workflow)

        assert _statuses(execution) == [("a", "failed"), ("b", "completed")]
        assert execution.status == ExecutionStatus.FAILED
        assert execution.metrics.steps_failed == 1

    def test_escalate_notifies_and_continues(self, harness):
        workflow = make_workflow(
            steps=[
                make_step(
                    "a",
                    action="fail",
                    on_failure="escalate",
                    assigned_role="security_engineer",
                    parameters={"escalate_to": "soc_lead"},
                ),
                make_step("b"),
            ]
        )
        execution = harness.run(workflow, incident_id="INC-9")

        assert _statuses(execution) == [("a", "failed"), ("b", "completed")]
        assert execution.status == ExecutionStatus.FAILED
        assert len(harness.notifier.sent) == 1
        assert harness.notifier.sent[0]["target"] == "soc_lead"
        assert "INC-9" in harness.notifier.sent[0]["message"]
        record = execution.escalations[0]
        assert record.notified is True
        assert record.step_id == "a"
        assert record.target == "soc_lead"

    def test_escalate_with_abort_flag_stops(self, harness):
        workflow = make_workflow(
            steps=[
                make_step(
                    "a",
                    action="fail",
                    on_failure="escalate",
                    parameters={"abort_on_escalation": True},
                ),
                make_step("b"),
            ]
        )
        execution = harness.run(workflow)

        assert _statuses(execution) == [("a", "failed")]
        assert execution.status == ExecutionStatus.FAILED
        assert len(execution.escalations) == 1

    def test_undeliverable_escalation_is_recorded_and_run_goes_on(self, harness):
        notifier = AsyncMock()
        notifier.notify.return_value = False
        harness.coordinator._escalations = EscalationManager(notifier)
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="escalate"), make_step("b")]
        )
        execution = harness.run(workflow)

        assert _statuses(execution) == [("a", "failed"), ("b", "completed")]
        assert execution.escalations[0].notified is False
        assert execution.escalations[0].error

    def test_rollback_runs_procedure_in_reverse_then_aborts(self, harness):
        workflow = make_workflow(
            steps=[make_step("a"), make_step("b", action="fail", on_failure="rollback"), make_step("c")],
            rollback_procedure=["undo_a", "undo_b"],
        )
        execution = harness.run(workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert _statuses(execution) == [("a", "completed"), ("b", "failed")]
        assert [r.step_id for r in execution.rollback_results] == [
            "rollback:undo_b",
            "rollback:undo_a",
        ]
        assert all(r.status == StepStatus.COMPLETED for r in execution.rollback_results)
        assert harness.actions.calls == ["a", "b", "undo_b", "undo_a"]

    def test_timed_out_step_under_stop_fails_execution(self, harness):
        workflow = make_workflow(
            steps=[
                make_step("a", action="slow", parameters={"delay": 1.0}, timeout=0.1, on_failure="stop"),
                make_step("b"),
            ]
        )
        execution = harness.run(workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert _statuses(execution) == [("a", "failed")]
        assert execution.failed_step.error == "timeout"
        assert harness.actions.calls == ["a"]
        assert execution.current_step == 1

    def test_expired_approval_applies_failure_policy(self, harness):
        workflow = make_workflow(
            steps=[
                make_step("eradicate", requires_approval=True, timeout=0.1, on_failure="escalate"),
                make_step("b"),
            ]
        )
        execution = harness.run(workflow)

        assert _statuses(execution) == [("eradicate", "failed"), ("b", "completed")]
        assert execution.step_results[0].error == "approval timeout"
        assert execution.step_results[0].approved_by is None
        assert "eradicate" not in harness.actions.calls
        assert len(harness.notifier.sent) == 1
        assert execution.escalations[0].step_id == "eradicate"
        assert execution.status == ExecutionStatus.FAILED

    def test_expired_approval_under_stop_runs_nothing_more(self, harness):
        workflow = make_workflow(
            steps=[
                make_step("eradicate", requires_approval=True, timeout=0.1, on_failure="stop"),
                make_step("b"),
            ]
        )
        execution = harness.run(workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert _statuses(execution) == [("eradicate", "failed")]
        assert harness.actions.calls == []

    def test_failed_rollback_action_is_recorded(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="rollback")],
            rollback_procedure=["no_such_undo"],
        )
        execution = harness.run(workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.rollback_results[0].status == StepStatus.FAILED
        assert "Unknown action" in execution.rollback_results[0].error


class TestStepConditions:
    def test_guards_select_branch(self, harness):
        workflow = make_workflow(
            steps=[
                make_step("scan", action="fail", on_failure="continue"),
                make_step("on_failure", conditions=["scan.failed"]),
                make_step("on_success", conditions=["scan.completed"]),
            ]
        )
        execution = harness.run(workflow)

        assert _statuses(execution) == [
            ("scan", "failed"),
            ("on_failure", "completed"),
            ("on_success", "skipped"),
        ]
        assert execution.result_for("on_success").error == "conditions not met"
        assert "on_success" not in harness.actions.calls

    def test_guard_on_unknown_step_skips(self, harness):
        execution = harness.run(make_workflow(steps=[make_step("a", conditions=["ghost.completed"])]))
        assert _statuses(execution) == [("a", "skipped")]
        assert execution.status == ExecutionStatus.COMPLETED

    @pytest.mark.parametrize(
        "guard,expected",
        [
            ("isolate", ("isolate", StepStatus.COMPLETED)),
            ("isolate.failed", ("isolate", StepStatus.FAILED)),
            ("scan.host", ("scan.host", StepStatus.COMPLETED)),
            ("scan.host.skipped", ("scan.host", StepStatus.SKIPPED)),
        ],
    )
    def test_parse_guard(self, guard, expected):
        assert parse_guard(guard) == expected

    def test_bare_guard_on_dotted_step_id(self, harness):
        workflow = make_workflow(
            steps=[make_step("scan.host"), make_step("notify", conditions=["scan.host"])]
        )
        execution = harness.run(workflow)
        assert _statuses(execution) == [("scan.host", "completed"), ("notify", "completed")]


class TestCancel:
    def test_cancel_keeps_inflight_result_and_runs_nothing_more(self, harness):
        harness.registry.register(
            make_workflow(steps=[make_step("a", action="slow", parameters={"delay": 0.2}), make_step("b")])
        )

        async def scenario():
            execution = await harness.coordinator.start("INC-1", "wf_test")
            await wait_until(lambda: "a" in harness.actions.calls)
            cancelled = await harness.coordinator.cancel(execution.id, "false positive")
            assert cancelled.status == ExecutionStatus.CANCELLED
            return await harness.coordinator.wait(execution.id)

        final = asyncio.run(scenario())
        assert final.status == ExecutionStatus.CANCELLED
        assert final.cancel_reason == "false positive"
        assert final.cancelled_at is not None
        assert _statuses(final) == [("a", "completed")]
        assert "b" not in harness.actions.calls
        assert final.metrics.steps_executed == 1

    def test_cancel_terminal_execution_conflicts(self, harness):
        execution = harness.run(make_workflow())
        with pytest.raises(ExecutionStateError):
            asyncio.run(harness.coordinator.cancel(execution.id))

    def test_cancel_unknown_execution(self, harness):
        with pytest.raises(ExecutionNotFoundError):
            asyncio.run(harness.coordinator.cancel("exec_missing"))

    def test_cancel_idle_execution_releases_its_lock(self, harness):
        harness.registry.register(make_workflow())
        execution = harness.coordinator.create("INC-1", "wf_test")

        cancelled = asyncio.run(harness.coordinator.cancel(execution.id))

        assert cancelled.status == ExecutionStatus.CANCELLED
        assert harness.coordinator._locks == {}


class TestBookkeeping:
    def test_rejected_cancels_leave_no_locks_behind(self, harness):
        finished = harness.run(make_workflow())

        async def scenario():
            for i in range(50):
                with pytest.raises(ExecutionNotFoundError):
                    await harness.coordinator.cancel(f"exec_bogus_{i}")
            with pytest.raises(ExecutionStateError):
                await harness.coordinator.cancel(finished.id)

        asyncio.run(scenario())
        assert harness.coordinator._locks == {}

    def test_finished_runs_release_locks_and_escalation_records(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="escalate"), make_step("b")]
        )
        harness.registry.register(workflow)

        async def scenario():
            started = [await harness.coordinator.start(f"INC-{i}", "wf_test") for i in range(5)]
            return [await harness.coordinator.wait(e.id) for e in started]

        finals = asyncio.run(scenario())

        assert all(len(e.escalations) == 1 for e in finals)
        assert harness.coordinator._locks == {}
        assert harness.coordinator._escalations.records() == []

    def test_decision_for_finished_execution_is_rejected(self, harness):
        execution = harness.run(make_workflow(steps=[make_step("eradicate")]))

        with pytest.raises(ExecutionStateError):
            harness.coordinator.approve(execution.id, "eradicate", "alice")
        with pytest.raises(ExecutionStateError):
            harness.coordinator.deny(execution.id, "eradicate", "bob")
        assert harness.approvals._early == {}


class TestApprovalFlow:
    def test_operator_approval_releases_step(self, harness):
        harness.registry.register(
            make_workflow(steps=[make_step("eradicate", requires_approval=True, timeout=2)])
        )

        async def scenario():
            execution = await harness.coordinator.start("INC-1", "wf_test")
            await wait_until(lambda: harness.approvals.is_pending(execution.id, "eradicate"))
            assert harness.coordinator.get_status()["pending_approvals"] == 1
            assert harness.coordinator.approve(execution.id, "eradicate", "alice") is True
            return await harness.coordinator.wait(execution.id)

        final = asyncio.run(scenario())
        assert final.status == ExecutionStatus.COMPLETED
        assert final.step_results[0].approved_by == "alice"
        assert final.metrics.automation_percentage == 0.0

    def test_approve_unknown_execution(self, harness):
        with pytest.raises(ExecutionNotFoundError):
            harness.coordinator.approve("exec_missing", "step", "alice")


class TestResume:
    def test_resume_continues_from_current_step(self, harness):
        harness.registry.register(make_workflow(steps=[make_step("a"), make_step("b"), make_step("c")]))
        execution = harness.coordinator.create("INC-1", "wf_test")
        # Simulate a crash after the first step was recorded
        execution.step_results.append(finished_result("a", 1.0))
        execution.current_step = 1
        harness.executions.put(execution)

        resumed = asyncio.run(harness.coordinator.resume(execution.id))

        assert resumed.status == ExecutionStatus.COMPLETED
        assert harness.actions.calls == ["b", "c"]
        assert [r.step_id for r in resumed.step_results] == ["a", "b", "c"]

    @staticmethod
    def _crashed_after_failure(harness, workflow, **fields):
        """Persist the snapshot left by a crash right after step "a" failed."""
        harness.registry.register(workflow)
        execution = harness.coordinator.create("INC-1", workflow.id)
        execution.step_results.append(finished_result("a", 1.0, StepStatus.FAILED))
        execution.current_step = 1
        for name, value in fields.items():
            setattr(execution, name, value)
        harness.executions.put(execution)
        return execution

    def test_resume_applies_pending_stop(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="stop"), make_step("b"), make_step("c")]
        )
        execution = self._crashed_after_failure(harness, workflow)

        resumed = asyncio.run(harness.coordinator.resume(execution.id))

        assert resumed.status == ExecutionStatus.FAILED
        assert harness.actions.calls == []
        assert _statuses(resumed) == [("a", "failed")]

    def test_resume_applies_pending_rollback(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="rollback"), make_step("b")],
            rollback_procedure=["undo_a", "undo_b"],
        )
        execution = self._crashed_after_failure(harness, workflow)

        resumed = asyncio.run(harness.coordinator.resume(execution.id))

        assert resumed.status == ExecutionStatus.FAILED
        assert harness.actions.calls == ["undo_b", "undo_a"]
        assert [r.step_id for r in resumed.rollback_results] == [
            "rollback:undo_b",
            "rollback:undo_a",
        ]

    def test_resume_finishes_a_partial_rollback(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="rollback"), make_step("b")],
            rollback_procedure=["undo_a", "undo_b"],
        )
        execution = self._crashed_after_failure(
            harness, workflow, rollback_results=[finished_result("rollback:undo_b", 0.5)]
        )

        resumed = asyncio.run(harness.coordinator.resume(execution.id))

        assert harness.actions.calls == ["undo_a"]
        assert [r.step_id for r in resumed.rollback_results] == [
            "rollback:undo_b",
            "rollback:undo_a",
        ]

    def test_resume_applies_pending_escalation(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="escalate"), make_step("b")]
        )
        execution = self._crashed_after_failure(harness, workflow)

        resumed = asyncio.run(harness.coordinator.resume(execution.id))

        assert len(harness.notifier.sent) == 1
        assert [r.step_id for r in resumed.escalations] == ["a"]
        assert harness.actions.calls == ["b"]
        assert resumed.policy_applied_through == 1
        assert resumed.status == ExecutionStatus.FAILED

    def test_resume_does_not_repeat_a_delivered_escalation(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="escalate"), make_step("b")]
        )
        execution = self._crashed_after_failure(harness, workflow)
        execution.escalations.append(
            EscalationRecord(
                execution_id=execution.id,
                step_id="a",
                attempt=0,
                target="security_team",
                message="step a failed",
                notified=True,
                escalated_at=execution.started_at,
            )
        )
        harness.executions.put(execution)

        resumed = asyncio.run(harness.coordinator.resume(execution.id))

        assert harness.notifier.sent == []
        assert len(resumed.escalations) == 1
        assert harness.actions.calls == ["b"]

    def test_resume_skips_an_already_handled_failure(self, harness):
        workflow = make_workflow(
            steps=[make_step("a", action="fail", on_failure="escalate"), make_step("b")]
        )
        execution = self._crashed_after_failure(harness, workflow, policy_applied_through=1)

        resumed = asyncio.run(harness.coordinator.resume(execution.id))

        assert harness.notifier.sent == []
        assert harness.actions.calls == ["b"]
        assert resumed.status == ExecutionStatus.FAILED

    def test_resume_terminal_execution_conflicts(self, harness):
        execution = harness.run(make_workflow())
        with pytest.raises(ExecutionStateError):
            asyncio.run(harness.coordinator.resume(execution.id))

    def test_resume_unknown_execution(self, harness):
        with pytest.raises(ExecutionNotFoundError):
            asyncio.run(harness.coordinator.resume("exec_missing"))


class TestConcurrency:
    def test_executions_run_concurrently_and_independently(self, harness):
        harness.registry.register(
            make_workflow(
                steps=[
                    make_step("a", action="slow", parameters={"delay": 0.3}),
                    make_step("b", action="fail", on_failure="continue"),
                ]
            )
        )

        async def scenario():
            first = await harness.coordinator.start("INC-1", "wf_test")
            second = await harness.coordinator.start("INC-2", "wf_test")
            cancelled = await harness.coordinator.cancel(second.id, "duplicate")
            assert cancelled.status == ExecutionStatus.CANCELLED
            third = await harness.coordinator.start("INC-3", "wf_test")
            return await asyncio.gather(
                harness.coordinator.wait(first.id),
                harness.coordinator.wait(second.id),
                harness.coordinator.wait(third.id),
            )

        started = time.monotonic()
        first, second, third = asyncio.run(scenario())
        elapsed = time.monotonic() - started

        assert len({first.id, second.id, third.id}) == 3
        assert first.status == third.status == ExecutionStatus.FAILED
        assert _statuses(first) == _statuses(third) == [("a", "completed"), ("b", "failed")]
        assert second.status == ExecutionStatus.CANCELLED
        assert second.step_results == []
        # Two 0.3 s steps ran side by side
        assert elapsed < 0.55

        for execution in (first, third):
            assert execution.metrics.steps_executed == 2
            assert execution.metrics.steps_failed == 1
            assert execution.metrics.total_duration == pytest.approx(
                sum(r.duration for r in execution.step_results)
            )
            assert execution.metrics.total_duration >= 0.3
        assert second.metrics.steps_executed == 0
        assert second.metrics.total_duration == 0.0
        assert first.metrics is not third.metrics

    def test_crashing_run_is_marked_failed(self, harness):
        step_executor = AsyncMock()
        step_executor.execute.side_effect = RuntimeError("executor bug")
        coordinator = ExecutionCoordinator(
            registry=harness.registry,
            step_executor=step_executor,
            escalations=EscalationManager(harness.notifier),
        )
        harness.registry.register(make_workflow())

        async def scenario():
            execution = await coordinator.start("INC-1", "wf_test")
            return await coordinator.wait(execution.id)

        final = asyncio.run(scenario())
        assert final.status == ExecutionStatus.FAILED
        assert coordinator.get_status()["failed"] == 1


class TestHandleIncident:
    def test_best_match_is_started(self, harness, malware_incident):
        harness.registry.register(make_workflow("wf_medium", priority="medium"))
        harness.registry.register(make_workflow("wf_critical", priority="critical"))

        async def scenario():
            execution = await harness.coordinator.handle_incident(malware_incident)
            return await harness.coordinator.wait(execution.id)

        final = asyncio.run(scenario())
        assert final.workflow_id == "wf_critical"
        assert final.incident_id == malware_incident.id

    def test_no_match_starts_nothing(self, harness, malware_incident):
        harness.registry.register(
            make_workflow(
                trigger_conditions=[{"type": "category", "operator": "equals", "value": "ddos"}]
            )
        )
        assert asyncio.run(harness.coordinator.handle_incident(malware_incident)) is None
        assert harness.coordinator.list() == []

    def test_incident_reaches_actions(self, malware_incident, notifier):
        seen = []

        async def inspect(parameters, context):
            seen.append(context.incident.metadata["affected_host"])
            return "ok"

        registry = WorkflowRegistry()
        registry.register(make_workflow(steps=[make_step("inspect", action="inspect")]))
        coordinator = ExecutionCoordinator(
            registry=registry,
            step_executor=StepExecutor(InMemoryActionRegistry({"inspect": inspect})),
            escalations=EscalationManager(notifier),
        )

        async def scenario():
            execution = await coordinator.handle_incident(malware_incident)
            return await coordinator.wait(execution.id)

        assert asyncio.run(scenario()).status == ExecutionStatus.COMPLETED
        assert seen == ["WORKSTATION-42"]
