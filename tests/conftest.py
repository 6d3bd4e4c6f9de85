"""Pytest fixtures shared across the test suite."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from helpers import Harness, RecordingActions
from response_engine.engine import build_engine
from response_engine.main import create_app
from response_engine.models.incident import Incident
from response_engine.persistence.memory import InMemoryExecutionRepository
from response_engine.services.approvals import ApprovalGate
from response_engine.services.coordinator import ExecutionCoordinator
from response_engine.services.escalation import EscalationManager
from response_engine.services.notifications import LoggingNotifier
from response_engine.services.registry import WorkflowRegistry
from response_engine.services.step_executor import StepExecutor
from response_engine.utils.config import load_config


@pytest.fixture()
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture()
def harness(notifier) -> Harness:
    """Coordinator wired to fake actions, an approval gate and a recording notifier."""
    actions = RecordingActions()
    approvals = ApprovalGate()
    registry = WorkflowRegistry()
    executions = InMemoryExecutionRepository()
    coordinator = ExecutionCoordinator(
        registry=registry,
        step_executor=StepExecutor(actions.registry(), approvals, retry_backoff_seconds=0),
        escalations=EscalationManager(notifier),
        executions=executions,
        approvals=approvals,
    )
    return Harness(
        coordinator=coordinator,
        registry=registry,
        actions=actions,
        approvals=approvals,
        notifier=notifier,
        executions=executions,
    )


@pytest.fixture()
def malware_incident() -> Incident:
    return Incident(
        id="INC-2024-001",
        category="malware",
        severity="critical",
        description="Dropper beaconing to known C2 host from WORKSTATION-42",
        source="edr",
        metadata={"affected_host": "WORKSTATION-42", "indicators": ["192.0.2.100"]},
    )


@pytest.fixture()
def app_client():
    """TestClient with an engine (simulated actions, no backoff) injected into app state."""
    app = create_app()
    app.state.engine = build_engine(
        load_config(retry_backoff_seconds=0, simulated_actions=True, seed_default_workflows=True)
    )
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
