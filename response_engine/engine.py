"""Builds the engine's object graph from a ``Config``.

Every collaborator is constructed here and passed down explicitly; nothing
in the engine reaches for a module-level instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from response_engine.catalog import default_workflows
from response_engine.errors import ValidationError
from response_engine.models.collaborators import ExecutionRepository, WorkflowRepository
from response_engine.persistence.json_file import (
    JsonFileExecutionRepository,
    JsonFileWorkflowRepository,
)
from response_engine.persistence.memory import (
    InMemoryExecutionRepository,
    InMemoryWorkflowRepository,
)
from response_engine.services.actions import InMemoryActionRegistry, make_notify_action
from response_engine.services.approvals import ApprovalGate
from response_engine.services.coordinator import ExecutionCoordinator
from response_engine.services.escalation import EscalationManager
from response_engine.services.notifications import LoggingNotifier, WebhookNotifier
from response_engine.services.registry import WorkflowRegistry
from response_engine.services.step_executor import StepExecutor
from response_engine.services.triggers import TriggerEvaluator
from response_engine.utils.config import Config
from response_engine.utils.logger import get_logger

logger = get_logger(__name__)

Notifier = Union[LoggingNotifier, WebhookNotifier]


@dataclass
class Engine:
    coordinator: ExecutionCoordinator
    registry: WorkflowRegistry
    actions: InMemoryActionRegistry
    approvals: ApprovalGate
    escalations: EscalationManager
    notifier: Notifier

    async def close(self) -> None:
        await self.coordinator.close()
        await self.notifier.close()


def _repositories(config: Config) -> tuple:
    if config.store_dir:
        logger.info("store_file_backed", store_dir=config.store_dir)
        workflows: WorkflowRepository = JsonFileWorkflowRepository(config.store_dir)
        executions: ExecutionRepository = JsonFileExecutionRepository(config.store_dir)
    else:
        workflows = InMemoryWorkflowRepository()
        executions = InMemoryExecutionRepository()
    return workflows, executions


def build_engine(config: Config, notifier: Optional[Notifier] = None) -> Engine:
    if notifier is None:
        if config.notification_webhook_url:
            notifier = WebhookNotifier(
                config.notification_webhook_url,
                timeout=config.notification_timeout,
                max_retries=config.notification_max_retries,
                backoff_seconds=config.retry_backoff_seconds,
            )
        else:
            notifier = LoggingNotifier()

    workflow_repo, execution_repo = _repositories(config)
    registry = WorkflowRegistry(workflow_repo)

    actions = InMemoryActionRegistry()
    actions.register("notify", make_notify_action(notifier, config.escalation_target))
    if config.simulated_actions:
        from mocks.simulated_actions import register_simulated_actions

        register_simulated_actions(actions)
        logger.info("simulated_actions_registered", actions=actions.action_ids())

    if config.seed_default_workflows:
        for workflow in default_workflows():
            try:
                registry.register(workflow)
            except ValidationError as exc:
                # A stored workflow with the same id but another definition wins
                logger.warning("catalog_workflow_skipped", workflow_id=workflow.id, error=str(exc))

    approvals = ApprovalGate()
    escalations = EscalationManager(notifier, default_target=config.escalation_target)
    coordinator = ExecutionCoordinator(
        registry=registry,
        step_executor=StepExecutor(
            actions, approvals, retry_backoff_seconds=config.retry_backoff_seconds
        ),
        escalations=escalations,
        executions=execution_repo,
        approvals=approvals,
        evaluator=TriggerEvaluator(threshold=config.trigger_threshold),
    )
    return Engine(
        coordinator=coordinator,
        registry=registry,
        actions=actions,
        approvals=approvals,
        escalations=escalations,
        notifier=notifier,
    )
