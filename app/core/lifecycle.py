"""Activation and deactivation of workflows and their broker triggers."""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app import config
from app.core.errors import ActivationError, BrokerError
from app.core.models import WorkflowType
from app.core.schedule import calculate_next_run, format_timestamp
from app.db import repository
from app.db.tables import Workflow, WorkflowTrigger

logger = logging.getLogger(__name__)


def webhook_url_for(workflow_id: str) -> str:
    return f"{config.PUBLIC_URL}/webhooks/composio/{workflow_id}"


def arm_schedule(db: Session, workflow: Workflow) -> Workflow:
    """Mark a schedule workflow active with a next run strictly in the future."""
    try:
        next_run = calculate_next_run(workflow.schedule_config)
    except ValueError as e:
        raise ActivationError(str(e)) from e
    return repository.set_workflow_schedule(
        db, workflow.id, active=True, next_run_at=format_timestamp(next_run)
    )


async def activate_workflow(db: Session, broker, workflow: Workflow) -> dict:
    if workflow.type == WorkflowType.SCHEDULE:
        workflow = arm_schedule(db, workflow)
        logger.info("Activated workflow %s, next run at %s", workflow.id, workflow.next_run_at)
        return {"success": True, "active": True, "next_run_at": workflow.next_run_at}

    triggers = repository.list_triggers(db, workflow.id)
    if not triggers:
        raise ActivationError("No triggers configured for this workflow")

    webhook_url = webhook_url_for(workflow.id)
    logger.info("Activating workflow %s with webhook %s", workflow.id, webhook_url)

    activated = 0
    for trigger in triggers:
        if trigger.active and trigger.broker_trigger_id:
            activated += 1
            continue
        try:
            broker_trigger_id = await broker.create_trigger(
                workflow.user_id,
                trigger.trigger_name,
                trigger.connected_account_id,
                {**(trigger.trigger_config or {}), "webhook_url": webhook_url},
            )
        except BrokerError:
            logger.exception("Failed to create trigger instance for %s", trigger.trigger_name)
            continue
        repository.update_trigger(
            db,
            trigger.id,
            active=True,
            broker_trigger_id=broker_trigger_id,
            metadata={
                **(trigger.extra or {}),
                "activated_at": datetime.now(timezone.utc).isoformat(),
                "webhook_url": webhook_url,
            },
        )
        activated += 1

    repository.update_workflow(db, workflow.id, active=True, webhook_url=webhook_url)
    return {
        "success": True,
        "active": True,
        "activated_triggers": activated,
        "webhook_url": webhook_url,
    }


async def deactivate_workflow(db: Session, broker, workflow: Workflow) -> dict:
    if workflow.type == WorkflowType.SCHEDULE:
        repository.set_workflow_schedule(db, workflow.id, active=False, next_run_at=None)
        logger.info("Deactivated workflow %s", workflow.id)
        return {"success": True, "active": False, "next_run_at": None}

    deactivated = 0
    for trigger in repository.list_triggers(db, workflow.id):
        if not trigger.broker_trigger_id:
            continue
        if await _teardown(broker, trigger):
            repository.update_trigger(
                db,
                trigger.id,
                active=False,
                broker_trigger_id=None,
                metadata={
                    **(trigger.extra or {}),
                    "deactivated_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            deactivated += 1

    repository.update_workflow(db, workflow.id, active=False, next_run_at=None)
    return {"success": True, "active": False, "deactivated_triggers": deactivated}


async def remove_trigger(db: Session, broker, trigger: WorkflowTrigger) -> None:
    if trigger.active and trigger.broker_trigger_id:
        await _teardown(broker, trigger)
    repository.delete_trigger(db, trigger.id)
    logger.info("Deleted trigger %s", trigger.id)


async def teardown_workflow_triggers(db: Session, broker, workflow_id: str) -> None:
    for trigger in repository.list_triggers(db, workflow_id):
        if trigger.active and trigger.broker_trigger_id:
            await _teardown(broker, trigger)


async def _teardown(broker, trigger: WorkflowTrigger) -> bool:
    try:
        await broker.delete_trigger(trigger.broker_trigger_id)
        return True
    except BrokerError:
        logger.exception(
            "Failed to delete trigger instance %s", trigger.broker_trigger_id
        )
        return False
