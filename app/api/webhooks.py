import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.deps import get_executor
from app.core.executor import WorkflowExecutor
from app.core.models import TriggeredBy
from app.db import repository
from app.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


def _processing_failed(error: str) -> dict:
    return {
        "status": "error",
        "message": "Webhook received but processing failed",
        "error": error,
    }


# ── Broker callbacks (no API key; processing failures still answer 200) ────


@router.post("/webhooks/composio/{workflow_id}")
async def composio_webhook(
    workflow_id: str,
    request: Request,
    db: Session = Depends(get_db),
    executor: WorkflowExecutor = Depends(get_executor),
):
    try:
        payload = await request.json()
    except ValueError as e:
        logger.error("Unreadable webhook body for workflow %s: %s", workflow_id, e)
        return _processing_failed(f"Invalid JSON body: {e}")
    if not isinstance(payload, dict):
        logger.error("Webhook body for workflow %s is not an object", workflow_id)
        return _processing_failed("Webhook payload must be a JSON object")

    trigger_id = payload.get("trigger_id")
    logger.info(
        "Received trigger event %s (%s) for workflow %s",
        trigger_id,
        payload.get("trigger_name"),
        workflow_id,
    )

    workflow = repository.get_workflow(db, workflow_id)
    if not workflow:
        logger.error("Webhook for unknown workflow %s", workflow_id)
        raise HTTPException(status_code=404, detail="Workflow not found")
    if not trigger_id:
        raise HTTPException(status_code=400, detail="trigger_id is required")

    # Anything past this point answers 200 so the broker does not retry
    try:
        if not workflow.active:
            logger.info("Workflow %s is not active, ignoring trigger", workflow_id)
            return {"message": "Workflow is not active, ignoring trigger"}

        trigger = repository.get_trigger_by_broker_id(db, workflow_id, trigger_id)
        if not trigger:
            logger.warning("Trigger %s not found for workflow %s", trigger_id, workflow_id)
            return {"message": "Trigger not found for this workflow"}
        if not trigger.active:
            logger.info("Trigger %s is not active, ignoring event", trigger.id)
            return {"message": "Trigger is not active, ignoring event"}

        run = repository.create_run(
            db,
            workflow_id,
            input_data={
                "triggered_by": TriggeredBy.WEBHOOK.value,
                "trigger": {
                    "id": trigger.id,
                    "name": trigger.trigger_name,
                    "toolkit": trigger.toolkit_slug,
                    "payload": payload.get("payload", payload),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            },
        )
        executor.submit(
            workflow_id,
            workflow.user_id,
            triggered_by=TriggeredBy.WEBHOOK,
            run_id=run.id,
        )
        return {
            "status": "received",
            "workflow_id": workflow_id,
            "trigger_id": trigger.id,
            "run_id": run.id,
            "message": "Workflow execution started",
        }
    except Exception as e:
        logger.exception("Error processing webhook for workflow %s", workflow_id)
        return _processing_failed(str(e))


@router.get("/webhooks/composio/{workflow_id}")
def verify_webhook(workflow_id: str, challenge: str | None = None):
    if challenge:
        return {"challenge": challenge}
    return {"status": "ok", "endpoint": "Composio webhook handler"}
