import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.auth import get_current_user, verify_api_key
from app.api.deps import get_broker, get_executor, get_scheduler
from app.api.schemas import (
    ActivationRequest,
    ActivationResponse,
    ExecuteResponse,
    LiveStepResponse,
    RunResponse,
    SchedulerControl,
    SchedulerResponse,
    WorkflowCreate,
    WorkflowResponse,
    WorkflowStepResponse,
    WorkflowUpdate,
)
from app.core.broadcast import serialize_live_step
from app.core.errors import ActivationError
from app.core.executor import WorkflowExecutor
from app.core.lifecycle import (
    activate_workflow,
    arm_schedule,
    deactivate_workflow,
    teardown_workflow_triggers,
)
from app.core.models import TriggeredBy, WorkflowType
from app.core.schedule import calculate_next_run
from app.core.scheduler import WorkflowScheduler
from app.db import repository
from app.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_key)])


def workflow_response(wf) -> WorkflowResponse:
    return WorkflowResponse(
        id=wf.id,
        user_id=wf.user_id,
        name=wf.name,
        description=wf.description,
        type=wf.type,
        active=wf.active,
        schedule_config=wf.schedule_config,
        trigger_config=wf.trigger_config,
        metadata=wf.extra or {},
        webhook_url=wf.webhook_url,
        created_at=wf.created_at,
        updated_at=wf.updated_at,
        last_run_at=wf.last_run_at,
        next_run_at=wf.next_run_at,
        steps=[
            WorkflowStepResponse(
                id=s.id,
                step_order=s.step_order,
                type=s.type,
                service=s.service,
                action=s.action,
                description=s.description,
                config=s.config or {},
            )
            for s in wf.steps
        ],
    )


def run_response(run) -> RunResponse:
    return RunResponse(
        id=run.id,
        workflow_id=run.workflow_id,
        status=run.status,
        started_at=run.started_at,
        completed_at=run.completed_at,
        error_message=run.error_message,
        input_data=run.input_data or {},
        output_data=run.output_data,
        execution_log=run.execution_log or [],
    )


def _owned_workflow(db: Session, workflow_id: str, user_id: str):
    wf = repository.get_workflow(db, workflow_id, user_id=user_id)
    if not wf:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return wf


def _owned_run(db: Session, run_id: str, user_id: str):
    run = repository.get_run(db, run_id)
    if not run or not repository.get_workflow(db, run.workflow_id, user_id=user_id):
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return run


# ── Scheduler ───────────────────────────────────────────────────────────────


@router.post("/workflows/scheduler", response_model=SchedulerResponse)
async def control_scheduler(
    control: SchedulerControl,
    _: str = Depends(get_current_user),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    if control.action == "start":
        if not scheduler.start() and scheduler.is_stopping:
            return SchedulerResponse(
                success=False,
                message="Scheduler is still finishing its last pass",
                status=scheduler.status(),
            )
        message = "Scheduler started"
    elif control.action == "stop":
        scheduler.stop()
        message = "Scheduler stopped"
    else:
        message = None
    return SchedulerResponse(success=True, message=message, status=scheduler.status())


@router.get("/workflows/scheduler", response_model=SchedulerResponse)
def scheduler_status(
    _: str = Depends(get_current_user),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    return SchedulerResponse(success=True, status=scheduler.status())


# ── Workflows ───────────────────────────────────────────────────────────────


@router.post("/workflows", response_model=WorkflowResponse)
def create_workflow(
    workflow: WorkflowCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    name = workflow.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name and type are required")

    wf = repository.create_workflow(
        db,
        user_id=user_id,
        name=name,
        type=workflow.type.value,
        description=workflow.description.strip() if workflow.description else None,
        schedule_config=workflow.schedule_config,
        trigger_config=workflow.trigger_config,
        metadata=workflow.metadata,
        steps=[step.model_dump() for step in workflow.steps],
    )
    logger.info("Created workflow %s for user %s", wf.id, user_id)
    return workflow_response(wf)


@router.get("/workflows", response_model=list[WorkflowResponse])
def list_workflows(
    db: Session = Depends(get_db), user_id: str = Depends(get_current_user)
):
    return [workflow_response(wf) for wf in repository.list_workflows(db, user_id)]


@router.get("/workflows/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(
    workflow_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return workflow_response(_owned_workflow(db, workflow_id, user_id))


@router.put("/workflows/{workflow_id}", response_model=WorkflowResponse)
def update_workflow(
    workflow_id: str,
    update: WorkflowUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    wf = _owned_workflow(db, workflow_id, user_id)
    fields = update.model_dump(exclude_unset=True)
    if fields.get("name") is not None:
        fields["name"] = fields["name"].strip()
    if fields.get("description") is not None:
        fields["description"] = fields["description"].strip()

    rearm = "schedule_config" in fields and wf.active and wf.type == WorkflowType.SCHEDULE
    if rearm:
        try:
            calculate_next_run(fields["schedule_config"])
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    wf = repository.update_workflow(db, workflow_id, **fields)
    if rearm:
        wf = arm_schedule(db, wf)
    return workflow_response(wf)


@router.delete("/workflows/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    broker=Depends(get_broker),
):
    _owned_workflow(db, workflow_id, user_id)
    await teardown_workflow_triggers(db, broker, workflow_id)
    repository.delete_workflow(db, workflow_id)
    logger.info("Deleted workflow %s", workflow_id)
    return {"success": True}


@router.post("/workflows/{workflow_id}/activate", response_model=ActivationResponse)
async def set_workflow_active(
    workflow_id: str,
    request: ActivationRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    broker=Depends(get_broker),
):
    wf = _owned_workflow(db, workflow_id, user_id)
    try:
        if request.active:
            return await activate_workflow(db, broker, wf)
        return await deactivate_workflow(db, broker, wf)
    except ActivationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ── Execution ───────────────────────────────────────────────────────────────


@router.post("/workflows/{workflow_id}/execute", response_model=ExecuteResponse)
async def execute_workflow(
    workflow_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    executor: WorkflowExecutor = Depends(get_executor),
):
    _owned_workflow(db, workflow_id, user_id)
    logger.info("Manual execution requested for workflow %s by user %s", workflow_id, user_id)

    result = await executor.execute_workflow(
        workflow_id, user_id, triggered_by=TriggeredBy.MANUAL
    )
    response = ExecuteResponse(
        success=result.success,
        output=result.output,
        tool_calls=result.tool_calls,
        error=result.error,
        execution_time=result.execution_time,
        run_id=result.run_id,
    )
    if not result.success:
        return JSONResponse(status_code=400, content=response.model_dump())
    return response


# ── Runs ────────────────────────────────────────────────────────────────────


@router.get("/workflows/{workflow_id}/runs", response_model=list[RunResponse])
def list_runs(
    workflow_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    _owned_workflow(db, workflow_id, user_id)
    return [run_response(run) for run in repository.list_runs(db, workflow_id, limit)]


@router.get("/runs/{run_id}", response_model=RunResponse)
def get_run(
    run_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return run_response(_owned_run(db, run_id, user_id))


@router.get("/runs/{run_id}/live-steps", response_model=list[LiveStepResponse])
def get_live_steps(
    run_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    _owned_run(db, run_id, user_id)
    return [serialize_live_step(s) for s in repository.list_live_steps(db, run_id)]


