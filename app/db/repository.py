import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.models import TERMINAL_RUN_STATUSES, RunStatus, WorkflowType
from app.core.schedule import format_timestamp, utc_now
from app.db.tables import (
    Chat,
    ChatMessage,
    Workflow,
    WorkflowLiveStep,
    WorkflowRun,
    WorkflowStep,
    WorkflowTrigger,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Workflows ───────────────────────────────────────────────────────────────


def create_workflow(
    db: Session,
    user_id: str,
    name: str,
    type: str,
    description: str | None = None,
    schedule_config: dict | None = None,
    trigger_config: dict | None = None,
    metadata: dict | None = None,
    steps: list[dict] | None = None,
) -> Workflow:
    now = _now()
    workflow = Workflow(
        id=str(uuid.uuid4()),
        user_id=user_id,
        name=name,
        description=description,
        type=type,
        active=False,
        schedule_config=schedule_config,
        trigger_config=trigger_config,
        extra=metadata or {},
        created_at=now,
        updated_at=now,
    )
    for step in steps or []:
        workflow.steps.append(
            WorkflowStep(
                id=str(uuid.uuid4()),
                step_order=step["step_order"],
                type=step["type"],
                service=step["service"],
                action=step["action"],
                description=step.get("description"),
                config=step.get("config") or {},
                created_at=now,
            )
        )
    db.add(workflow)
    db.commit()
    db.refresh(workflow)
    return workflow


def get_workflow(
    db: Session, workflow_id: str, user_id: str | None = None
) -> Workflow | None:
    query = db.query(Workflow).filter(Workflow.id == workflow_id)
    if user_id is not None:
        query = query.filter(Workflow.user_id == user_id)
    return query.first()


def list_workflows(db: Session, user_id: str) -> list[Workflow]:
    return (
        db.query(Workflow)
        .filter(Workflow.user_id == user_id)
        .order_by(Workflow.created_at.desc())
        .all()
    )


def update_workflow(db: Session, workflow_id: str, **fields) -> Workflow | None:
    workflow = get_workflow(db, workflow_id)
    if not workflow:
        return None
    if "metadata" in fields:
        fields["extra"] = fields.pop("metadata")
    for key, value in fields.items():
        setattr(workflow, key, value)
    workflow.updated_at = _now()
    db.commit()
    db.refresh(workflow)
    return workflow


def delete_workflow(db: Session, workflow_id: str) -> bool:
    workflow = get_workflow(db, workflow_id)
    if not workflow:
        return False
    run_ids = [
        run_id
        for (run_id,) in db.query(WorkflowRun.id).filter(
            WorkflowRun.workflow_id == workflow_id
        )
    ]
    if run_ids:
        db.query(WorkflowLiveStep).filter(
            WorkflowLiveStep.workflow_run_id.in_(run_ids)
        ).delete(synchronize_session=False)
    db.query(WorkflowRun).filter(WorkflowRun.workflow_id == workflow_id).delete(
        synchronize_session=False
    )
    db.query(WorkflowTrigger).filter(
        WorkflowTrigger.workflow_id == workflow_id
    ).delete(synchronize_session=False)
    db.delete(workflow)
    db.commit()
    return True


def set_workflow_schedule(
    db: Session, workflow_id: str, active: bool, next_run_at: str | None
) -> Workflow | None:
    return update_workflow(db, workflow_id, active=active, next_run_at=next_run_at)


def set_next_run(db: Session, workflow_id: str, next_run_at: str | None) -> None:
    db.query(Workflow).filter(Workflow.id == workflow_id).update(
        {Workflow.next_run_at: next_run_at}, synchronize_session=False
    )
    db.commit()


def touch_last_run(db: Session, workflow_id: str, at: str) -> None:
    db.query(Workflow).filter(Workflow.id == workflow_id).update(
        {Workflow.last_run_at: at}, synchronize_session=False
    )
    db.commit()


def get_due_workflows(db: Session, now: str | None = None) -> list[Workflow]:
    now = now or format_timestamp(utc_now())
    return (
        db.query(Workflow)
        .filter(
            Workflow.active.is_(True),
            Workflow.type == WorkflowType.SCHEDULE.value,
            Workflow.next_run_at.is_not(None),
            Workflow.next_run_at <= now,
        )
        .order_by(Workflow.next_run_at)
        .all()
    )


# ── Runs ────────────────────────────────────────────────────────────────────


def create_run(
    db: Session,
    workflow_id: str,
    input_data: dict | None = None,
    status: str = RunStatus.PENDING.value,
) -> WorkflowRun:
    now = _now()
    run = WorkflowRun(
        id=str(uuid.uuid4()),
        workflow_id=workflow_id,
        status=status,
        started_at=now,
        input_data=input_data or {},
        execution_log=[],
        created_at=now,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def get_run(db: Session, run_id: str) -> WorkflowRun | None:
    return db.query(WorkflowRun).filter(WorkflowRun.id == run_id).first()


def list_runs(db: Session, workflow_id: str, limit: int = 50) -> list[WorkflowRun]:
    return (
        db.query(WorkflowRun)
        .filter(WorkflowRun.workflow_id == workflow_id)
        .order_by(WorkflowRun.created_at.desc())
        .limit(limit)
        .all()
    )


def mark_run_running(db: Session, run_id: str) -> bool:
    updated = (
        db.query(WorkflowRun)
        .filter(
            WorkflowRun.id == run_id,
            WorkflowRun.status == RunStatus.PENDING.value,
        )
        .update({WorkflowRun.status: RunStatus.RUNNING.value}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


def finish_run(
    db: Session,
    run_id: str,
    status: str,
    execution_log: list[dict],
    output_data: dict | None = None,
    error_message: str | None = None,
) -> bool:
    """Write the terminal state of a run.

    Returns False without touching the row if it is already terminal.
    """
    updated = (
        db.query(WorkflowRun)
        .filter(
            WorkflowRun.id == run_id,
            WorkflowRun.status.not_in([s.value for s in TERMINAL_RUN_STATUSES]),
        )
        .update(
            {
                WorkflowRun.status: status,
                WorkflowRun.execution_log: execution_log,
                WorkflowRun.output_data: output_data,
                WorkflowRun.error_message: error_message,
                WorkflowRun.completed_at: _now(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


# ── Live steps ──────────────────────────────────────────────────────────────


def create_live_step(
    db: Session,
    run_id: str,
    step_number: int,
    step_type: str,
    content: str | None,
    timestamp: str,
    metadata: dict | None = None,
) -> WorkflowLiveStep:
    live_step = WorkflowLiveStep(
        id=str(uuid.uuid4()),
        workflow_run_id=run_id,
        step_number=step_number,
        step_type=step_type,
        content=content,
        timestamp=timestamp,
        extra=metadata or {},
    )
    db.add(live_step)
    db.commit()
    db.refresh(live_step)
    return live_step


def list_live_steps(db: Session, run_id: str) -> list[WorkflowLiveStep]:
    return (
        db.query(WorkflowLiveStep)
        .filter(WorkflowLiveStep.workflow_run_id == run_id)
        .order_by(WorkflowLiveStep.step_number)
        .all()
    )


# ── Triggers ────────────────────────────────────────────────────────────────


def create_trigger(
    db: Session,
    workflow_id: str,
    user_id: str,
    toolkit_slug: str,
    trigger_name: str,
    connected_account_id: str,
    trigger_config: dict | None = None,
    metadata: dict | None = None,
) -> WorkflowTrigger:
    now = _now()
    trigger = WorkflowTrigger(
        id=str(uuid.uuid4()),
        workflow_id=workflow_id,
        user_id=user_id,
        toolkit_slug=toolkit_slug,
        trigger_name=trigger_name,
        trigger_config=trigger_config or {},
        connected_account_id=connected_account_id,
        active=False,
        extra=metadata or {},
        created_at=now,
        updated_at=now,
    )
    db.add(trigger)
    db.commit()
    db.refresh(trigger)
    return trigger


def get_trigger(
    db: Session, trigger_id: str, workflow_id: str | None = None
) -> WorkflowTrigger | None:
    query = db.query(WorkflowTrigger).filter(WorkflowTrigger.id == trigger_id)
    if workflow_id is not None:
        query = query.filter(WorkflowTrigger.workflow_id == workflow_id)
    return query.first()


def get_trigger_by_broker_id(
    db: Session, workflow_id: str, broker_trigger_id: str
) -> WorkflowTrigger | None:
    return (
        db.query(WorkflowTrigger)
        .filter(
            WorkflowTrigger.workflow_id == workflow_id,
            WorkflowTrigger.broker_trigger_id == broker_trigger_id,
        )
        .first()
    )


def list_triggers(db: Session, workflow_id: str) -> list[WorkflowTrigger]:
    return (
        db.query(WorkflowTrigger)
        .filter(WorkflowTrigger.workflow_id == workflow_id)
        .order_by(WorkflowTrigger.created_at.desc())
        .all()
    )


def update_trigger(
    db: Session,
    trigger_id: str,
    active: bool,
    broker_trigger_id: str | None,
    metadata: dict,
) -> WorkflowTrigger | None:
    trigger = get_trigger(db, trigger_id)
    if trigger:
        trigger.active = active
        trigger.broker_trigger_id = broker_trigger_id
        trigger.extra = metadata
        trigger.updated_at = _now()
        db.commit()
        db.refresh(trigger)
    return trigger


def delete_trigger(db: Session, trigger_id: str) -> bool:
    deleted = (
        db.query(WorkflowTrigger)
        .filter(WorkflowTrigger.id == trigger_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted == 1


# ── Chats ───────────────────────────────────────────────────────────────────


def create_chat(
    db: Session, user_id: str, title: str, metadata: dict | None = None
) -> Chat:
    now = _now()
    chat = Chat(
        id=str(uuid.uuid4()),
        user_id=user_id,
        title=title,
        extra=metadata or {},
        created_at=now,
        updated_at=now,
        last_message_at=now,
    )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def get_chat(db: Session, chat_id: str, user_id: str | None = None) -> Chat | None:
    query = db.query(Chat).filter(Chat.id == chat_id)
    if user_id is not None:
        query = query.filter(Chat.user_id == user_id)
    return query.first()


def list_chats(db: Session, user_id: str) -> list[Chat]:
    return (
        db.query(Chat)
        .filter(Chat.user_id == user_id)
        .order_by(Chat.last_message_at.desc())
        .all()
    )


def update_chat_title(db: Session, chat_id: str, title: str) -> Chat | None:
    chat = get_chat(db, chat_id)
    if chat:
        chat.title = title
        chat.updated_at = _now()
        db.commit()
        db.refresh(chat)
    return chat


def delete_chat(db: Session, chat_id: str) -> bool:
    chat = get_chat(db, chat_id)
    if not chat:
        return False
    db.query(ChatMessage).filter(ChatMessage.chat_id == chat_id).delete(
        synchronize_session=False
    )
    db.delete(chat)
    db.commit()
    return True


def list_chat_messages(db: Session, chat_id: str) -> list[ChatMessage]:
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.chat_id == chat_id)
        .order_by(ChatMessage.created_at)
        .all()
    )


def create_chat_message(
    db: Session,
    chat_id: str,
    role: str,
    content: str,
    tool_calls: list | None = None,
    tool_results: list | None = None,
    metadata: dict | None = None,
) -> ChatMessage:
    now = _now()
    message = ChatMessage(
        id=str(uuid.uuid4()),
        chat_id=chat_id,
        role=role,
        content=content,
        tool_calls=tool_calls,
        tool_results=tool_results,
        extra=metadata or {},
        created_at=now,
    )
    db.add(message)
    db.query(Chat).filter(Chat.id == chat_id).update(
        {Chat.last_message_at: now, Chat.updated_at: now}
    )
    db.commit()
    db.refresh(message)
    return message
