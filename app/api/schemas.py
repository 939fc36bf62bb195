from typing import Any, Literal

from pydantic import BaseModel, Field

from app.core.models import WorkflowType


# --- Request models ---

class WorkflowStepCreate(BaseModel):
    step_order: int
    type: Literal["trigger", "action"]
    service: str
    action: str
    description: str | None = None
    config: dict = Field(default_factory=dict)


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1)
    type: WorkflowType
    description: str | None = None
    schedule_config: dict | None = None
    trigger_config: dict | None = None
    metadata: dict = Field(default_factory=dict)
    steps: list[WorkflowStepCreate] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    schedule_config: dict | None = None
    trigger_config: dict | None = None
    metadata: dict | None = None


class ActivationRequest(BaseModel):
    active: bool


class SchedulerControl(BaseModel):
    action: Literal["start", "stop", "status"]


class TriggerCreate(BaseModel):
    toolkit_slug: str = Field(min_length=1)
    trigger_name: str = Field(min_length=1)
    connected_account_id: str = Field(min_length=1)
    trigger_config: dict = Field(default_factory=dict)
    metadata: dict = Field(default_factory=dict)


class ConnectionInitiate(BaseModel):
    auth_config_id: str = Field(min_length=1)


class ChatCreate(BaseModel):
    title: str = Field(min_length=1)
    metadata: dict = Field(default_factory=dict)


class ChatUpdate(BaseModel):
    title: str = Field(min_length=1)


class ChatMessageCreate(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(min_length=1)
    tool_calls: list[dict] | None = None
    tool_results: list[dict] | None = None
    metadata: dict = Field(default_factory=dict)


class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatTurn] = Field(min_length=1)
    chat_id: str | None = None


# --- Response models ---

class WorkflowStepResponse(BaseModel):
    id: str
    step_order: int
    type: str
    service: str
    action: str
    description: str | None = None
    config: dict


class WorkflowResponse(BaseModel):
    id: str
    user_id: str
    name: str
    description: str | None = None
    type: str
    active: bool
    schedule_config: dict | None = None
    trigger_config: dict | None = None
    metadata: dict
    webhook_url: str | None = None
    created_at: str
    updated_at: str
    last_run_at: str | None = None
    next_run_at: str | None = None
    steps: list[WorkflowStepResponse] = Field(default_factory=list)


class RunResponse(BaseModel):
    id: str
    workflow_id: str
    status: str
    started_at: str
    completed_at: str | None = None
    error_message: str | None = None
    input_data: dict
    output_data: dict | None = None
    execution_log: list[dict]


class LiveStepResponse(BaseModel):
    id: str
    workflow_run_id: str
    step_number: int
    step_type: str
    content: str | None = None
    timestamp: str
    metadata: dict


class ExecuteResponse(BaseModel):
    success: bool
    output: str = ""
    tool_calls: list[dict] = Field(default_factory=list)
    error: str | None = None
    execution_time: int
    run_id: str | None = None


class ActivationResponse(BaseModel):
    success: bool
    active: bool
    next_run_at: str | None = None
    activated_triggers: int | None = None
    deactivated_triggers: int | None = None
    webhook_url: str | None = None


class SchedulerStatus(BaseModel):
    is_running: bool
    is_stopping: bool = False
    interval_seconds: float
    ticks: int
    last_tick_at: str | None = None


class SchedulerResponse(BaseModel):
    success: bool
    message: str | None = None
    status: SchedulerStatus


class TriggerResponse(BaseModel):
    id: str
    workflow_id: str
    user_id: str
    broker_trigger_id: str | None = None
    toolkit_slug: str
    trigger_name: str
    trigger_config: dict
    connected_account_id: str
    active: bool
    metadata: dict
    created_at: str
    updated_at: str


class TriggerType(BaseModel):
    name: str
    slug: str
    description: str
    toolkit: str
    schema_: dict = Field(default_factory=dict, alias="schema")
    payload: dict = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class AvailableTriggersResponse(BaseModel):
    triggers: list[TriggerType]
    connected_accounts: list[dict[str, Any]]
    message: str | None = None


class ConnectionResponse(BaseModel):
    redirect_url: str | None = None
    connection_id: str | None = None


class ToolkitResponse(BaseModel):
    name: str
    slug: str
    description: str
    categories: list[str] = Field(default_factory=list)
    is_connected: bool
    connection_id: str | None = None


class ChatResponse(BaseModel):
    id: str
    user_id: str
    title: str
    metadata: dict
    created_at: str
    updated_at: str
    last_message_at: str


class ChatMessageResponse(BaseModel):
    id: str
    chat_id: str
    role: str
    content: str
    tool_calls: list[dict] | None = None
    tool_results: list[dict] | None = None
    metadata: dict
    created_at: str


class ChatReply(BaseModel):
    text: str
    finish_reason: str | None = None
    steps: int
    tool_calls: list[dict] = Field(default_factory=list)
    tool_results: list[dict] = Field(default_factory=list)
    message_id: str | None = None
