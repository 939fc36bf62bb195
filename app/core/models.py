from enum import Enum


class WorkflowType(str, Enum):
    SCHEDULE = "schedule"
    TRIGGER = "trigger"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class StepType(str, Enum):
    AI_GENERATION = "ai_generation"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"


class LiveStepType(str, Enum):
    AI_GENERATION = "ai_generation"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    COMPLETION = "completion"


class TriggeredBy(str, Enum):
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class ChannelEvent(str, Enum):
    STEP_UPDATE = "STEP_UPDATE"
    STATUS_UPDATE = "STATUS_UPDATE"
