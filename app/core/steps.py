import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from app.core.models import StepType
from app.integrations.llm import ToolCall, ToolResult


class ExecutionStep(BaseModel):
    step_number: int
    step_type: StepType
    timestamp: str
    ai_response: str | None = None
    tool_call: dict | None = None
    tool_result: dict | None = None
    error: str | None = None
    metadata: dict = Field(default_factory=dict)


def is_error_result(result: Any) -> bool:
    if isinstance(result, Exception):
        return True
    return isinstance(result, dict) and bool(result.get("error"))


def result_error_message(result: Any) -> str | None:
    if isinstance(result, Exception):
        return str(result)
    if isinstance(result, dict) and result.get("error"):
        return str(result["error"])
    return None


def jsonable(value: Any) -> Any:
    if isinstance(value, Exception):
        return {"error": str(value)}
    return json.loads(json.dumps(value, default=str))


class ExecutionLog:
    """Append-only log of one run; step numbers start at 1 and never repeat."""

    def __init__(self):
        self._steps: list[ExecutionStep] = []
        self._next_number = 1

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self):
        return iter(self._steps)

    def append(self, step_type: StepType, **payload) -> ExecutionStep:
        step = ExecutionStep(
            step_number=self._next_number,
            step_type=step_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            **payload,
        )
        self._next_number += 1
        self._steps.append(step)
        return step

    def ai_generation(self, text: str | None, metadata: dict | None = None) -> ExecutionStep:
        return self.append(StepType.AI_GENERATION, ai_response=text, metadata=metadata or {})

    def tool_call(self, call: ToolCall, metadata: dict | None = None) -> ExecutionStep:
        return self.append(
            StepType.TOOL_CALL,
            tool_call={
                "tool_call_id": call.tool_call_id,
                "tool_name": call.tool_name,
                "arguments": jsonable(call.arguments),
            },
            metadata=metadata or {},
        )

    def tool_result(self, result: ToolResult) -> ExecutionStep:
        failed = is_error_result(result.result)
        return self.append(
            StepType.TOOL_RESULT,
            tool_result={
                "tool_call_id": result.tool_call_id,
                "result": jsonable(result.result),
                "success": not failed,
                "error": result_error_message(result.result),
            },
            metadata={"result_type": "error" if failed else "success"},
        )

    def error(self, message: str, metadata: dict | None = None) -> ExecutionStep:
        return self.append(StepType.ERROR, error=message, metadata=metadata or {})

    def to_list(self) -> list[dict]:
        return [step.model_dump(mode="json", exclude_none=True) for step in self._steps]
