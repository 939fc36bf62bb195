"""Multi-step tool-calling client for OpenAI-compatible chat completions.

The model may answer with function calls; each call is executed through the
matching ``Tool``, the results are fed back as ``tool`` messages and the
model is asked again, until it answers without calls or the step budget is
spent. ``on_step_finish`` is awaited after every model turn, in order.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from app.core.errors import CompletionError

logger = logging.getLogger(__name__)


@dataclass
class Tool:
    name: str
    description: str
    parameters: dict
    execute: Callable[[dict], Awaitable[Any]]

    def to_function_spec(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCall:
    tool_call_id: str
    tool_name: str
    arguments: dict

    def to_dict(self) -> dict:
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "arguments": self.arguments,
        }


@dataclass
class ToolResult:
    tool_call_id: str
    tool_name: str
    result: Any


@dataclass
class StepResult:
    text: str
    step_type: str
    finish_reason: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    is_continued: bool = False


@dataclass
class GenerationResult:
    text: str
    steps: list[StepResult]
    tool_calls: list[ToolCall]
    finish_reason: str | None = None


StepCallback = Callable[[StepResult], Awaitable[None]]


class ChatCompletionClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def generate_text(
        self,
        *,
        system: str,
        tools: dict[str, Tool],
        max_steps: int,
        prompt: str | None = None,
        messages: list[dict] | None = None,
        on_step_finish: StepCallback | None = None,
    ) -> GenerationResult:
        """Run the tool loop for a single ``prompt`` or a prior conversation.

        ``messages`` is a list of ``{"role", "content"}`` turns and takes the
        place of ``prompt`` when given.
        """
        if messages is None:
            if prompt is None:
                raise ValueError("Either prompt or messages is required")
            messages = [{"role": "user", "content": prompt}]
        messages = [{"role": "system", "content": system}, *messages]
        steps: list[StepResult] = []
        all_calls: list[ToolCall] = []

        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            for index in range(max_steps):
                payload = {"model": self.model, "messages": messages}
                if tools:
                    payload["tools"] = [t.to_function_spec() for t in tools.values()]
                choice = await self._complete(client, payload)
                message = choice.get("message") or {}
                text = message.get("content") or ""
                calls = [_parse_tool_call(raw) for raw in message.get("tool_calls") or []]

                results = []
                if calls:
                    messages.append(
                        {
                            "role": "assistant",
                            "content": text,
                            "tool_calls": message["tool_calls"],
                        }
                    )
                    for call in calls:
                        result = await self._run_tool(tools, call)
                        results.append(ToolResult(call.tool_call_id, call.tool_name, result))
                        messages.append(
                            {
                                "role": "tool",
                                "tool_call_id": call.tool_call_id,
                                "content": _tool_message_content(result),
                            }
                        )

                step = StepResult(
                    text=text,
                    step_type="initial" if index == 0 else "tool-result",
                    finish_reason=choice.get("finish_reason"),
                    tool_calls=calls,
                    tool_results=results,
                    is_continued=bool(calls) and index + 1 < max_steps,
                )
                steps.append(step)
                all_calls.extend(calls)
                if on_step_finish is not None:
                    await on_step_finish(step)
                if not calls:
                    break

        last = steps[-1]
        return GenerationResult(
            text=last.text,
            steps=steps,
            tool_calls=all_calls,
            finish_reason=last.finish_reason,
        )

    async def _complete(self, client: httpx.AsyncClient, payload: dict) -> dict:
        resp = await client.post("/chat/completions", json=payload)
        if resp.status_code != 200:
            raise CompletionError(
                f"Completion request failed ({resp.status_code}): {resp.text}"
            )
        try:
            choices = resp.json()["choices"]
        except (ValueError, KeyError) as e:
            raise CompletionError(f"Malformed completion response: {e}") from e
        if not choices:
            raise CompletionError("Completion response did not contain choices")
        return choices[0]

    async def _run_tool(self, tools: dict[str, Tool], call: ToolCall) -> Any:
        tool = tools.get(call.tool_name)
        if tool is None:
            return {"error": f"Unknown tool: {call.tool_name}"}
        try:
            return await tool.execute(call.arguments)
        except Exception as e:
            # Handed back to the model as an error result
            logger.warning("Tool %s raised: %s", call.tool_name, e)
            return e


def _parse_tool_call(raw: dict) -> ToolCall:
    function = raw.get("function") or {}
    arguments = function.get("arguments") or "{}"
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError:
            arguments = {"_raw": arguments}
    # Tools take keyword-style arguments; "null" or a bare value is not an object
    if arguments is None:
        arguments = {}
    elif not isinstance(arguments, dict):
        arguments = {"_raw": arguments}
    return ToolCall(
        tool_call_id=raw.get("id", ""),
        tool_name=function.get("name", ""),
        arguments=arguments,
    )


def _tool_message_content(result: Any) -> str:
    if isinstance(result, Exception):
        return json.dumps({"error": str(result)})
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)
