"""Interactive chat turns over the user's connected toolkits.

A turn resolves tools the same way a workflow run does, but a broker
failure only leaves the model without tools instead of failing the turn.
"""
import logging
from datetime import datetime, timezone

from app import config
from app.core.errors import BrokerError
from app.core.executor import ROUTER_TOOLKIT, SEARCH_TOOLKIT
from app.core.prompts import build_chat_system_prompt
from app.core.steps import is_error_result, jsonable, result_error_message
from app.integrations.composio import active_toolkit_slugs
from app.integrations.llm import GenerationResult, StepResult

logger = logging.getLogger(__name__)


async def resolve_chat_tools(broker, user_id: str, tool_limit: int) -> tuple[list[str], dict]:
    toolkits: list[str] = []
    try:
        accounts = await broker.list_connected_accounts(user_id)
        toolkits = active_toolkit_slugs(accounts)
        toolkits += [s for s in (ROUTER_TOOLKIT, SEARCH_TOOLKIT) if s not in toolkits]
        tools = await broker.get_tools(user_id, toolkits, tool_limit)
    except BrokerError as e:
        logger.warning("Failed to fetch tools for user %s, chatting without: %s", user_id, e)
        return toolkits, {}
    logger.info("Chat for user %s has %d tools from %s", user_id, len(tools), toolkits)
    return toolkits, tools


def _log_step(step: StepResult) -> None:
    logger.info(
        "Chat step %s finished (continued: %s, reason: %s)",
        step.step_type,
        step.is_continued,
        step.finish_reason or "none",
    )
    if step.text:
        logger.info("AI response (%d chars): %.150s", len(step.text), step.text)
    for call in step.tool_calls:
        logger.info("Tool call %s [%s]: %.200s", call.tool_name, call.tool_call_id, call.arguments)
    for result in step.tool_results:
        if is_error_result(result.result):
            logger.warning(
                "Tool %s failed: %s", result.tool_name, result_error_message(result.result)
            )
        else:
            logger.info("Tool %s succeeded: %.200s", result.tool_name, result.result)


async def run_chat(
    broker,
    llm,
    user_id: str,
    messages: list[dict],
    max_steps: int = config.CHAT_MAX_STEPS,
    tool_limit: int = config.TOOL_LIMIT,
) -> GenerationResult:
    toolkits, tools = await resolve_chat_tools(broker, user_id, tool_limit)
    system = build_chat_system_prompt(toolkits, ROUTER_TOOLKIT, max_steps)

    async def on_step_finish(step: StepResult) -> None:
        _log_step(step)

    result = await llm.generate_text(
        system=system,
        messages=messages,
        tools=tools,
        max_steps=max_steps,
        on_step_finish=on_step_finish,
    )
    logger.info(
        "Chat for user %s finished after %d steps (%s)",
        user_id,
        len(result.steps),
        result.finish_reason,
    )
    return result


def assistant_message(result: GenerationResult) -> dict:
    """Fields of the stored assistant message for a finished turn."""
    tool_results = [
        {
            "tool_call_id": r.tool_call_id,
            "tool_name": r.tool_name,
            "result": jsonable(r.result),
            "success": not is_error_result(r.result),
        }
        for step in result.steps
        for r in step.tool_results
    ]
    return {
        "content": result.text,
        "tool_calls": [jsonable(call.to_dict()) for call in result.tool_calls] or None,
        "tool_results": tool_results or None,
        "metadata": {
            "totalSteps": len(result.steps),
            "finishReason": result.finish_reason,
            "toolsUsed": [call.tool_name for call in result.tool_calls],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }
