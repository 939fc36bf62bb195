import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field

from app import config
from app.core.broadcast import RunChannelHub, channel_name, serialize_live_step
from app.core.errors import WorkflowError, WorkflowInactiveError, WorkflowNotFoundError
from app.core.models import ChannelEvent, LiveStepType, RunStatus, TriggeredBy
from app.core.prompts import build_system_prompt, build_user_prompt
from app.core.steps import ExecutionLog, ExecutionStep, result_error_message
from app.db import repository
from app.integrations.composio import active_toolkit_slugs
from app.integrations.llm import StepResult

logger = logging.getLogger(__name__)

# Always exposed so the model can plan and research without user connections
ROUTER_TOOLKIT = "composio"
SEARCH_TOOLKIT = "composio_search"


@dataclass
class ExecutionResult:
    success: bool
    output: str
    execution_time: int
    tool_calls: list[dict] = field(default_factory=list)
    error: str | None = None
    run_id: str | None = None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class WorkflowExecutor:
    def __init__(
        self,
        session_factory,
        broker,
        llm,
        hub: RunChannelHub,
        max_steps: int = config.SCHEDULED_MAX_STEPS,
        tool_limit: int = config.TOOL_LIMIT,
        max_attempts: int = config.EXECUTION_MAX_ATTEMPTS,
        retry_backoff: float = config.RETRY_BACKOFF_SECONDS,
    ):
        self.session_factory = session_factory
        self.broker = broker
        self.llm = llm
        self.hub = hub
        self.max_steps = max_steps
        self.tool_limit = tool_limit
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._in_flight: Counter = Counter()
        self._background: set[asyncio.Task] = set()

    def is_running(self, workflow_id: str) -> bool:
        return self._in_flight[workflow_id] > 0

    def submit(self, workflow_id: str, user_id: str, **kwargs) -> asyncio.Task:
        """Start an execution without awaiting it; failures only reach the log."""
        task = asyncio.create_task(self.execute_workflow(workflow_id, user_id, **kwargs))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Detached workflow execution was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Detached workflow execution failed: %r", exc)
            return
        result = task.result()
        if not result.success:
            logger.error("Detached run %s failed: %s", result.run_id, result.error)

    async def execute_workflow(
        self,
        workflow_id: str,
        user_id: str,
        *,
        triggered_by: TriggeredBy = TriggeredBy.MANUAL,
        input_data: dict | None = None,
        run_id: str | None = None,
    ) -> ExecutionResult:
        self._in_flight[workflow_id] += 1
        db = self.session_factory()
        try:
            return await self._execute(
                db, workflow_id, user_id, triggered_by, input_data, run_id
            )
        finally:
            db.close()
            self._in_flight[workflow_id] -= 1
            if self._in_flight[workflow_id] <= 0:
                del self._in_flight[workflow_id]

    async def _execute(self, db, workflow_id, user_id, triggered_by, input_data, run_id):
        started = time.monotonic()
        log = ExecutionLog()
        run_input = {"triggered_by": triggered_by.value, **(input_data or {})}
        run = None
        logger.info("Starting execution for workflow %s", workflow_id)

        try:
            workflow = repository.get_workflow(db, workflow_id)
            if not workflow:
                raise WorkflowNotFoundError(workflow_id)
            if not workflow.active:
                raise WorkflowInactiveError(workflow_id)

            run = self._start_run(db, workflow_id, run_input, run_id)
            self._record(
                db,
                run.id,
                log.ai_generation(
                    None,
                    {
                        "action": "workflow_start",
                        "workflow_name": workflow.name,
                        "workflow_description": workflow.description,
                    },
                ),
                LiveStepType.AI_GENERATION,
                f"Starting workflow {workflow.name}",
            )

            accounts = await self.broker.list_connected_accounts(user_id)
            connected = active_toolkit_slugs(accounts)
            if not connected:
                logger.info("No active accounts found for user %s", user_id)
            toolkits = connected + [
                slug for slug in (ROUTER_TOOLKIT, SEARCH_TOOLKIT) if slug not in connected
            ]
            self._record(
                db,
                run.id,
                log.ai_generation(
                    None,
                    {
                        "action": "tools_available",
                        "connected_toolkits": toolkits,
                        "active_accounts_count": len(connected),
                    },
                ),
                LiveStepType.AI_GENERATION,
                f"Connected toolkits: {', '.join(toolkits)}",
            )

            tools = await self.broker.get_tools(user_id, toolkits, self.tool_limit)
            logger.info("Run %s has %d tools available", run.id, len(tools))

            system_prompt = build_system_prompt(
                workflow, toolkits, ROUTER_TOOLKIT, self.max_steps
            )
            user_prompt = build_user_prompt(workflow)
            self._record(
                db,
                run.id,
                log.ai_generation(
                    None,
                    {
                        "action": "ai_execution_start",
                        "system_prompt": system_prompt[:500] + "...",
                        "user_prompt": user_prompt,
                        "available_tools_count": len(tools),
                        "available_tools": list(tools)[:10],
                    },
                ),
                LiveStepType.AI_GENERATION,
                "Starting AI execution...",
            )

            generation = await self._generate_with_retry(
                db, run.id, log, system_prompt, user_prompt, tools
            )

            execution_time = _elapsed_ms(started)
            completion_meta = {
                "action": "ai_execution_complete",
                "total_steps": len(generation.steps),
                "final_response": generation.text,
                "execution_time": execution_time,
            }
            self._record(
                db,
                run.id,
                log.ai_generation(generation.text, completion_meta),
                LiveStepType.COMPLETION,
                f"Workflow completed successfully in {execution_time}ms",
            )

            tool_calls = [call.to_dict() for call in generation.tool_calls]
            self._finish(
                db,
                run.id,
                RunStatus.COMPLETED,
                log,
                output_data={
                    "result": generation.text,
                    "tool_calls": tool_calls,
                    "execution_time": execution_time,
                },
            )
            logger.info("Run %s completed in %dms", run.id, execution_time)
            return ExecutionResult(
                success=True,
                output=generation.text,
                execution_time=execution_time,
                tool_calls=tool_calls,
                run_id=run.id,
            )

        except Exception as e:
            execution_time = _elapsed_ms(started)
            message = str(e) or type(e).__name__
            if isinstance(e, WorkflowError):
                logger.warning("Workflow %s failed: %s", workflow_id, message)
            else:
                logger.exception("Workflow %s failed", workflow_id)

            if isinstance(e, WorkflowNotFoundError):
                # Nothing to attach a run to
                return ExecutionResult(
                    success=False, output="", execution_time=execution_time, error=message
                )

            db.rollback()
            if run is None:
                run = self._fallback_run(db, workflow_id, run_input, run_id)
            if run is None:
                return ExecutionResult(
                    success=False, output="", execution_time=execution_time, error=message
                )

            self._record(
                db,
                run.id,
                log.error(
                    message,
                    {
                        "action": "execution_error",
                        "error_type": type(e).__name__,
                        "execution_time": execution_time,
                    },
                ),
                LiveStepType.ERROR,
                message,
            )
            try:
                self._finish(db, run.id, RunStatus.FAILED, log, error_message=message)
            except Exception:
                logger.exception("Failed to record failure of run %s", run.id)
            return ExecutionResult(
                success=False,
                output="",
                execution_time=execution_time,
                error=message,
                run_id=run.id,
            )

    def _start_run(self, db, workflow_id: str, run_input: dict, run_id: str | None):
        if run_id is not None:
            run = repository.get_run(db, run_id)
            if run is None:
                raise WorkflowError(f"Run {run_id} not found")
            repository.mark_run_running(db, run_id)
        else:
            run = repository.create_run(
                db, workflow_id, input_data=run_input, status=RunStatus.RUNNING.value
            )
        repository.touch_last_run(db, workflow_id, run.started_at)
        self._publish_status(run.id, RunStatus.RUNNING)
        return run

    def _fallback_run(self, db, workflow_id: str, run_input: dict, run_id: str | None):
        try:
            if run_id is not None:
                run = repository.get_run(db, run_id)
                if run is not None:
                    return run
            return repository.create_run(
                db, workflow_id, input_data=run_input, status=RunStatus.RUNNING.value
            )
        except Exception:
            logger.exception("Could not create a run record for workflow %s", workflow_id)
            db.rollback()
            return None

    async def _generate_with_retry(self, db, run_id, log, system_prompt, user_prompt, tools):
        async def on_step_finish(step: StepResult) -> None:
            # Recording is best-effort and must not reach the retry loop
            try:
                self._record_model_turn(db, run_id, log, step)
            except Exception:
                logger.exception("Failed to record model turn for run %s", run_id)

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.llm.generate_text(
                    system=system_prompt,
                    prompt=user_prompt,
                    tools=tools,
                    max_steps=self.max_steps,
                    on_step_finish=on_step_finish,
                )
            except Exception as e:
                remaining = self.max_attempts - attempt
                logger.warning(
                    "Completion call failed for run %s (attempt %d/%d): %s",
                    run_id,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if remaining == 0:
                    self._record(
                        db,
                        run_id,
                        log.error(
                            f"API call failed after {self.max_attempts} attempts: {e}",
                            {"error_type": "api_failure", "final_attempt": True},
                        ),
                        LiveStepType.ERROR,
                        f"API call failed after {self.max_attempts} attempts",
                    )
                    raise
                self._record(
                    db,
                    run_id,
                    log.error(
                        f"API call failed, retrying... ({attempt}/{self.max_attempts}): {e}",
                        {"error_type": "api_retry", "remaining_retries": remaining},
                    ),
                    LiveStepType.ERROR,
                    f"API call failed, retrying ({remaining} attempts left)",
                )
                await asyncio.sleep(attempt * self.retry_backoff)

    def _record_model_turn(self, db, run_id: str, log: ExecutionLog, step: StepResult) -> None:
        metadata = {
            "step_type": step.step_type,
            "is_continued": step.is_continued,
            "finish_reason": step.finish_reason,
            "tool_calls_count": len(step.tool_calls),
            "tool_results_count": len(step.tool_results),
        }
        self._record(
            db, run_id, log.ai_generation(step.text, metadata), LiveStepType.AI_GENERATION, step.text
        )

        results = {result.tool_call_id: result for result in step.tool_results}
        for call in step.tool_calls:
            self._record(
                db,
                run_id,
                log.tool_call(call, {"tool_call_type": "initiated"}),
                LiveStepType.TOOL_CALL,
                f"Calling {call.tool_name}",
                {
                    "tool_call_type": "initiated",
                    "tool_name": call.tool_name,
                    "arguments": list(call.arguments)
                    if isinstance(call.arguments, dict)
                    else [],
                },
            )
            result = results.get(call.tool_call_id)
            if result is None:
                continue
            entry = log.tool_result(result)
            success = entry.tool_result["success"]
            content = (
                "Tool executed successfully"
                if success
                else f"Tool failed: {result_error_message(result.result)}"
            )
            self._record(
                db,
                run_id,
                entry,
                LiveStepType.TOOL_RESULT,
                content,
                {
                    **entry.metadata,
                    "success": success,
                    "tool_call_id": call.tool_call_id,
                },
            )

        logger.info("Run %s step %d completed: %.100s", run_id, len(log), step.text)

    def _record(
        self,
        db,
        run_id: str,
        step: ExecutionStep,
        live_type: LiveStepType,
        content: str | None,
        metadata: dict | None = None,
    ) -> None:
        """Mirror a log entry to the live step store and the run channel."""
        try:
            live_step = repository.create_live_step(
                db,
                run_id,
                step.step_number,
                live_type.value,
                content,
                step.timestamp,
                metadata if metadata is not None else step.metadata,
            )
            self.hub.publish(
                run_id, ChannelEvent.STEP_UPDATE, {"new": serialize_live_step(live_step)}
            )
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to broadcast step %d on %s", step.step_number, channel_name(run_id)
            )

    def _finish(self, db, run_id: str, status: RunStatus, log: ExecutionLog, **fields) -> None:
        if not repository.finish_run(db, run_id, status.value, log.to_list(), **fields):
            logger.warning("Run %s already finished; keeping its terminal state", run_id)
            return
        self._publish_status(run_id, status, fields.get("error_message"))

    def _publish_status(self, run_id: str, status: RunStatus, error: str | None = None) -> None:
        payload = {"run_id": run_id, "status": status.value}
        if error:
            payload["error_message"] = error
        try:
            self.hub.publish(run_id, ChannelEvent.STATUS_UPDATE, payload)
        except Exception:
            logger.exception("Failed to publish status of run %s", run_id)
