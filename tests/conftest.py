import os
import tempfile

# Must be set before the app modules read their configuration
os.environ.setdefault(
    "AUTOPILOT_DB_PATH", os.path.join(tempfile.mkdtemp(), "autopilot-test.db")
)
os.environ["AUTOPILOT_SCHEDULER_AUTOSTART"] = "0"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.broadcast import RunChannelHub  # noqa: E402
from app.core.errors import BrokerError, CompletionError  # noqa: E402
from app.core.executor import WorkflowExecutor  # noqa: E402
from app.core.scheduler import WorkflowScheduler  # noqa: E402
from app.db import tables  # noqa: E402,F401 - registers table models
from app.db.database import Base, get_db  # noqa: E402
from app.integrations.llm import (  # noqa: E402
    GenerationResult,
    StepResult,
    Tool,
    ToolResult,
)
from app.main import app  # noqa: E402


class FakeBroker:
    """Stands in for ComposioClient; records every call it receives."""

    def __init__(self):
        self.accounts = [
            {"id": "ca_gmail", "status": "ACTIVE", "toolkit": {"slug": "gmail"}},
            {"id": "ca_slack", "status": "EXPIRED", "toolkit": {"slug": "slack"}},
        ]
        self.trigger_types = {
            "gmail": [
                {
                    "slug": "GMAIL_NEW_GMAIL_MESSAGE",
                    "name": "New Gmail Message",
                    "description": "Fires when a new message arrives",
                    "config": {"properties": {"labelIds": {"type": "string"}}},
                    "payload": {},
                }
            ]
        }
        self.executed = []
        self.created_triggers = []
        self.deleted_triggers = []
        self.deleted_connections = []
        self.fail_create = False
        self.toolkits = [
            {"slug": "gmail", "name": "Gmail", "meta": {"tools_count": 40, "triggers_count": 2}},
            {"slug": "notion", "name": "Notion", "meta": {"tools_count": 25}},
        ]

    async def list_connected_accounts(self, user_id):
        return self.accounts

    async def get_tools(self, user_id, toolkits, limit=100):
        async def send_email(arguments):
            self.executed.append(("GMAIL_SEND_EMAIL", arguments))
            return {"successful": True, "data": {"id": "msg_1"}}

        return {
            "GMAIL_SEND_EMAIL": Tool(
                name="GMAIL_SEND_EMAIL",
                description="Send an email",
                parameters={"type": "object", "properties": {}},
                execute=send_email,
            )
        }

    async def list_toolkits(self):
        return self.toolkits

    async def list_trigger_types(self, toolkit):
        return self.trigger_types.get(toolkit, [])

    async def create_trigger(self, user_id, trigger_slug, connected_account_id, trigger_config):
        if self.fail_create:
            raise BrokerError("trigger upsert rejected", status_code=400)
        trigger_id = f"ti_{len(self.created_triggers) + 1}"
        self.created_triggers.append(
            {
                "id": trigger_id,
                "user_id": user_id,
                "slug": trigger_slug,
                "connected_account_id": connected_account_id,
                "config": trigger_config,
            }
        )
        return trigger_id

    async def delete_trigger(self, broker_trigger_id):
        self.deleted_triggers.append(broker_trigger_id)

    async def initiate_connection(self, user_id, auth_config_id, callback_url):
        return {"id": "ca_new", "redirect_url": f"https://auth.example.com/{auth_config_id}"}

    async def delete_connection(self, connection_id):
        self.deleted_connections.append(connection_id)


class FakeLLM:
    """Scripted model: optional tool calls on the first turn, then a final reply."""

    def __init__(self):
        self.reply = "Sent the daily digest."
        self.tool_calls = []
        self.failures = 0
        self.calls = 0
        self.prompts = []
        self.max_steps = []

    async def generate_text(
        self, *, system, tools, max_steps, prompt=None, messages=None, on_step_finish=None
    ):
        self.calls += 1
        self.prompts.append((system, prompt if messages is None else messages))
        self.max_steps.append(max_steps)
        if self.calls <= self.failures:
            raise CompletionError("upstream unavailable")

        steps = []
        if self.tool_calls:
            results = [
                ToolResult(
                    call.tool_call_id,
                    call.tool_name,
                    await tools[call.tool_name].execute(call.arguments),
                )
                for call in self.tool_calls
            ]
            steps.append(
                StepResult(
                    text="",
                    step_type="initial",
                    finish_reason="tool_calls",
                    tool_calls=list(self.tool_calls),
                    tool_results=results,
                    is_continued=True,
                )
            )
        steps.append(
            StepResult(
                text=self.reply,
                step_type="tool-result" if steps else "initial",
                finish_reason="stop",
            )
        )
        for step in steps:
            if on_step_finish is not None:
                await on_step_finish(step)
        return GenerationResult(
            text=self.reply,
            steps=steps,
            tool_calls=list(self.tool_calls),
            finish_reason="stop",
        )


@pytest.fixture()
def session_factory(tmp_path):
    """A fresh temporary database per test."""
    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def broker():
    return FakeBroker()


@pytest.fixture()
def llm():
    return FakeLLM()


@pytest.fixture()
def hub():
    return RunChannelHub()


@pytest.fixture()
def executor(session_factory, broker, llm, hub):
    return WorkflowExecutor(session_factory, broker, llm, hub, retry_backoff=0)


@pytest.fixture()
def client(session_factory, broker, llm, hub, executor):
    """Provide a TestClient wired to the temporary database and fakes."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        app.state.broker = broker
        app.state.llm = llm
        app.state.hub = hub
        app.state.executor = executor
        app.state.scheduler = WorkflowScheduler(executor, session_factory, interval=3600)
        yield c
    app.dependency_overrides.clear()
