from fastapi.requests import HTTPConnection

from app.core.broadcast import RunChannelHub
from app.core.executor import WorkflowExecutor
from app.core.scheduler import WorkflowScheduler
from app.integrations.composio import ComposioClient
from app.integrations.llm import ChatCompletionClient


def get_executor(conn: HTTPConnection) -> WorkflowExecutor:
    return conn.app.state.executor


def get_scheduler(conn: HTTPConnection) -> WorkflowScheduler:
    return conn.app.state.scheduler


def get_broker(conn: HTTPConnection) -> ComposioClient:
    return conn.app.state.broker


def get_hub(conn: HTTPConnection) -> RunChannelHub:
    return conn.app.state.hub


def get_llm(conn: HTTPConnection) -> ChatCompletionClient:
    return conn.app.state.llm
