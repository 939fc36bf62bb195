import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app import config
from app.api import chat, integrations, live, routes, webhooks
from app.core.broadcast import RunChannelHub
from app.core.executor import WorkflowExecutor
from app.core.scheduler import WorkflowScheduler
from app.db.database import SessionLocal, init_db
from app.integrations.composio import ComposioClient
from app.integrations.llm import ChatCompletionClient

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    broker = ComposioClient(
        api_key=config.COMPOSIO_API_KEY,
        base_url=config.COMPOSIO_BASE_URL,
        timeout=config.HTTP_TIMEOUT,
    )
    llm = ChatCompletionClient(
        api_key=config.LLM_API_KEY,
        model=config.LLM_MODEL,
        base_url=config.LLM_BASE_URL,
        timeout=config.HTTP_TIMEOUT,
    )
    hub = RunChannelHub()
    executor = WorkflowExecutor(SessionLocal, broker, llm, hub)
    scheduler = WorkflowScheduler(executor, SessionLocal, interval=config.SCHEDULER_INTERVAL)

    app.state.broker = broker
    app.state.llm = llm
    app.state.hub = hub
    app.state.executor = executor
    app.state.scheduler = scheduler

    if config.SCHEDULER_AUTOSTART:
        scheduler.start()
    yield
    scheduler.stop()
    await scheduler.wait_stopped()


app = FastAPI(title="Workflow Autopilot", lifespan=lifespan)
app.include_router(routes.router)
app.include_router(integrations.router)
app.include_router(chat.router)
app.include_router(webhooks.router)
app.include_router(live.router)


@app.get("/health")
def health():
    return {"status": "ok"}
