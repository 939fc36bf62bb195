import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from app import config
from app.api.deps import get_hub
from app.core.broadcast import RunChannelHub, channel_name
from app.core.models import TERMINAL_RUN_STATUSES, ChannelEvent
from app.db import repository
from app.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()

_TERMINAL = {s.value for s in TERMINAL_RUN_STATUSES}


def _is_terminal(message: dict) -> bool:
    return (
        message["event"] == ChannelEvent.STATUS_UPDATE.value
        and message["payload"].get("status") in _TERMINAL
    )


def _status_snapshot(run) -> dict:
    payload = {"run_id": run.id, "status": run.status}
    if run.error_message:
        payload["error_message"] = run.error_message
    return {
        "type": "broadcast",
        "event": ChannelEvent.STATUS_UPDATE.value,
        "payload": payload,
    }


@router.websocket("/ws/workflow-runs/{run_id}")
async def run_channel(
    websocket: WebSocket,
    run_id: str,
    api_key: str | None = None,
    db: Session = Depends(get_db),
    hub: RunChannelHub = Depends(get_hub),
):
    # Browsers cannot set headers on a WebSocket handshake
    if api_key != config.API_KEY:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # Subscribe before reading the run so a status change in between is queued
    queue = hub.subscribe(run_id)
    listener = getter = None
    try:
        run = repository.get_run(db, run_id)
        if run is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        logger.info("Subscriber joined %s", channel_name(run_id))
        if run.status in _TERMINAL:
            await websocket.send_json(_status_snapshot(run))
            await websocket.close()
            return

        listener = asyncio.create_task(websocket.receive())
        getter = asyncio.create_task(queue.get())
        while True:
            done, _ = await asyncio.wait(
                {listener, getter}, return_when=asyncio.FIRST_COMPLETED
            )
            if listener in done:
                if listener.result()["type"] == "websocket.disconnect":
                    logger.info("Subscriber left %s", channel_name(run_id))
                    break
                # Clients have nothing to say on this channel
                listener = asyncio.create_task(websocket.receive())
            if getter in done:
                message = getter.result()
                await websocket.send_json(message)
                if _is_terminal(message):
                    await websocket.close()
                    break
                getter = asyncio.create_task(queue.get())
    except WebSocketDisconnect:
        logger.info("Subscriber left %s", channel_name(run_id))
    finally:
        for task in (listener, getter):
            if task is not None:
                task.cancel()
        hub.unsubscribe(run_id, queue)
