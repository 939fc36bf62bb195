import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app import config
from app.api.auth import get_current_user, verify_api_key
from app.api.deps import get_broker
from app.api.schemas import (
    AvailableTriggersResponse,
    ConnectionInitiate,
    ConnectionResponse,
    TriggerCreate,
    TriggerResponse,
    ToolkitResponse,
    TriggerType,
)
from app.core.errors import BrokerError
from app.core.lifecycle import remove_trigger
from app.core.models import WorkflowType
from app.db import repository
from app.db.database import get_db
from app.integrations.composio import ComposioClient, active_toolkit_slugs

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_key)])


def trigger_response(trigger) -> TriggerResponse:
    return TriggerResponse(
        id=trigger.id,
        workflow_id=trigger.workflow_id,
        user_id=trigger.user_id,
        broker_trigger_id=trigger.broker_trigger_id,
        toolkit_slug=trigger.toolkit_slug,
        trigger_name=trigger.trigger_name,
        trigger_config=trigger.trigger_config or {},
        connected_account_id=trigger.connected_account_id,
        active=trigger.active,
        metadata=trigger.extra or {},
        created_at=trigger.created_at,
        updated_at=trigger.updated_at,
    )


def _trigger_type(item: dict, toolkit: str) -> TriggerType:
    return TriggerType(
        name=item.get("name") or item["slug"],
        slug=item["slug"],
        description=item.get("description") or f"Trigger for {toolkit}",
        toolkit=toolkit,
        schema=item.get("config") or {},
        payload=item.get("payload") or {},
    )


def _owned_workflow(db: Session, workflow_id: str, user_id: str):
    wf = repository.get_workflow(db, workflow_id, user_id=user_id)
    if not wf:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return wf


# ── Toolkits ────────────────────────────────────────────────────────────────

# Offered when the broker catalog is unavailable or empty
FALLBACK_TOOLKITS = [
    ("Gmail", "gmail", "Access and manage Gmail emails", ["communication", "email"]),
    ("GitHub", "github", "Manage GitHub repositories and workflows", ["development"]),
    ("Notion", "notion", "Access and manage Notion databases and pages", ["productivity"]),
    ("Slack", "slack", "Send messages and manage Slack channels", ["communication"]),
    ("Linear", "linear", "Manage Linear projects and issues", ["project-management"]),
    ("HubSpot", "hubspot", "Manage HubSpot contacts and deals", ["crm", "marketing"]),
    (
        "Google Calendar",
        "googlecalendar",
        "Access and manage Google Calendar events",
        ["scheduling"],
    ),
    ("Google Docs", "googledocs", "Create and manage Google Docs", ["documentation"]),
    ("Google Sheets", "googlesheets", "Access and manage Google Sheets", ["spreadsheets"]),
    ("Google Drive", "googledrive", "Access and manage Google Drive files", ["file-management"]),
]


def _toolkit_categories(meta: dict) -> list[str]:
    categories = []
    if meta.get("tools_count") or meta.get("toolsCount"):
        categories.append("tools")
    if meta.get("triggers_count") or meta.get("triggersCount"):
        categories.append("triggers")
    return categories


@router.get("/toolkits", response_model=list[ToolkitResponse])
async def list_toolkits(
    user_id: str = Depends(get_current_user),
    broker: ComposioClient = Depends(get_broker),
):
    connections = {}
    try:
        accounts = await broker.list_connected_accounts(user_id)
    except BrokerError as e:
        logger.warning("Failed to fetch connections for user %s: %s", user_id, e)
        accounts = []
    for account in accounts:
        slug = (account.get("toolkit") or {}).get("slug")
        if slug in active_toolkit_slugs([account]):
            connections[slug] = account.get("id")

    try:
        items = await broker.list_toolkits()
    except BrokerError as e:
        logger.warning("Failed to fetch toolkits, using fallback: %s", e)
        items = []

    toolkits = [
        ToolkitResponse(
            name=item.get("name") or item["slug"],
            slug=item["slug"],
            description=f"Access tools and triggers from {item.get('name') or item['slug']}",
            categories=_toolkit_categories(item.get("meta") or {}),
            is_connected=item["slug"] in connections,
            connection_id=connections.get(item["slug"]),
        )
        for item in items
        if item.get("slug")
    ]
    if toolkits:
        return toolkits
    return [
        ToolkitResponse(
            name=name,
            slug=slug,
            description=description,
            categories=categories,
            is_connected=slug in connections,
            connection_id=connections.get(slug),
        )
        for name, slug, description, categories in FALLBACK_TOOLKITS
    ]


# ── Trigger catalog ─────────────────────────────────────────────────────────


@router.get("/triggers", response_model=AvailableTriggersResponse)
async def available_triggers(
    user_id: str = Depends(get_current_user),
    broker: ComposioClient = Depends(get_broker),
):
    try:
        accounts = await broker.list_connected_accounts(user_id)
    except BrokerError as e:
        raise HTTPException(status_code=502, detail=str(e))

    toolkits = active_toolkit_slugs(accounts)
    if not toolkits:
        return AvailableTriggersResponse(
            triggers=[], connected_accounts=[], message="No connected integrations found"
        )

    triggers = []
    for toolkit in toolkits:
        try:
            items = await broker.list_trigger_types(toolkit)
        except BrokerError as e:
            logger.warning("Failed to fetch triggers for %s: %s", toolkit, e)
            continue
        triggers.extend(_trigger_type(item, toolkit) for item in items)

    connected = [
        {
            "id": a.get("id"),
            "toolkit": (a.get("toolkit") or {}).get("slug"),
            "status": a.get("status"),
        }
        for a in accounts
        if a.get("status") == "ACTIVE" and not a.get("is_disabled")
    ]
    return AvailableTriggersResponse(triggers=triggers, connected_accounts=connected)


@router.get("/triggers/{toolkit}", response_model=list[TriggerType])
async def toolkit_triggers(
    toolkit: str,
    _: str = Depends(get_current_user),
    broker: ComposioClient = Depends(get_broker),
):
    try:
        items = await broker.list_trigger_types(toolkit)
    except BrokerError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [_trigger_type(item, toolkit) for item in items]


# ── Workflow triggers ───────────────────────────────────────────────────────


@router.get("/workflows/{workflow_id}/triggers", response_model=list[TriggerResponse])
def list_workflow_triggers(
    workflow_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    _owned_workflow(db, workflow_id, user_id)
    return [trigger_response(t) for t in repository.list_triggers(db, workflow_id)]


@router.post("/workflows/{workflow_id}/triggers", response_model=TriggerResponse)
def create_workflow_trigger(
    workflow_id: str,
    trigger: TriggerCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    wf = _owned_workflow(db, workflow_id, user_id)
    if wf.type != WorkflowType.TRIGGER:
        raise HTTPException(
            status_code=400,
            detail='Workflow must be of type "trigger" to add triggers',
        )

    created = repository.create_trigger(
        db,
        workflow_id=workflow_id,
        user_id=user_id,
        toolkit_slug=trigger.toolkit_slug,
        trigger_name=trigger.trigger_name,
        connected_account_id=trigger.connected_account_id,
        trigger_config=trigger.trigger_config,
        metadata=trigger.metadata,
    )
    logger.info("Created trigger %s for workflow %s", created.id, workflow_id)
    return trigger_response(created)


@router.delete("/workflows/{workflow_id}/triggers/{trigger_id}")
async def delete_workflow_trigger(
    workflow_id: str,
    trigger_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    broker: ComposioClient = Depends(get_broker),
):
    _owned_workflow(db, workflow_id, user_id)
    trigger = repository.get_trigger(db, trigger_id, workflow_id=workflow_id)
    if not trigger:
        raise HTTPException(status_code=404, detail="Trigger not found")
    await remove_trigger(db, broker, trigger)
    return {"success": True}


# ── Connections ─────────────────────────────────────────────────────────────


@router.get("/connections")
async def list_connections(
    user_id: str = Depends(get_current_user),
    broker: ComposioClient = Depends(get_broker),
):
    try:
        return await broker.list_connected_accounts(user_id)
    except BrokerError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/connections/initiate", response_model=ConnectionResponse)
async def initiate_connection(
    request: ConnectionInitiate,
    user_id: str = Depends(get_current_user),
    broker: ComposioClient = Depends(get_broker),
):
    callback_url = f"{config.PUBLIC_URL}/connections/callback"
    try:
        connection = await broker.initiate_connection(
            user_id, request.auth_config_id, callback_url
        )
    except BrokerError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return ConnectionResponse(
        redirect_url=connection["redirect_url"], connection_id=connection["id"]
    )


@router.delete("/connections/{connection_id}")
async def delete_connection(
    connection_id: str,
    _: str = Depends(get_current_user),
    broker: ComposioClient = Depends(get_broker),
):
    try:
        await broker.delete_connection(connection_id)
    except BrokerError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": True, "message": "Connection deleted successfully"}
