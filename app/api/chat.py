import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.auth import get_current_user, verify_api_key
from app.api.deps import get_broker, get_llm
from app.api.schemas import (
    ChatCreate,
    ChatMessageCreate,
    ChatMessageResponse,
    ChatReply,
    ChatRequest,
    ChatResponse,
    ChatUpdate,
)
from app.core.chat import assistant_message, run_chat
from app.core.errors import CompletionError
from app.db import repository
from app.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_key)])


def chat_response(chat) -> ChatResponse:
    return ChatResponse(
        id=chat.id,
        user_id=chat.user_id,
        title=chat.title,
        metadata=chat.extra or {},
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        last_message_at=chat.last_message_at,
    )


def message_response(message) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=message.id,
        chat_id=message.chat_id,
        role=message.role,
        content=message.content,
        tool_calls=message.tool_calls,
        tool_results=message.tool_results,
        metadata=message.extra or {},
        created_at=message.created_at,
    )


def _owned_chat(db: Session, chat_id: str, user_id: str):
    chat = repository.get_chat(db, chat_id, user_id=user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


def _title(raw: str) -> str:
    title = raw.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    return title


# ── Chat turns ──────────────────────────────────────────────────────────────


@router.post("/chat", response_model=ChatReply)
async def chat(
    request: ChatRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    broker=Depends(get_broker),
    llm=Depends(get_llm),
):
    if request.chat_id:
        _owned_chat(db, request.chat_id, user_id)

    try:
        result = await run_chat(
            broker, llm, user_id, [turn.model_dump() for turn in request.messages]
        )
    except CompletionError as e:
        logger.error("Chat for user %s failed: %s", user_id, e)
        raise HTTPException(status_code=502, detail=str(e))

    reply = assistant_message(result)
    message_id = None
    if request.chat_id:
        # The reply is returned even when it cannot be stored
        try:
            message = repository.create_chat_message(
                db, request.chat_id, role="assistant", **reply
            )
            message_id = message.id
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to save assistant message for chat %s", request.chat_id)

    return ChatReply(
        text=result.text,
        finish_reason=result.finish_reason,
        steps=len(result.steps),
        tool_calls=reply["tool_calls"] or [],
        tool_results=reply["tool_results"] or [],
        message_id=message_id,
    )


# ── Chat history ────────────────────────────────────────────────────────────


@router.get("/chats", response_model=list[ChatResponse])
def list_chats(db: Session = Depends(get_db), user_id: str = Depends(get_current_user)):
    return [chat_response(c) for c in repository.list_chats(db, user_id)]


@router.post("/chats", response_model=ChatResponse)
def create_chat(
    chat: ChatCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    created = repository.create_chat(db, user_id, _title(chat.title), chat.metadata)
    logger.info("Created chat %s for user %s", created.id, user_id)
    return chat_response(created)


@router.get("/chats/{chat_id}", response_model=ChatResponse)
def get_chat(
    chat_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return chat_response(_owned_chat(db, chat_id, user_id))


@router.put("/chats/{chat_id}", response_model=ChatResponse)
def rename_chat(
    chat_id: str,
    update: ChatUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    _owned_chat(db, chat_id, user_id)
    return chat_response(repository.update_chat_title(db, chat_id, _title(update.title)))


@router.delete("/chats/{chat_id}")
def delete_chat(
    chat_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    _owned_chat(db, chat_id, user_id)
    repository.delete_chat(db, chat_id)
    logger.info("Deleted chat %s", chat_id)
    return {"success": True}


@router.get("/chats/{chat_id}/messages", response_model=list[ChatMessageResponse])
def list_chat_messages(
    chat_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    _owned_chat(db, chat_id, user_id)
    return [message_response(m) for m in repository.list_chat_messages(db, chat_id)]


@router.post("/chats/{chat_id}/messages", response_model=ChatMessageResponse)
def create_chat_message(
    chat_id: str,
    message: ChatMessageCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    _owned_chat(db, chat_id, user_id)
    created = repository.create_chat_message(
        db,
        chat_id,
        role=message.role,
        content=message.content,
        tool_calls=message.tool_calls,
        tool_results=message.tool_results,
        metadata=message.metadata,
    )
    return message_response(created)
