"""
HTTP routes for the backend API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from labhub import gemini
from labhub.auth import authenticate, issue_token
from labhub.chat.gateway import delivered_event
from labhub.chat.registry import ChannelRegistry
from labhub.chat.store import MessageStore
from labhub.config import Settings, get_settings
from labhub.db import DbClient
from labhub.dependencies import get_db_client, get_message_store, get_registry
from labhub.enums import Channel
from labhub.errors import AuthError, StorageError, ValidationError
from labhub.schemas import (
    ChatMessageRequest,
    ChatMessageResponse,
    ClearResponse,
    DeleteResponse,
    GeminiRequest,
    GeminiResponse,
    LoginRequest,
    LoginResponse,
    NoteCreateRequest,
    NoteResponse,
    NoteUpdateRequest,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _storage_failure(exc: StorageError, action: str) -> HTTPException:
    logger.error("Storage failure while %s: %s", action, exc)
    return HTTPException(status_code=500, detail=f"Failed to {action}.")


@router.get("/users", response_model=list[UserResponse])
def list_users(db: DbClient = Depends(get_db_client)):
    return [user.public() for user in db.list_users()]


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    try:
        user = authenticate(db, payload.name, payload.password)
    except AuthError:
        logger.info("Failed login attempt for %r", payload.name)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = None
    if settings.session_secret:
        token = issue_token(
            user.user_id, settings.session_secret, settings.session_token_ttl_seconds
        )
    return LoginResponse(**user.public(), token=token)


@router.get("/notes", response_model=list[NoteResponse])
def list_notes(db: DbClient = Depends(get_db_client)):
    try:
        return [note.as_dict() for note in db.list_notes()]
    except StorageError as exc:
        raise _storage_failure(exc, "fetch notes")


@router.post("/notes", response_model=NoteResponse, status_code=201)
def create_note(payload: NoteCreateRequest, db: DbClient = Depends(get_db_client)):
    if not db.get_user(payload.authorId):
        raise HTTPException(status_code=400, detail="Unknown author")
    if not payload.title.strip() or not payload.content.strip():
        raise HTTPException(status_code=400, detail="title and content are required")
    try:
        note = db.create_note(
            payload.authorId,
            payload.title,
            payload.content,
            phase=payload.phase,
            tags=payload.tags,
        )
    except StorageError as exc:
        raise _storage_failure(exc, "create note")
    return note.as_dict()


@router.patch("/notes/{note_id}", response_model=NoteResponse)
def update_note(
    note_id: str, payload: NoteUpdateRequest, db: DbClient = Depends(get_db_client)
):
    if payload.title is not None and not payload.title.strip():
        raise HTTPException(status_code=400, detail="title cannot be empty")
    if payload.content is not None and not payload.content.strip():
        raise HTTPException(status_code=400, detail="content cannot be empty")
    try:
        note = db.update_note(
            note_id,
            title=payload.title,
            content=payload.content,
            phase=payload.phase,
            tags=payload.tags,
            is_completed=payload.isCompleted,
        )
    except StorageError as exc:
        raise _storage_failure(exc, "update note")
    if not note:
        raise HTTPException(status_code=404, detail="Note not found.")
    return note.as_dict()


@router.delete("/notes/{note_id}", response_model=DeleteResponse)
def delete_note(note_id: str, db: DbClient = Depends(get_db_client)):
    try:
        deleted = db.delete_note(note_id)
    except StorageError as exc:
        raise _storage_failure(exc, "delete note")
    if not deleted:
        raise HTTPException(status_code=404, detail="Note not found.")
    return DeleteResponse(message="Note deleted.")


@router.get("/chat/{channel}", response_model=list[ChatMessageResponse])
def list_chat_messages(channel: str, store: MessageStore = Depends(get_message_store)):
    if Channel.parse(channel) is None:
        raise HTTPException(status_code=400, detail=f"Unknown channel {channel!r}")
    try:
        return [message.as_dict() for message in store.list(channel)]
    except StorageError as exc:
        raise _storage_failure(exc, "fetch chat messages")


@router.post("/chat", response_model=ChatMessageResponse)
def post_chat_message(
    payload: ChatMessageRequest,
    store: MessageStore = Depends(get_message_store),
    registry: ChannelRegistry = Depends(get_registry),
):
    """
    Persist a message and fan it out to the channel's live subscribers.
    """
    try:
        message = store.append(
            payload.senderId, payload.channel, payload.content, payload.messageType
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StorageError as exc:
        raise _storage_failure(exc, "save chat message")
    registry.publish(message.channel, delivered_event(message))
    return message.as_dict()


@router.post("/clear-notes", response_model=ClearResponse)
def clear_notes(db: DbClient = Depends(get_db_client)):
    try:
        removed = db.clear_notes()
    except StorageError as exc:
        raise _storage_failure(exc, "clear notes")
    logger.warning("Cleared all notes (%d removed)", removed)
    return ClearResponse(message="All notes cleared.", removed=removed)


@router.post("/clear-chat", response_model=ClearResponse)
def clear_chat(
    channel: Optional[str] = Query(None),
    store: MessageStore = Depends(get_message_store),
):
    if channel is not None and Channel.parse(channel) is None:
        raise HTTPException(status_code=400, detail=f"Unknown channel {channel!r}")
    try:
        removed = store.clear(channel)
    except StorageError as exc:
        raise _storage_failure(exc, "clear chat messages")
    scope = f"channel {channel}" if channel else "all channels"
    return ClearResponse(message=f"Chat messages cleared from {scope}.", removed=removed)


@router.post("/gemini", response_model=GeminiResponse)
def gemini_proxy(payload: GeminiRequest, settings: Settings = Depends(get_settings)):
    if not payload.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")
    if not settings.gemini_api_key:
        raise HTTPException(status_code=500, detail="API key not configured")
    try:
        text = gemini.call_predict(
            payload.prompt, api_key=settings.gemini_api_key, model=settings.gemini_model
        )
    except Exception as exc:
        logger.exception("Gemini API call failed")
        raise HTTPException(status_code=502, detail=f"Gemini API call failed: {exc}")
    return GeminiResponse(text=text)
