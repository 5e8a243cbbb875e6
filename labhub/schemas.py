"""
Pydantic schemas for the REST API.

Field names are camelCase to match the browser client's payloads.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from labhub.enums import Channel, MessageType, Phase, Role


class UserResponse(BaseModel):
    id: str
    name: str
    role: Role


class LoginRequest(BaseModel):
    name: str
    password: str


class LoginResponse(UserResponse):
    token: Optional[str] = None


class NoteCreateRequest(BaseModel):
    authorId: str
    title: str = Field(default="", max_length=256)
    content: str = ""
    phase: Phase = Phase.GENERAL
    tags: list[str] = Field(default_factory=list)


class NoteUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=256)
    content: Optional[str] = None
    phase: Optional[Phase] = None
    tags: Optional[list[str]] = None
    isCompleted: Optional[bool] = None


class NoteResponse(BaseModel):
    id: str
    authorId: str
    author: Optional[UserResponse] = None
    title: str
    content: str
    phase: Phase
    tags: list[str]
    isCompleted: bool
    createdAt: str
    updatedAt: str


class ChatMessageRequest(BaseModel):
    senderId: str
    content: str = ""
    channel: str = ""
    messageType: MessageType = MessageType.TEXT


class ChatMessageResponse(BaseModel):
    id: str
    senderId: str
    sender: Optional[UserResponse] = None
    content: str
    channel: Channel
    messageType: MessageType
    createdAt: str


class ClearResponse(BaseModel):
    success: Literal[True] = True
    message: str
    removed: int


class DeleteResponse(BaseModel):
    success: Literal[True] = True
    message: str


class GeminiRequest(BaseModel):
    prompt: str = ""


class GeminiResponse(BaseModel):
    text: str
