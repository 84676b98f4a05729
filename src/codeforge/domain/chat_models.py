from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field


Role = Literal["user", "assistant"]


class MessageType(str, Enum):
    GREETING = "greeting"
    QUESTION = "question"
    BUILD = "build"


class FinishReason(str, Enum):
    NORMAL = "normal"
    LENGTH_LIMIT = "length_limit"


class ImageAttachment(BaseModel):
    """Inline image sent with a chat message (base64 payload)."""

    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(alias="mimeType")
    data: str


class ChatRequest(BaseModel):
    """Body of ``POST /chat``; camelCase aliases match the web client."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    project_id: Optional[str] = Field(default=None, alias="projectId")
    message: str = ""
    discuss_mode: bool = Field(default=False, alias="discussMode")
    is_automated: bool = Field(default=False, alias="isAutomated")
    model: str = "gemini"
    image_data: Optional[ImageAttachment] = Field(default=None, alias="imageData")


class SearchResult(BaseModel):
    query: str
    results: str


class Project(BaseModel):
    project_id: str
    user_id: str
    title: str
    selected_model: str = "gemini"
    created_at: datetime
    updated_at: datetime


class ChatMessage(BaseModel):
    message_id: str
    project_id: str
    role: Role
    content: str
    created_at: datetime
    has_artifact: bool = False
    thinking: Optional[str] = None
    search_queries: Optional[List[SearchResult]] = None
    is_automated: bool = False


class FileRecord(BaseModel):
    file_id: str
    project_id: str
    message_id: str
    path: str
    content: str
    language: str
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    created_at: datetime


class ArtifactRecord(BaseModel):
    artifact_id: str
    project_id: str
    message_id: str
    title: str
    file_ids: List[str]
    created_at: datetime


class ChatModelOption(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    provider: str
    model: str
    label: str
    available: bool
