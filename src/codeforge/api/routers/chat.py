from __future__ import annotations

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from ...domain.chat_models import ChatModelOption, ChatRequest
from ...infrastructure.record_store import get_record_store
from ...security.auth import User, get_current_user
from ...services.conversation import ProjectForbidden, ProjectNotFound, prepare_turn
from ...services.model_router import ModelRouter
from ...services.pipeline import ChatPipeline, TurnContext
from ...services.sse import SSE_HEADERS, SSE_MEDIA_TYPE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def get_chat_pipeline() -> ChatPipeline:
    return ChatPipeline(get_record_store())


@router.get("/models", response_model=List[ChatModelOption])
def list_models(user: User = Depends(get_current_user)) -> List[ChatModelOption]:
    return ModelRouter().catalog()


@router.post("")
async def chat(
    req: ChatRequest,
    request: Request,
    user: User = Depends(get_current_user),
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
) -> StreamingResponse:
    if not req.message or not req.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")
    try:
        prepared = await asyncio.to_thread(prepare_turn, pipeline.store, req, user.user_id)
    except ProjectNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    except ProjectForbidden:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    turn = TurnContext(
        project_id=prepared.project.project_id,
        message=req.message,
        history=prepared.history,
        model=req.model,
        discuss_mode=req.discuss_mode,
        is_automated=req.is_automated,
        image=req.image_data,
    )
    disconnect_check = None if req.is_automated else request.is_disconnected
    return StreamingResponse(
        pipeline.stream_turn(turn, is_disconnected=disconnect_check),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
