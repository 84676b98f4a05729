from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..domain.chat_models import ChatRequest, Project
from ..infrastructure.record_store import RecordStore

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50


class ProjectNotFound(LookupError):
    pass


class ProjectForbidden(PermissionError):
    pass


@dataclass
class PreparedTurn:
    project: Project
    history: List[Dict[str, str]] = field(default_factory=list)
    created_project: bool = False


def project_title(message: str) -> str:
    text = (message or "").strip()
    if len(text) > TITLE_MAX_CHARS:
        return text[: TITLE_MAX_CHARS - 3] + "..."
    return text or "Untitled project"


def load_owned_project(store: RecordStore, project_id: str, user_id: str) -> Project:
    project = store.get_project(project_id)
    if project is None:
        raise ProjectNotFound(project_id)
    if project.user_id != user_id:
        raise ProjectForbidden(project_id)
    return project


def prepare_turn(store: RecordStore, req: ChatRequest, user_id: str) -> PreparedTurn:
    """Resolve the project and record the user's message before the model is called.

    Returns the prior conversation (excluding the new message) in provider
    ``{role, content}`` form. An identical trailing user message is not
    inserted a second time.
    """

    created = False
    if req.project_id:
        project = load_owned_project(store, req.project_id, user_id)
    else:
        project = store.create_project(user_id, project_title(req.message), selected_model=req.model)
        created = True
        logger.info("project_created", extra={"project_id": project.project_id, "user_id": user_id})

    if project.selected_model != req.model:
        store.update_project_model(project.project_id, req.model)

    previous = store.list_messages(project.project_id)
    last = previous[-1] if previous else None
    if last is not None and last.role == "user" and last.content == req.message:
        logger.info("duplicate_user_message_skipped", extra={"project_id": project.project_id})
        previous = previous[:-1]
    else:
        store.add_message(project.project_id, "user", req.message, is_automated=req.is_automated)

    history = [{"role": m.role, "content": m.content} for m in previous]
    return PreparedTurn(project=project, history=history, created_project=created)
