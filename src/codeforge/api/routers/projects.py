from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ...domain.chat_models import ArtifactRecord, ChatMessage, FileRecord, Project
from ...infrastructure.record_store import RecordStore, get_record_store, latest_files_by_path
from ...security.auth import User, get_current_user
from ...services.conversation import ProjectForbidden, ProjectNotFound, load_owned_project

router = APIRouter(prefix="/projects", tags=["projects"])


def _owned(store: RecordStore, project_id: str, user: User) -> Project:
    try:
        return load_owned_project(store, project_id, user.user_id)
    except ProjectNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    except ProjectForbidden:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.get("/{project_id}", response_model=Project)
def get_project(project_id: str, user: User = Depends(get_current_user)) -> Project:
    return _owned(get_record_store(), project_id, user)


@router.get("/{project_id}/messages", response_model=List[ChatMessage])
def list_messages(project_id: str, user: User = Depends(get_current_user)) -> List[ChatMessage]:
    store = get_record_store()
    _owned(store, project_id, user)
    return store.list_messages(project_id)


@router.get("/{project_id}/files", response_model=List[FileRecord])
def list_files(project_id: str, latest: bool = False, user: User = Depends(get_current_user)) -> List[FileRecord]:
    """All file revisions, oldest first; ``latest=true`` keeps only the newest revision per path."""
    store = get_record_store()
    _owned(store, project_id, user)
    files = store.list_files(project_id)
    if not latest:
        return files
    return list(latest_files_by_path(files).values())


@router.get("/{project_id}/artifacts", response_model=List[ArtifactRecord])
def list_artifacts(project_id: str, user: User = Depends(get_current_user)) -> List[ArtifactRecord]:
    store = get_record_store()
    _owned(store, project_id, user)
    return store.list_artifacts(project_id)
