from __future__ import annotations

from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import os
import uuid

from ..domain.chat_models import ArtifactRecord, ChatMessage, FileRecord, Project, SearchResult


class RecordStore(Protocol):
    def create_project(self, user_id: str, title: str, selected_model: str = "gemini") -> Project: ...

    def get_project(self, project_id: str) -> Optional[Project]: ...

    def update_project_model(self, project_id: str, selected_model: str) -> None: ...

    def touch_project(self, project_id: str) -> None: ...

    def add_message(
        self,
        project_id: str,
        role: str,
        content: str,
        *,
        has_artifact: bool = False,
        thinking: Optional[str] = None,
        search_queries: Optional[List[SearchResult]] = None,
        is_automated: bool = False,
    ) -> ChatMessage: ...

    def list_messages(self, project_id: str) -> List[ChatMessage]: ...

    def add_file(
        self,
        project_id: str,
        message_id: str,
        path: str,
        content: str,
        language: str,
        additions: int,
        deletions: int,
    ) -> FileRecord: ...

    def list_files(self, project_id: str) -> List[FileRecord]: ...

    def latest_file(self, project_id: str, path: str) -> Optional[FileRecord]: ...

    def add_artifact(self, project_id: str, message_id: str, title: str, file_ids: List[str]) -> ArtifactRecord: ...

    def list_artifacts(self, project_id: str) -> List[ArtifactRecord]: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRecordStore:
    """Process-local store; every list keeps insertion (creation) order."""

    def __init__(self) -> None:
        self._projects: Dict[str, Project] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._files: Dict[str, List[FileRecord]] = {}
        self._artifacts: Dict[str, List[ArtifactRecord]] = {}
        self._lock = RLock()

    def _require_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise KeyError("Project not found")
        return project

    def create_project(self, user_id: str, title: str, selected_model: str = "gemini") -> Project:
        with self._lock:
            now = _now()
            project = Project(
                project_id=uuid.uuid4().hex,
                user_id=user_id,
                title=title,
                selected_model=selected_model,
                created_at=now,
                updated_at=now,
            )
            self._projects[project.project_id] = project
            self._messages[project.project_id] = []
            self._files[project.project_id] = []
            self._artifacts[project.project_id] = []
            return project.model_copy()

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            return project.model_copy() if project else None

    def update_project_model(self, project_id: str, selected_model: str) -> None:
        with self._lock:
            self._require_project(project_id).selected_model = selected_model

    def touch_project(self, project_id: str) -> None:
        with self._lock:
            self._require_project(project_id).updated_at = _now()

    def add_message(
        self,
        project_id: str,
        role: str,
        content: str,
        *,
        has_artifact: bool = False,
        thinking: Optional[str] = None,
        search_queries: Optional[List[SearchResult]] = None,
        is_automated: bool = False,
    ) -> ChatMessage:
        with self._lock:
            self._require_project(project_id)
            msg = ChatMessage(
                message_id=uuid.uuid4().hex,
                project_id=project_id,
                role=role,
                content=content,
                created_at=_now(),
                has_artifact=has_artifact,
                thinking=thinking,
                search_queries=list(search_queries) if search_queries else None,
                is_automated=is_automated,
            )
            self._messages[project_id].append(msg)
            return msg.model_copy()

    def list_messages(self, project_id: str) -> List[ChatMessage]:
        with self._lock:
            return [m.model_copy() for m in self._messages.get(project_id, [])]

    def add_file(
        self,
        project_id: str,
        message_id: str,
        path: str,
        content: str,
        language: str,
        additions: int,
        deletions: int,
    ) -> FileRecord:
        with self._lock:
            self._require_project(project_id)
            record = FileRecord(
                file_id=uuid.uuid4().hex,
                project_id=project_id,
                message_id=message_id,
                path=path,
                content=content,
                language=language,
                additions=additions,
                deletions=deletions,
                created_at=_now(),
            )
            self._files[project_id].append(record)
            return record.model_copy()

    def list_files(self, project_id: str) -> List[FileRecord]:
        with self._lock:
            return [f.model_copy() for f in self._files.get(project_id, [])]

    def latest_file(self, project_id: str, path: str) -> Optional[FileRecord]:
        with self._lock:
            for record in reversed(self._files.get(project_id, [])):
                if record.path == path:
                    return record.model_copy()
            return None

    def add_artifact(self, project_id: str, message_id: str, title: str, file_ids: List[str]) -> ArtifactRecord:
        with self._lock:
            self._require_project(project_id)
            artifact = ArtifactRecord(
                artifact_id=uuid.uuid4().hex,
                project_id=project_id,
                message_id=message_id,
                title=title,
                file_ids=list(file_ids),
                created_at=_now(),
            )
            self._artifacts[project_id].append(artifact)
            return artifact.model_copy()

    def list_artifacts(self, project_id: str) -> List[ArtifactRecord]:
        with self._lock:
            return [a.model_copy() for a in self._artifacts.get(project_id, [])]


def latest_files_by_path(records: List[FileRecord]) -> Dict[str, FileRecord]:
    """Collapse a project's file rows (oldest first) to the newest row per path."""
    latest: Dict[str, FileRecord] = {}
    for record in records:
        latest[record.path] = record
    return latest


_store: RecordStore | None = None


def get_record_store() -> RecordStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("CODEFORGE_RECORD_STORE_IMPL", "memory").lower()
    if impl == "mongo":
        from .record_store_mongo import MongoRecordStore

        _store = MongoRecordStore()
    else:
        _store = InMemoryRecordStore()
    return _store


def set_record_store(store: Optional[Any]) -> None:
    """Swap the process-wide store (tests and alternate deployments)."""
    global _store
    _store = store
