from __future__ import annotations

from datetime import datetime, timezone
import os
from typing import Any, Dict, List, Optional
import uuid

from ..domain.chat_models import ArtifactRecord, ChatMessage, FileRecord, Project, SearchResult


class MongoRecordStore:
    """pymongo-backed record store.

    Unlike the in-memory store there is no silent fallback: a failed write
    propagates so the pipeline can report "Failed to save response".
    """

    def __init__(self, client: Any = None, db_name: Optional[str] = None) -> None:
        if client is None:
            from pymongo import MongoClient

            mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
            client = MongoClient(mongo_url, serverSelectionTimeoutMS=500)
        self._client = client
        db = client[db_name or os.getenv("MONGO_DB", "codeforge")]
        self._projects = db["projects"]
        self._messages = db["messages"]
        self._files = db["files"]
        self._artifacts = db["artifacts"]
        self._projects.create_index("project_id", unique=True)
        self._messages.create_index([("project_id", 1), ("created_at", 1)])
        self._files.create_index([("project_id", 1), ("path", 1), ("created_at", -1)])
        self._artifacts.create_index("message_id")

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _strip(doc: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in doc.items() if k != "_id"}

    def create_project(self, user_id: str, title: str, selected_model: str = "gemini") -> Project:
        now = self._now()
        doc = {
            "project_id": uuid.uuid4().hex,
            "user_id": user_id,
            "title": title,
            "selected_model": selected_model,
            "created_at": now,
            "updated_at": now,
        }
        self._projects.insert_one(dict(doc))
        return Project(**doc)

    def get_project(self, project_id: str) -> Optional[Project]:
        doc = self._projects.find_one({"project_id": project_id})
        return Project(**self._strip(doc)) if doc else None

    def update_project_model(self, project_id: str, selected_model: str) -> None:
        self._projects.update_one({"project_id": project_id}, {"$set": {"selected_model": selected_model}})

    def touch_project(self, project_id: str) -> None:
        self._projects.update_one({"project_id": project_id}, {"$set": {"updated_at": self._now()}})

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
        msg = ChatMessage(
            message_id=uuid.uuid4().hex,
            project_id=project_id,
            role=role,
            content=content,
            created_at=self._now(),
            has_artifact=has_artifact,
            thinking=thinking,
            search_queries=list(search_queries) if search_queries else None,
            is_automated=is_automated,
        )
        self._messages.insert_one(msg.model_dump())
        return msg

    def list_messages(self, project_id: str) -> List[ChatMessage]:
        cursor = self._messages.find({"project_id": project_id}).sort([("created_at", 1), ("_id", 1)])
        return [ChatMessage(**self._strip(doc)) for doc in cursor]

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
        record = FileRecord(
            file_id=uuid.uuid4().hex,
            project_id=project_id,
            message_id=message_id,
            path=path,
            content=content,
            language=language,
            additions=additions,
            deletions=deletions,
            created_at=self._now(),
        )
        self._files.insert_one(record.model_dump())
        return record

    def list_files(self, project_id: str) -> List[FileRecord]:
        cursor = self._files.find({"project_id": project_id}).sort([("created_at", 1), ("_id", 1)])
        return [FileRecord(**self._strip(doc)) for doc in cursor]

    def latest_file(self, project_id: str, path: str) -> Optional[FileRecord]:
        cursor = (
            self._files.find({"project_id": project_id, "path": path})
            .sort([("created_at", -1), ("_id", -1)])
            .limit(1)
        )
        doc = next(iter(cursor), None)
        return FileRecord(**self._strip(doc)) if doc else None

    def add_artifact(self, project_id: str, message_id: str, title: str, file_ids: List[str]) -> ArtifactRecord:
        artifact = ArtifactRecord(
            artifact_id=uuid.uuid4().hex,
            project_id=project_id,
            message_id=message_id,
            title=title,
            file_ids=list(file_ids),
            created_at=self._now(),
        )
        self._artifacts.insert_one(artifact.model_dump())
        return artifact

    def list_artifacts(self, project_id: str) -> List[ArtifactRecord]:
        cursor = self._artifacts.find({"project_id": project_id}).sort([("created_at", 1), ("_id", 1)])
        return [ArtifactRecord(**self._strip(doc)) for doc in cursor]
