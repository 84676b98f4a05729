"""Diff statistics and storage of one assistant turn.

The engine writes the assistant message, one new file revision per extracted
block, then the artifact grouping them, and finally touches the project.
Previous contents come from a single snapshot taken before any file is
written, so the sequential and fan-out strategies compute identical numbers.
There is no rollback: a failure part-way leaves earlier rows in place.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..config import PERSIST_FANOUT, PERSIST_SEQUENTIAL
from ..domain.chat_models import ArtifactRecord, ChatMessage, FileRecord, SearchResult
from ..errors import PersistenceError
from ..infrastructure.events import publish_event
from ..infrastructure.record_store import RecordStore, latest_files_by_path
from ..observability.metrics import FILES_PERSISTED
from .extraction import CodeBlock
from .telemetry_sink import TelemetryEvent, record_event

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to save response"


def line_count(content: str) -> int:
    """Lines in ``content``; a single trailing newline ends the last line."""
    if not content:
        return 0
    if content.endswith("\n"):
        content = content[:-1]
    return len(content.split("\n"))


def compute_line_delta(previous: str, current: str) -> Tuple[int, int]:
    """``(additions, deletions)`` as the difference of total line counts."""
    old, new = line_count(previous), line_count(current)
    return max(0, new - old), max(0, old - new)


def artifact_title(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Code from {now:%Y-%m-%d %H:%M:%S} UTC"


@dataclass
class PersistResult:
    message: ChatMessage
    files: List[FileRecord] = field(default_factory=list)
    artifact: Optional[ArtifactRecord] = None

    @property
    def has_artifact(self) -> bool:
        return self.artifact is not None


class PersistenceEngine:
    def __init__(self, store: RecordStore, strategy: str = PERSIST_SEQUENTIAL) -> None:
        if strategy not in (PERSIST_SEQUENTIAL, PERSIST_FANOUT):
            raise ValueError(f"Unknown persist strategy: {strategy}")
        self.store = store
        self.strategy = strategy

    async def persist_turn(
        self,
        project_id: str,
        content: str,
        blocks: List[CodeBlock],
        *,
        thinking: Optional[str] = None,
        search_queries: Optional[List[SearchResult]] = None,
        is_automated: bool = False,
    ) -> PersistResult:
        try:
            message = await asyncio.to_thread(
                self.store.add_message,
                project_id,
                "assistant",
                content,
                has_artifact=bool(blocks),
                thinking=thinking,
                search_queries=search_queries,
                is_automated=is_automated,
            )
            result = PersistResult(message=message)
            if blocks:
                snapshot = await asyncio.to_thread(self._snapshot, project_id)
                if self.strategy == PERSIST_FANOUT:
                    result.files = await self._write_fanout(project_id, message.message_id, blocks, snapshot)
                else:
                    result.files = await self._write_sequential(project_id, message.message_id, blocks, snapshot)
                result.artifact = await asyncio.to_thread(
                    self.store.add_artifact,
                    project_id,
                    message.message_id,
                    artifact_title(),
                    [f.file_id for f in result.files],
                )
            await asyncio.to_thread(self.store.touch_project, project_id)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(SAVE_FAILED_MESSAGE) from exc

        logger.info(
            "turn_persisted",
            extra={
                "project_id": project_id,
                "message_id": message.message_id,
                "files": len(result.files),
                "strategy": self.strategy,
            },
        )
        if result.artifact is not None:
            self._announce(result)
        return result

    def _snapshot(self, project_id: str) -> Dict[str, FileRecord]:
        return latest_files_by_path(self.store.list_files(project_id))

    def _write_one(
        self,
        project_id: str,
        message_id: str,
        block: CodeBlock,
        previous: Optional[FileRecord],
    ) -> FileRecord:
        additions, deletions = compute_line_delta(previous.content if previous else "", block.content)
        return self.store.add_file(
            project_id,
            message_id,
            block.path,
            block.content,
            block.language,
            additions,
            deletions,
        )

    async def _write_sequential(
        self,
        project_id: str,
        message_id: str,
        blocks: List[CodeBlock],
        snapshot: Dict[str, FileRecord],
    ) -> List[FileRecord]:
        records: List[FileRecord] = []
        for block in blocks:
            records.append(
                await asyncio.to_thread(self._write_one, project_id, message_id, block, snapshot.get(block.path))
            )
        return records

    async def _write_fanout(
        self,
        project_id: str,
        message_id: str,
        blocks: List[CodeBlock],
        snapshot: Dict[str, FileRecord],
    ) -> List[FileRecord]:
        results = await asyncio.gather(
            *[
                asyncio.to_thread(self._write_one, project_id, message_id, block, snapshot.get(block.path))
                for block in blocks
            ],
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error(
                "fanout_file_write_failed",
                extra={"project_id": project_id, "failed": len(failures), "total": len(blocks)},
            )
            raise PersistenceError(SAVE_FAILED_MESSAGE) from failures[0]
        return list(results)

    def _announce(self, result: PersistResult) -> None:
        artifact = result.artifact
        payload = {
            "project_id": artifact.project_id,
            "message_id": artifact.message_id,
            "artifact_id": artifact.artifact_id,
            "paths": [f.path for f in result.files],
        }
        try:
            FILES_PERSISTED.labels(strategy=self.strategy).inc(len(result.files))
        except Exception:
            logger.debug("files_persisted_metric_failed", exc_info=True)
        try:
            publish_event("artifact.created", payload)
        except Exception:
            logger.debug("artifact_event_publish_failed", exc_info=True)
        record_event(TelemetryEvent(name="artifact_created", properties=payload))
