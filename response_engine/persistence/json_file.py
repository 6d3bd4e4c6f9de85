"""File-backed repositories: one JSON document per record.

Writes go to a temporary file in the same directory followed by
``os.replace``, so a crash mid-write leaves either the previous snapshot or
the new one on disk, never a torn document.
"""

from __future__ import annotations

import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel

from response_engine.models.execution import Execution
from response_engine.models.workflow import Workflow
from response_engine.utils.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


class _JsonFileStore(Generic[ModelT]):
    model: Type[ModelT]
    subdir: str

    def __init__(self, root: str | os.PathLike) -> None:
        self._dir = Path(root) / self.subdir
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, record_id: str) -> Path:
        return self._dir / f"{_SAFE_NAME.sub('_', record_id)}.json"

    def get(self, record_id: str) -> Optional[ModelT]:
        path = self._path(record_id)
        if not path.exists():
            return None
        return self.model.model_validate_json(path.read_text(encoding="utf-8"))

    def put(self, record: ModelT) -> None:
        path = self._path(record.id)  # type: ignore[attr-defined]
        doc = record.model_dump_json(indent=2)
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(doc)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

    def list(self) -> List[ModelT]:
        records: List[ModelT] = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                records.append(self.model.model_validate_json(path.read_text(encoding="utf-8")))
            except ValueError as exc:
                logger.error("store_document_unreadable", path=str(path), error=str(exc))
        return records


class JsonFileWorkflowRepository(_JsonFileStore[Workflow]):
    model = Workflow
    subdir = "workflows"


class JsonFileExecutionRepository(_JsonFileStore[Execution]):
    model = Execution
    subdir = "executions"
