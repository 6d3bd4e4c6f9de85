"""In-memory repositories.

Records are kept as serialized JSON documents rather than live objects, so
every ``get`` hands back an independent copy and the same serialization
boundary is exercised as with the file-backed store.
"""

from __future__ import annotations

import threading
from typing import Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel

from response_engine.models.execution import Execution
from response_engine.models.workflow import Workflow

ModelT = TypeVar("ModelT", bound=BaseModel)


class _JsonDocumentStore(Generic[ModelT]):
    model: Type[ModelT]

    def __init__(self) -> None:
        self._docs: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, record_id: str) -> Optional[ModelT]:
        with self._lock:
            doc = self._docs.get(record_id)
        if doc is None:
            return None
        return self.model.model_validate_json(doc)

    def put(self, record: ModelT) -> None:
        doc = record.model_dump_json()
        with self._lock:
            self._docs[record.id] = doc  # type: ignore[attr-defined]

    def list(self) -> List[ModelT]:
        with self._lock:
            docs = list(self._docs.values())
        return [self.model.model_validate_json(doc) for doc in docs]


class InMemoryWorkflowRepository(_JsonDocumentStore[Workflow]):
    model = Workflow


class InMemoryExecutionRepository(_JsonDocumentStore[Execution]):
    model = Execution
