"""Incident descriptor consumed by the trigger evaluator."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER: Dict[str, int] = {
    Severity.LOW.value: 1,
    Severity.MEDIUM.value: 2,
    Severity.HIGH.value: 3,
    Severity.CRITICAL.value: 4,
}


def severity_rank(value: Any) -> Optional[int]:
    """Ordinal for a severity label, or None when the label is unknown."""
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        return None
    return SEVERITY_ORDER.get(value.lower())


class Incident(BaseModel):
    id: str = ""
    category: str = ""
    severity: str = ""
    description: str = ""
    source: str = ""
    # IOCs, correlation ids, time windows and anything else the detector supplies
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def search_text(self) -> str:
        """Lower-cased description plus serialized metadata, searched by keyword conditions."""
        serialized = json.dumps(self.metadata, sort_keys=True, default=str)
        return f"{self.description} {serialized}".lower()
