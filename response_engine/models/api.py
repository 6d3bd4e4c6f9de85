"""Request/response bodies of the HTTP API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from response_engine.models.incident import Incident


class ExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    incident_id: str = Field(alias="incidentId", min_length=1)
    executed_by: str = Field(default="api", alias="executedBy")


class ExecuteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    execution_id: str = Field(serialization_alias="executionId")


class CancelRequest(BaseModel):
    reason: str = ""


class ApprovalRequest(BaseModel):
    approver: str = Field(min_length=1)


class ApprovalResponse(BaseModel):
    execution_id: str
    step_id: str
    approved: bool
    released: bool


class EvaluateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    incident: Incident
    auto_execute: bool = Field(default=False, alias="autoExecute")
    executed_by: str = Field(default="api", alias="executedBy")


class TriggerMatch(BaseModel):
    workflow_id: str
    name: str
    priority: str
    score: float
    max_score: float
    ratio: float


class EvaluateResponse(BaseModel):
    incident_id: str
    matches: List[TriggerMatch] = Field(default_factory=list)
    execution_id: Optional[str] = None
