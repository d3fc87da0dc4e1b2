"""
Pydantic request/response models for the mode API.

These mirror the to_dict() shapes of modeos.modes.models so FastAPI can
generate accurate OpenAPI schemas.

Usage:
    from api.response_models import ModeStateResponse

    @router.get("", response_model=ModeStateResponse)
    async def get_mode(): ...
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# ==== Decision pieces ====


class AlternativeModel(BaseModel):
    mode: str
    reason: str


class CapsuleActionModel(BaseModel):
    type: str = Field(description="switch_view or set_intent")
    label: str
    target: str | None = None


class AdjacencyModel(BaseModel):
    label: str
    target_mode: str
    reason: str


class CapsuleModel(BaseModel):
    """The "Why this view?" capsule."""

    mode: str
    view_label: str
    confidence: str = Field(description="HIGH, MEDIUM or LOW")
    confidence_note: str
    reason: str
    signals_used: list[str] = Field(default_factory=list)
    alternatives: list[AlternativeModel] = Field(default_factory=list)
    would_change_if: list[str] = Field(default_factory=list)
    actions: list[CapsuleActionModel] = Field(default_factory=list)
    adjacency: AdjacencyModel | None = None
    pinned: bool = False


class PinModel(BaseModel):
    mode: str
    set_at: str


# ==== Mode state ====
# Used by GET /mode, POST /evaluate, /force, /unpin, /scenarios/{id}.


class ModeStateResponse(BaseModel):
    """Current published mode."""

    mode: str
    trigger: str = Field(description="Trigger of the published evaluation")
    evaluated_at: str
    capsule: CapsuleModel
    signals: dict[str, Any] = Field(default_factory=dict)
    pin: PinModel | None = None


# ==== Requests ====


class EvaluateRequest(BaseModel):
    trigger: str = Field(
        default="meeting_boundary_change",
        description="app_open or meeting_boundary_change; force, unpin and scenario loads have their own endpoints",
    )


class ForceRequest(BaseModel):
    mode: str = Field(description="capture, prep, synthesis or neutral")


class ScenarioLoadRequest(BaseModel):
    now: datetime | None = Field(default=None, description="Anchor time (default: current minute)")


# ==== Audit ====


class AuditEventModel(BaseModel):
    trigger: str
    previous_mode: str | None = None
    new_mode: str
    confidence: str
    reason: str
    evaluation_id: str = ""
    occurred_at: str


class AuditResponse(BaseModel):
    items: list[AuditEventModel] = Field(default_factory=list)
    total: int
    override_rate: float = Field(description="Share of decisions from an explicit force")
    mode_counts: dict[str, int] = Field(default_factory=dict)


# ==== Scenarios ====


class ScenarioCheckpointModel(BaseModel):
    id: str
    name: str
    offset_minutes: float
    expected_mode: str


class ScenarioModel(BaseModel):
    id: str
    name: str
    description: str
    tags: list[str] = Field(default_factory=list)
    event_count: int
    expected_mode: str
    expected_confidence: str | None = None
    checkpoints: list[ScenarioCheckpointModel] = Field(default_factory=list)


class ScenarioListResponse(BaseModel):
    items: list[ScenarioModel] = Field(default_factory=list)
    total: int


# ==== Errors ====


class DetailResponse(BaseModel):
    """Error payload."""

    detail: str
