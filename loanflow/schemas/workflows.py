from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_HEX_COLOR = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


class StageDefinition(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    stage_order: int = Field(..., ge=0)
    color: Optional[str] = Field(None, pattern=_HEX_COLOR)
    is_required: bool = False
    triggers_commission: bool = False

    @field_validator("code")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


class TransitionDefinition(BaseModel):
    from_stage_code: str = Field(..., min_length=1)
    to_stage_code: str = Field(..., min_length=1)
    required_permission: Optional[str] = None
    name: Optional[str] = None


class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    stages: Optional[list[StageDefinition]] = None
    transitions: Optional[list[TransitionDefinition]] = None


class WorkflowUpdate(BaseModel):
    description: Optional[str] = None
    is_active: Optional[bool] = None


class StageCreate(StageDefinition):
    pass


class StageUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    stage_order: Optional[int] = Field(None, ge=0)
    color: Optional[str] = Field(None, pattern=_HEX_COLOR)
    triggers_commission: Optional[bool] = None


class TransitionCreate(BaseModel):
    from_stage_id: str
    to_stage_id: str
    required_permission: Optional[str] = None
    name: Optional[str] = None


class TransitionUpdate(BaseModel):
    required_permission: Optional[str] = None
    name: Optional[str] = None


class StageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    code: str
    name: str
    stage_order: int
    color: str
    is_required: bool
    triggers_commission: bool


class TransitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    from_stage_id: str
    to_stage_id: str
    name: Optional[str] = None
    required_permission: Optional[str] = None
    from_stage: Optional[StageRead] = None
    to_stage: Optional[StageRead] = None


class WorkflowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    version: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    stages: list[StageRead] = []
    transitions: list[TransitionRead] = []


class TransitionCheckRead(BaseModel):
    allowed: bool
    reason: Optional[str] = None
