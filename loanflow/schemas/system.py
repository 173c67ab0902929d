from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SystemConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: Any = None
    description: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: datetime


class SystemConfigUpdate(BaseModel):
    value: Any
    description: Optional[str] = Field(None, max_length=2000)
