"""Request / response schemas shared by the hierarchy routers."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EntityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None


class EntityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None


class EntityResponse(BaseModel):
    """A container, mid-level or leaf."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str | None
    created_at: datetime
    updated_at: datetime


class ChildEntityResponse(EntityResponse):
    sort_order: int


class LinkResponse(BaseModel):
    left_id: uuid.UUID
    right_id: uuid.UUID
    sort_order: int
    created: bool


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
