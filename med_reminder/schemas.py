"""
Pydantic schemas for the medication reminder API.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from med_reminder.db import MedicationRecord


def _loose_str(value: Any) -> str:
    # Scalars keep their text form; anything else is stored as empty.
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return ""


class MedicationCreate(BaseModel):
    """Create payload. Fields are opaque text and never rejected."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    pattern: str = ""
    relation: str = ""

    @field_validator("name", "pattern", "relation", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _loose_str(value)

    @classmethod
    def from_body(cls, body: Any) -> "MedicationCreate":
        return cls.model_validate(body if isinstance(body, dict) else {})


class MedicationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mongo_id: str = Field(alias="_id")
    id: str
    name: str
    pattern: str
    relation: str
    created_at: datetime = Field(alias="createdAt")

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"

    @classmethod
    def from_record(cls, record: MedicationRecord) -> "MedicationResponse":
        return cls(mongo_id=record.id, **record.as_dict())


class DeleteResponse(BaseModel):
    message: str = "Deleted"


class HealthResponse(BaseModel):
    status: str
    store: str
