from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class EventShape(str, Enum):
    LEGACY = "legacy"  # API Gateway REST (payload v1)
    STREAMLINED = "streamlined"  # API Gateway HTTP (payload v2)
    LOAD_BALANCER = "load_balancer"


class CanonicalRequest(BaseModel):
    server_variables: dict[str, str | int | float] = Field(default_factory=dict)
    # lowercase names, one value per name
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""
    shape: EventShape = EventShape.LEGACY


class CanonicalResponse(BaseModel):
    status: int = Field(default=200, ge=100, le=599)
    headers: dict[str, list[str]] = Field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str | None:
        values = self.headers.get(name.lower())
        return values[-1] if values else None
