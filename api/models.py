"""Pydantic request/response schemas for the FastAPI backend."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ---- Requests ----

class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1, description="Task for the agent")
    server_ids: list[str] = Field(..., alias="serverIds", description="Provider ids to connect")
    model: Optional[str] = Field(default=None, description="Override the configured model")


# ---- Responses ----

class ServerStatus(BaseModel):
    status: str = "ok"
    connected_providers: int = 0
    known_providers: int = 0
    busy: bool = False
    health_checks: bool = False
    uptime_seconds: float = 0.0
    api_key_configured: bool = False


class ProviderInfo(BaseModel):
    id: str
    name: str
    command: str
    args: list[str] = Field(default_factory=list)
    transport: str = "stdio"
    status: str = "disconnected"
    tools: list[str] = Field(default_factory=list)
    last_health_check: Optional[str] = None
