from __future__ import annotations
from pydantic import BaseModel, Field


class ServerStatus(BaseModel):
    current_map: str = ""
    player_count: int = 0


class ControlStateModel(BaseModel):
    running: bool = False
    busy: bool = False
    polling: bool = False
    status: ServerStatus = Field(default_factory=ServerStatus)
    last_error: str = ""
