from __future__ import annotations
from typing import Dict
from pydantic import BaseModel, ConfigDict, Field


class SnapshotEntity(BaseModel):
    """One entity block decoded from a save file. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    classname: str = ""
    properties: Dict[str, str] = Field(default_factory=dict)
    index: int = 0
