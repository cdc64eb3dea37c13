from __future__ import annotations
from pydantic import BaseModel, Field
import time

class ConsoleLineModel(BaseModel):
    source: str
    content: str
    ts: float = Field(default_factory=time.time)
