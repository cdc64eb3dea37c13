# quake-control/engines/__init__.py
# Purpose: Engine factory for the two server modes (external process, embedded simulation).
from __future__ import annotations

from typing import Optional

from models.config import ServerConfig

from .base import Engine, EngineError
from .embedded import EmbeddedEngine
from .external import ExternalEngine


def get_engine(mode: str, config: Optional[ServerConfig] = None) -> Engine:
    mode = (mode or "").lower()
    config = config or ServerConfig()
    if mode in ("external", "native", "process"):
        return ExternalEngine(config)
    if mode in ("embedded", "wasm", "inprocess"):
        return EmbeddedEngine(config)
    raise ValueError(f"Unknown engine mode: {mode}")


__all__ = ["Engine", "EngineError", "EmbeddedEngine", "ExternalEngine", "get_engine"]
