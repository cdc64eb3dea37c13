# quake-control/models/config.py
# Purpose: Pydantic settings for spawning the dedicated server and reaching it over RCON.

from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field

DEFAULT_GAME = "id1"
DEFAULT_EXECUTABLE = "fteqwsv64.exe"
DEFAULT_RCON_PORT = 27500


class ServerConfig(BaseModel):
    """Everything the control plane needs to launch and talk to one server."""

    basedir: str = Field(default=".", description="Quake install directory, used as cwd")
    game: str = Field(default=DEFAULT_GAME, description="Game subdirectory (mod)")
    map: Optional[str] = Field(default=None, description="Map to load on start")
    executable: str = Field(default=DEFAULT_EXECUTABLE, min_length=1)
    mode: Literal["external", "embedded"] = "external"
    rcon_host: str = "127.0.0.1"
    rcon_port: int = Field(default=DEFAULT_RCON_PORT, ge=1, le=65535)
    rcon_password: str = ""
    protocol: str = Field(default="nq", description="Protocol flavor (nq | qw)")

    @classmethod
    def from_env(cls, **overrides) -> "ServerConfig":
        values = {
            "basedir": os.getenv("QUAKE_BASEDIR", "."),
            "game": os.getenv("QUAKE_GAME", DEFAULT_GAME),
            "map": os.getenv("QUAKE_MAP") or None,
            "executable": os.getenv("QUAKE_EXECUTABLE", DEFAULT_EXECUTABLE),
            "mode": os.getenv("CONTROL_MODE", "external"),
            "rcon_host": os.getenv("RCON_HOST", "127.0.0.1"),
            "rcon_port": int(os.getenv("RCON_PORT", DEFAULT_RCON_PORT)),
            "rcon_password": os.getenv("RCON_PASSWORD", ""),
            "protocol": os.getenv("QUAKE_PROTOCOL", "nq"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def game_dir(self) -> str:
        return self.game or DEFAULT_GAME
