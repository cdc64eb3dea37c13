"""Decode Quake save-file text into entity snapshots.

A save file is a short header followed by brace-delimited blocks, one per
line-trimmed ``{`` / ``}`` pair, each holding ``"key" "value"`` lines. The
first block is the globals table, which has no counterpart in the engine's
entity array; ``worldspawn`` is entity 0 there, so decoding realigns on it.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from models.entities import SnapshotEntity

WORLDSPAWN = "worldspawn"

_PROPERTY = re.compile(r'^"([^"]+)"\s+"([^"]*)"')
_LINE_BREAK = re.compile(r"\r?\n")


class _Block:
    __slots__ = ("classname", "properties")

    def __init__(self) -> None:
        self.classname = ""
        self.properties: Dict[str, str] = {}


def parse_savegame(content: str) -> List[SnapshotEntity]:
    """First pass: every closed block in file order, indexed as read."""
    blocks: List[_Block] = []
    current: Optional[_Block] = None
    # only CR-LF and LF end a line; values may hold other control characters
    for raw in _LINE_BREAK.split(content):
        line = raw.strip()
        if line == "{":
            current = _Block()
            continue
        if line == "}":
            if current is not None:
                blocks.append(current)
            current = None
            continue
        if current is None:
            continue
        m = _PROPERTY.match(line)
        if not m:
            continue
        key, value = m.group(1), m.group(2)
        if key == "classname":
            current.classname = value
        current.properties[key] = value
    return [
        SnapshotEntity(classname=b.classname, properties=b.properties, index=i)
        for i, b in enumerate(blocks)
    ]


def align_to_worldspawn(entities: Sequence[SnapshotEntity]) -> List[SnapshotEntity]:
    """Second pass: drop everything before worldspawn and renumber from 0."""
    start = next(
        (i for i, e in enumerate(entities) if e.classname == WORLDSPAWN), 0
    )
    return [
        e.model_copy(update={"index": i}) for i, e in enumerate(entities[start:])
    ]


def decode_savegame(content: str) -> List[SnapshotEntity]:
    return align_to_worldspawn(parse_savegame(content))


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def classname_color(classname: str) -> Optional[Tuple[int, int, int]]:
    """Stable (hue, saturation, lightness) for grouping entities by class."""
    if not classname:
        return None
    h = 0
    for ch in classname:
        h = _to_int32(ord(ch) + (_to_int32(h << 5) - h))
    hue = abs(h) % 360
    saturation = 65 + abs(h) % 20
    lightness = 45 + abs(h >> 8) % 15
    return hue, saturation, lightness


def format_hsl(color: Optional[Tuple[int, int, int]]) -> str:
    if color is None:
        return "transparent"
    hue, saturation, lightness = color
    return f"hsl({hue}, {saturation}%, {lightness}%)"


def snapshot_candidates(save_name: str, game: str = "id1") -> List[str]:
    """Where an engine may have written ``save <name>``, most likely first."""
    return [
        f"/{game}/{save_name}.sav",
        f"/{save_name}.sav",
        f"id1/fte/{save_name}.sav",
        f"{game}/fte/{save_name}.sav",
        f"{game}/{save_name}.sav",
        f"{save_name}.sav",
        save_name,
    ]


__all__ = [
    "WORLDSPAWN",
    "align_to_worldspawn",
    "classname_color",
    "decode_savegame",
    "format_hsl",
    "parse_savegame",
    "snapshot_candidates",
]
