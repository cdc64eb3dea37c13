from __future__ import annotations
from typing import List, Dict, Any

class DashboardState:
    def __init__(self):
        self.status: Dict[str,Any] = {}
        self.entities: List[Dict[str,Any]] = []
        self.console: List[str] = []

    def set_snapshot(self, status: Dict[str,Any], entities: List[Dict[str,Any]]):
        self.status = status
        self.entities = entities

    def add_console(self, line: str, max_lines: int = 200):
        self.console.append(line)
        if len(self.console) > max_lines:
            self.console.pop(0)
