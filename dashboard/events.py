from __future__ import annotations
import asyncio

async def pump_events(loop, dbstate, refresh_interval: float = 0.5):
    """
    Purpose: Drive dashboard state from the control loop.
    Copies the status snapshot and decoded entities on every refresh.
    """
    while True:
        await asyncio.sleep(refresh_interval)
        dbstate.set_snapshot(loop.snapshot(), loop.entity_rows())
