"""Small async helpers shared by the persistence tests."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from sqlalchemy import update

from app.models.base import utcnow
from app.models.generation import ActiveGeneration


async def age_row(db, generation_id: str, seconds: float) -> None:
    """Push a ledger row's last_update_at into the past."""
    async with db.session_maker() as session:
        await session.execute(
            update(ActiveGeneration)
            .where(ActiveGeneration.id == generation_id)
            .values(last_update_at=utcnow() - timedelta(seconds=seconds))
        )
        await session.commit()


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll an async predicate until it returns something truthy."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        value = await predicate()
        if value:
            return value
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
