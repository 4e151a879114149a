"""过期生成的对账

Review note:
- 选出 last_update_at 超过阈值仍为 streaming 的行：有部分内容则写成助手消息
  （推理在前、正文在后），然后按同样的过期条件删除该行。
- “删除即提交”：条件删除影响 0 行说明别的对账进程或仍存活的生成已经处理了它，
  整个事务回滚，保证同一行最多产生一条消息。
- 另外恢复 completed 行（最终写入失败后留下的完整快照），
  并清理超过保留期的 error / completed 行。
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.crud.generation import generation_crud
from app.models.base import utcnow
from app.models.generation import ActiveGeneration, GENERATION_STREAMING
from app.schemas.content import ContentPart, parse_parts
from app.services.generation.assembler import recover_partial_content
from app.services.persistence import PersistenceGateway

logger = logging.getLogger("uvicorn.error")


@dataclass
class ReconcileReport:
    recovered: int = 0  # 写入了消息
    discarded: int = 0  # 没有内容，只删除了行
    skipped: int = 0  # 已被他人处理
    failed: int = 0
    purged: int = 0


class StaleReconciler:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        gateway: PersistenceGateway,
        stale_threshold_sec: float = 30,
        retention_sec: float = 86400,
    ):
        self.session_maker = session_maker
        self.gateway = gateway
        self.stale_threshold = timedelta(seconds=stale_threshold_sec)
        self.retention = timedelta(seconds=retention_sec)

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) - self.stale_threshold

    def is_stale(self, row: ActiveGeneration, now: Optional[datetime] = None) -> bool:
        return row.last_update_at < self.cutoff(now)

    async def _finalize(
        self,
        row: ActiveGeneration,
        parts: List[ContentPart],
        cutoff: datetime,
        tokens_per_second: Optional[float] = None,
    ) -> Optional[bool]:
        """
        写消息并条件删除行（同一事务）

        Returns:
            True 写入了消息；False 行已删除但没有内容；None 被他人抢先，已回滚
        """
        async with self.session_maker() as session:
            if parts:
                session.add(
                    self.gateway.build_message(
                        row.chat_id,
                        "assistant",
                        parts,
                        model=row.model_id,
                        learning_sub_mode=row.learning_sub_mode,
                        tokens_per_second=tokens_per_second,
                    )
                )
                await session.flush()

            deleted = await generation_crud.delete_if_stale(session, row.id, row.status, cutoff)
            if deleted == 0:
                await session.rollback()
                return None
            await session.commit()
            return bool(parts)

    async def reconcile_streaming(self, row: ActiveGeneration, now: Optional[datetime] = None) -> Optional[bool]:
        """对账一条中断的 streaming 行"""
        parts = recover_partial_content(row.partial_reasoning, row.partial_text)
        return await self._finalize(row, parts, self.cutoff(now))

    async def reconcile_completed(self, row: ActiveGeneration, now: Optional[datetime] = None) -> Optional[bool]:
        """恢复一条已完成但消息未落库的行"""
        parts = parse_parts(json.loads(row.response_content or "[]"))
        return await self._finalize(row, parts, self.cutoff(now), tokens_per_second=row.tokens_per_second)

    async def run_once(self, now: Optional[datetime] = None) -> ReconcileReport:
        now = now or utcnow()
        cutoff = self.cutoff(now)
        report = ReconcileReport()

        async with self.session_maker() as session:
            streaming = await generation_crud.list_stale_streaming(session, cutoff)
            completed = await generation_crud.list_completed(session, cutoff)

        for row in streaming + completed:
            try:
                if row.status == GENERATION_STREAMING:
                    outcome = await self.reconcile_streaming(row, now)
                else:
                    outcome = await self.reconcile_completed(row, now)
            except (SQLAlchemyError, ValueError, ValidationError):
                logger.exception("reconcile-row-failed id=%s chat=%s", row.id, row.chat_id)
                report.failed += 1
                continue

            if outcome is None:
                report.skipped += 1
            elif outcome:
                report.recovered += 1
            else:
                report.discarded += 1
            logger.info(
                "reconcile-row id=%s chat=%s status=%s outcome=%s",
                row.id,
                row.chat_id,
                row.status,
                {None: "skipped", True: "recovered", False: "discarded"}[outcome],
            )

        async with self.session_maker() as session:
            report.purged = await generation_crud.purge_finished(session, now - self.retention)

        if streaming or completed or report.purged:
            logger.info(
                "reconcile-done recovered=%s discarded=%s skipped=%s failed=%s purged=%s",
                report.recovered,
                report.discarded,
                report.skipped,
                report.failed,
                report.purged,
            )
        return report

    async def run_forever(self, interval_sec: float) -> None:
        """应用生命周期内周期性对账"""
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("reconcile-run-failed")
            await asyncio.sleep(interval_sec)
