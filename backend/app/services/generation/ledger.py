"""生成台账

Review note:
- 台账写入全部是尽力而为：失败只记 warning，绝不影响向客户端的转发。
- 流式阶段每一行只有一个写者（该生成自己的 Checkpointer）。
- Checkpointer 是事件通道的一个独立订阅者：首个增量立即落盘，之后最多每
  CHECKPOINT_INTERVAL_SEC 写一次；长时间没有事件（如工具执行中）时写心跳，
  保证 last_update_at 持续证明该生成仍然存活。
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.crud.generation import generation_crud
from app.models.base import utcnow
from app.models.generation import ActiveGeneration, GENERATION_COMPLETED, GENERATION_ERROR
from app.services.generation.events import EventKind, Subscription

logger = logging.getLogger("uvicorn.error")


class GenerationLedger:
    """active_generations 表的读写入口"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def create(
        self,
        generation_id: str,
        chat_id: str,
        model_id: str,
        reasoning_effort: Optional[str] = None,
        learning_sub_mode: Optional[str] = None,
    ) -> bool:
        try:
            async with self.session_maker() as session:
                await generation_crud.create(
                    session,
                    id=generation_id,
                    chat_id=chat_id,
                    model_id=model_id,
                    reasoning_effort=reasoning_effort,
                    learning_sub_mode=learning_sub_mode,
                )
            return True
        except SQLAlchemyError as exc:
            logger.warning("ledger-create-failed id=%s chat=%s error=%s", generation_id, chat_id, exc)
            return False

    async def get(self, generation_id: str) -> Optional[ActiveGeneration]:
        async with self.session_maker() as session:
            return await generation_crud.get(session, generation_id)

    async def get_streaming(self, chat_id: str) -> Optional[ActiveGeneration]:
        async with self.session_maker() as session:
            return await generation_crud.get_streaming_for_chat(session, chat_id)

    async def _update(self, label: str, generation_id: str, **values) -> bool:
        try:
            async with self.session_maker() as session:
                return await generation_crud.update_fields(session, generation_id, **values) > 0
        except SQLAlchemyError as exc:
            logger.warning("ledger-%s-failed id=%s error=%s", label, generation_id, exc)
            return False

    async def checkpoint(self, generation_id: str, partial_text: str, partial_reasoning: str, first_chunk: bool = False) -> bool:
        values = {"partial_text": partial_text, "partial_reasoning": partial_reasoning}
        if first_chunk:
            values["first_chunk_at"] = utcnow()
        return await self._update("checkpoint", generation_id, **values)

    async def heartbeat(self, generation_id: str) -> bool:
        return await self._update("heartbeat", generation_id)

    async def complete(
        self,
        generation_id: str,
        response_content: str,
        tokens_per_second: Optional[float],
        total_tokens: Optional[int],
    ) -> bool:
        """标记完成并保存最终内容快照（最终写入失败时供对账任务恢复）"""
        return await self._update(
            "complete",
            generation_id,
            status=GENERATION_COMPLETED,
            completed_at=utcnow(),
            response_content=response_content,
            tokens_per_second=tokens_per_second,
            total_tokens=total_tokens,
        )

    async def mark_error(self, generation_id: str, error: str) -> bool:
        return await self._update(
            "error",
            generation_id,
            status=GENERATION_ERROR,
            completed_at=utcnow(),
            error=error,
        )


class Checkpointer:
    """把增量事件折叠成部分文本 / 推理，并按节奏写入台账"""

    def __init__(self, ledger: GenerationLedger, generation_id: str, interval_sec: float = 2.0):
        self.ledger = ledger
        self.generation_id = generation_id
        self.interval_sec = max(float(interval_sec), 0.05)
        self.partial_text = ""
        self.partial_reasoning = ""
        self.writes = 0
        self._first_written = False
        self._dirty = False
        self._last_write = time.monotonic()

    async def _flush(self) -> None:
        await self.ledger.checkpoint(
            self.generation_id,
            self.partial_text,
            self.partial_reasoning,
            first_chunk=not self._first_written,
        )
        self._first_written = True
        self._dirty = False
        self._last_write = time.monotonic()
        self.writes += 1

    async def consume(self, subscription: Subscription) -> None:
        while True:
            try:
                event = await subscription.get(timeout=self.interval_sec)
            except asyncio.TimeoutError:
                # 空闲心跳
                if self._dirty:
                    await self._flush()
                else:
                    await self.ledger.heartbeat(self.generation_id)
                    self._last_write = time.monotonic()
                continue

            if event is None:
                break
            if not event.is_delta:
                continue

            if event.kind is EventKind.TEXT_DELTA:
                self.partial_text += event.payload.get("text", "")
            elif event.kind is EventKind.REASONING_DELTA:
                self.partial_reasoning += event.payload.get("text", "")
            self._dirty = True

            if not self._first_written or time.monotonic() - self._last_write >= self.interval_sec:
                await self._flush()

        if self._dirty:
            await self._flush()
