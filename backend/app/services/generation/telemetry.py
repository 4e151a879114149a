"""生成耗时统计与 tokens/s 计算"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from app.services.generation.events import EventKind, GenerationEvent, Subscription

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class Usage:
    """一次生成（所有步骤累加）的 token 用量"""
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @property
    def tokens_generated(self) -> int:
        # 推理 token 单独上报时直接相加，否则用 total - input 推算
        if self.reasoning_tokens > 0:
            return self.output_tokens + self.reasoning_tokens
        if self.total_tokens > 0:
            return self.total_tokens - self.input_tokens
        return self.output_tokens


class TelemetryTracker:
    """
    观察一次生成的事件序列，结束后计算 tokens/s

    生成起点取第一个推理增量的时间（有推理时），否则取第一个任意增量的时间；
    排队、上传提示词等前置延迟不计入。
    """

    def __init__(self, request_started_at: Optional[float] = None):
        self.request_started_at = request_started_at if request_started_at is not None else time.monotonic()
        self.first_chunk_at: Optional[float] = None
        self.first_reasoning_at: Optional[float] = None
        self.ended_at: Optional[float] = None

    def observe(self, event: GenerationEvent) -> None:
        if not event.is_delta:
            return
        if self.first_chunk_at is None:
            self.first_chunk_at = event.at
        if event.kind is EventKind.REASONING_DELTA and self.first_reasoning_at is None:
            self.first_reasoning_at = event.at

    async def consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            self.observe(event)

    def finish(self, at: Optional[float] = None) -> None:
        self.ended_at = at if at is not None else time.monotonic()

    @property
    def generation_started_at(self) -> Optional[float]:
        if self.first_reasoning_at is not None:
            return self.first_reasoning_at
        return self.first_chunk_at

    @property
    def time_to_first_token(self) -> Optional[float]:
        start = self.generation_started_at
        if start is None:
            return None
        return start - self.request_started_at

    def tokens_per_second(self, usage: Usage) -> Optional[float]:
        """
        计算 tokens/s

        Returns:
            正数（保留一位小数）；无法计算时返回 None，绝不返回 0
        """
        start = self.generation_started_at
        if start is None or self.ended_at is None:
            return None
        duration = self.ended_at - start
        tokens = usage.tokens_generated
        if tokens <= 0 or duration <= 0:
            logger.info("tps-skipped tokens=%s duration=%.3f", tokens, duration)
            return None
        tps = round(tokens / duration, 1)
        # 极小值四舍五入后可能为 0
        return tps if tps > 0 else None
