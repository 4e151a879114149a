"""生成事件与事件通道

Review note:
- 模型输出被转换成有序的类型化事件；转发给客户端、耗时统计、台账检查点
  三个消费者各自订阅同一个通道，互不阻塞。
- publish 只做 put_nowait（无界队列），慢消费者不会拖住生产者。
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class EventKind(str, Enum):
    START = "start"
    TEXT_DELTA = "text-delta"
    REASONING_DELTA = "reasoning-delta"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    FINISH = "finish"
    ERROR = "error"


DELTA_KINDS = frozenset({
    EventKind.TEXT_DELTA,
    EventKind.REASONING_DELTA,
    EventKind.TOOL_CALL,
    EventKind.TOOL_RESULT,
})


@dataclass(frozen=True)
class GenerationEvent:
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    at: float = field(default_factory=time.monotonic)

    @property
    def is_delta(self) -> bool:
        return self.kind in DELTA_KINDS

    @property
    def is_terminal(self) -> bool:
        return self.kind in (EventKind.FINISH, EventKind.ERROR)


def encode_sse(event: GenerationEvent) -> str:
    """编码为 SSE 帧"""
    data = json.dumps(event.payload, ensure_ascii=False, default=str)
    return f"event: {event.kind.value}\ndata: {data}\n\n"


_CLOSED = object()


class Subscription:
    """单个消费者的事件队列"""

    def __init__(self, channel: "EventChannel", name: str):
        self.name = name
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _push(self, item: Any) -> None:
        self._queue.put_nowait(item)

    async def get(self, timeout: Optional[float] = None) -> Optional[GenerationEvent]:
        """
        取下一个事件

        Returns:
            事件；通道关闭后返回 None

        Raises:
            asyncio.TimeoutError: timeout 内没有新事件
        """
        if self.closed and self._queue.empty():
            return None
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            self.closed = True
            return None
        return item

    def close(self) -> None:
        self._channel.detach(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> GenerationEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventChannel:
    """一对多的事件通道"""

    def __init__(self):
        self._subscribers: List[Subscription] = []
        self.closed = False

    def subscribe(self, name: str = "") -> Subscription:
        sub = Subscription(self, name)
        if self.closed:
            sub._push(_CLOSED)
        else:
            self._subscribers.append(sub)
        return sub

    def publish(self, event: GenerationEvent) -> None:
        if self.closed:
            return
        for sub in list(self._subscribers):
            sub._push(event)

    def detach(self, sub: Subscription) -> None:
        """单独关闭某个订阅（该订阅会在读完已排队事件后结束）"""
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            sub._push(_CLOSED)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for sub in self._subscribers:
            sub._push(_CLOSED)
        self._subscribers.clear()
