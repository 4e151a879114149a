"""生成编排器

Review note:
- 阶段：composing → streaming(step 1..N) → finalizing → persisted；
  流式阶段遇到模型错误、超时、任务取消进入 aborted。
- 每次生成在独立的 asyncio task 中运行，与 HTTP 连接解耦：
  客户端断开后生成继续完成并落库，持久的是台账行而不是直播流。
- 事件通道有三个订阅者：relay（转发给客户端）、telemetry、checkpoint。
- 同一步骤内的工具调用并发执行；没有工具调用的步骤结束循环。
- reasoning_effort="auto" 时先用轻量模型给提示词分级；首轮回复落库后
  在同一个 task 里生成会话标题（relay 已结束，不影响客户端）。
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.crud.chat import chat_crud
from app.schemas.content import TextPart, dump_parts
from app.schemas.conversation import MessageResponse
from app.services.generation.assembler import assemble_content
from app.services.generation.events import EventChannel, EventKind, GenerationEvent, Subscription
from app.services.generation.ledger import Checkpointer, GenerationLedger
from app.services.generation.model_profile import ModelCatalog, ModelProfile
from app.services.generation.reconciler import StaleReconciler
from app.services.generation.records import GenerationState, StepResult, ToolCall, ToolResult
from app.services.generation.telemetry import TelemetryTracker, Usage
from app.services.persistence import PersistenceGateway
from app.services.tools.base import ToolSpec
from app.services.tools.registry import DEFAULT_CAPABILITIES, ToolRegistry
from app.utils.openai_helper import ModelStreamer, classify_reasoning_effort, generate_title
from app.utils.system_prompt import compose_system_prompt

logger = logging.getLogger("uvicorn.error")


class GenerationPhase(str, Enum):
    COMPOSING = "composing"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    PERSISTED = "persisted"
    ABORTED = "aborted"


class ChatNotFoundError(LookupError):
    """会话不存在或不属于调用方"""


class GenerationConflictError(RuntimeError):
    """会话中已有仍在进行的生成"""

    def __init__(self, generation_id: str):
        super().__init__(f"会话已有进行中的生成: {generation_id}")
        self.generation_id = generation_id


class ModelStreamError(RuntimeError):
    """模型 / 传输层错误（不重试）"""


@dataclass
class GenerationRequest:
    chat_id: str
    user_id: str
    message: str
    model_id: Optional[str] = None
    reasoning_effort: str = "medium"
    response_length: int = 30
    chat_mode: str = "chat"
    learning_sub_mode: str = "teaching"
    custom_instructions: Optional[str] = None
    enabled_tools: List[str] = field(default_factory=lambda: list(DEFAULT_CAPABILITIES))
    user_name: str = ""
    user_gender: str = "not-specified"


@dataclass
class GenerationRun:
    """一次生成的运行时状态（只在所属 task 内修改）"""
    generation_id: str
    request: GenerationRequest
    profile: ModelProfile
    tools: Dict[str, ToolSpec]
    messages: List[dict]
    channel: EventChannel
    telemetry: TelemetryTracker
    phase: GenerationPhase = GenerationPhase.COMPOSING
    step: int = 0
    state: GenerationState = field(default_factory=GenerationState)
    message_id: Optional[str] = None
    error: Optional[str] = None
    first_reply: bool = False

    def emit(self, kind: EventKind, **payload) -> None:
        self.channel.publish(GenerationEvent(kind, payload))


class GenerationHandle:
    """调用方持有的句柄：读取直播事件；断开不影响生成本身"""

    def __init__(self, run: GenerationRun, subscription: Subscription, task: asyncio.Task):
        self.run = run
        self.subscription = subscription
        self.task = task

    @property
    def generation_id(self) -> str:
        return self.run.generation_id

    async def events(self) -> AsyncIterator[GenerationEvent]:
        async for event in self.subscription:
            yield event

    def detach(self) -> None:
        self.subscription.close()


def history_to_openai(history: Sequence[MessageResponse]) -> List[dict]:
    """历史消息转为模型上下文：只取文本片段"""
    messages = []
    for msg in history:
        if msg.role not in ("user", "assistant"):
            continue
        text = "".join(part.text for part in msg.content if part.type == "text")
        if text:
            messages.append({"role": msg.role, "content": text})
    return messages


def tool_round_messages(step: StepResult) -> List[dict]:
    """把一个带工具调用的步骤追加为下一步的上下文"""
    assistant = {
        "role": "assistant",
        "content": step.text or None,
        "tool_calls": [
            {
                "id": call.call_id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.args, ensure_ascii=False)},
            }
            for call in step.tool_calls
        ],
    }
    tool_messages = [
        {
            "role": "tool",
            "tool_call_id": result.call_id,
            "content": json.dumps(result.output, ensure_ascii=False, default=str),
        }
        for result in step.tool_results
    ]
    return [assistant] + tool_messages


class GenerationOrchestrator:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        catalog: ModelCatalog,
        streamer: ModelStreamer,
        tool_registry: ToolRegistry,
        gateway: PersistenceGateway,
        ledger: GenerationLedger,
        reconciler: StaleReconciler,
        max_steps: int = 5,
        timeout_sec: float = 300,
        checkpoint_interval_sec: float = 2,
        title_model: Optional[str] = None,
        auto_reasoning_model: Optional[str] = None,
    ):
        self.session_maker = session_maker
        self.catalog = catalog
        self.streamer = streamer
        self.tool_registry = tool_registry
        self.gateway = gateway
        self.ledger = ledger
        self.reconciler = reconciler
        self.max_steps = max(1, int(max_steps))
        self.timeout_sec = timeout_sec
        self.checkpoint_interval_sec = checkpoint_interval_sec
        self.title_model = title_model
        self.auto_reasoning_model = auto_reasoning_model
        self._start_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def start(self, request: GenerationRequest) -> GenerationHandle:
        """
        开始一次生成

        保存用户消息、创建台账行后立即返回；生成在后台 task 中进行。

        Raises:
            UnknownModelError: 模型未配置
            ChatNotFoundError: 会话不存在
            GenerationConflictError: 会话已有未过期的 streaming 行
        """
        request_started_at = time.monotonic()
        profile = self.catalog.get(request.model_id)
        request = await self.resolve_effort(request)

        async with self._start_lock:
            async with self.session_maker() as session:
                chat = await chat_crud.get(session, request.chat_id, request.user_id)
            if chat is None:
                raise ChatNotFoundError(f"会话不存在: {request.chat_id}")

            existing = await self.ledger.get_streaming(request.chat_id)
            if existing is not None:
                if not self.reconciler.is_stale(existing):
                    raise GenerationConflictError(existing.id)
                await self.reconciler.reconcile_streaming(existing)

            async with self.session_maker() as session:
                history = await self.gateway.load_messages(session, request.chat_id)

            # composing
            tools = self.tool_registry.lookup_enabled_tools(request.enabled_tools) if profile.supports_tools else {}
            system_prompt = compose_system_prompt(
                response_length=request.response_length,
                user_name=request.user_name,
                user_gender=request.user_gender,
                mode=request.chat_mode,
                learning_sub_mode=request.learning_sub_mode,
                custom_instructions=request.custom_instructions if request.chat_mode != "learning" else None,
                tool_names=list(tools),
            )
            messages = (
                [{"role": "system", "content": system_prompt}]
                + history_to_openai(history)
                + [{"role": "user", "content": request.message}]
            )

            await self.gateway.save_message(request.chat_id, "user", [TextPart(text=request.message)])

            generation_id = str(uuid.uuid4())
            await self.ledger.create(
                generation_id,
                request.chat_id,
                profile.model_id,
                reasoning_effort=request.reasoning_effort,
                learning_sub_mode=request.learning_sub_mode if request.chat_mode == "learning" else None,
            )

        run = GenerationRun(
            generation_id=generation_id,
            request=request,
            profile=profile,
            tools=tools,
            messages=messages,
            channel=EventChannel(),
            telemetry=TelemetryTracker(request_started_at),
            first_reply=not any(msg.role == "assistant" for msg in history),
        )
        relay = run.channel.subscribe("relay")
        telemetry_sub = run.channel.subscribe("telemetry")
        checkpoint_sub = run.channel.subscribe("checkpoint")

        task = asyncio.create_task(self._run(run, telemetry_sub, checkpoint_sub), name=f"generation-{generation_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "generation-start id=%s chat=%s model=%s effort=%s mode=%s tools=%s",
            generation_id,
            request.chat_id,
            profile.model_id,
            request.reasoning_effort,
            request.chat_mode,
            ",".join(tools) or "-",
        )
        return GenerationHandle(run, relay, task)

    async def resolve_effort(self, request: GenerationRequest) -> GenerationRequest:
        """reasoning_effort="auto" 时按提示词复杂度选择 low / medium / high"""
        if request.reasoning_effort != "auto":
            return request
        return replace(request, reasoning_effort=await self.classify_effort(request.message))

    async def classify_effort(self, prompt: str) -> str:
        model_id = self.auto_reasoning_model or self.catalog.default_model
        return await classify_reasoning_effort(self.streamer, model_id, prompt)

    async def shutdown(self) -> None:
        """取消所有进行中的生成（台账行保持 streaming，由对账任务恢复）"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, run: GenerationRun, telemetry_sub: Subscription, checkpoint_sub: Subscription) -> None:
        checkpointer = Checkpointer(self.ledger, run.generation_id, self.checkpoint_interval_sec)
        consumers = [
            (telemetry_sub, asyncio.create_task(run.telemetry.consume(telemetry_sub))),
            (checkpoint_sub, asyncio.create_task(checkpointer.consume(checkpoint_sub))),
        ]

        run.emit(EventKind.START, generation_id=run.generation_id, model=run.profile.model_id)
        run.phase = GenerationPhase.STREAMING
        try:
            try:
                await asyncio.wait_for(self._stream_steps(run), timeout=self.timeout_sec)
            except asyncio.TimeoutError:
                await self._abort(run, consumers, f"生成超时（{self.timeout_sec}s）")
                return
            except ModelStreamError as exc:
                await self._abort(run, consumers, str(exc))
                return
            except asyncio.CancelledError:
                await self._abort(run, consumers, "生成已取消", mark_error=False)
                raise
            except Exception as exc:
                logger.exception("generation-failed id=%s chat=%s", run.generation_id, run.request.chat_id)
                await self._abort(run, consumers, f"服务器错误: {str(exc)}")
                return

            ended_at = time.monotonic()
            await self._drain(run, consumers)
            run.telemetry.finish(ended_at)
            try:
                await self._finalize(run)
            except Exception as exc:
                # 台账行若已是 completed 快照，由对账任务补写消息
                logger.exception("generation-finalize-failed id=%s chat=%s", run.generation_id, run.request.chat_id)
                run.phase = GenerationPhase.ABORTED
                run.error = f"服务器错误: {str(exc)}"
                run.emit(EventKind.ERROR, generation_id=run.generation_id, error=run.error)
        finally:
            # 保证 relay 一定能结束
            run.channel.close()

        if run.phase is GenerationPhase.PERSISTED and run.first_reply:
            await self._generate_title(run)

    async def _generate_title(self, run: GenerationRun) -> None:
        """首轮回复后为还没有标题的会话生成标题"""
        model_id = self.title_model or run.profile.model_id
        title = await generate_title(self.streamer, model_id, run.request.message, run.state.text)
        try:
            async with self.session_maker() as session:
                updated = await chat_crud.set_title_if_missing(session, run.request.chat_id, title)
        except SQLAlchemyError:
            logger.exception("title-save-failed chat=%s", run.request.chat_id)
            return
        if updated:
            logger.info("title-generated chat=%s title=%s", run.request.chat_id, title)

    async def _drain(self, run: GenerationRun, consumers: List[Tuple[Subscription, asyncio.Task]]) -> None:
        """停止观察者并等待其处理完已排队事件（checkpoint 会做最后一次写入）"""
        for subscription, _ in consumers:
            run.channel.detach(subscription)
        await asyncio.gather(*(task for _, task in consumers))

    async def _abort(
        self,
        run: GenerationRun,
        consumers: List[Tuple[Subscription, asyncio.Task]],
        error: str,
        mark_error: bool = True,
    ) -> None:
        run.phase = GenerationPhase.ABORTED
        run.error = error
        run.emit(EventKind.ERROR, generation_id=run.generation_id, error=error)
        await self._drain(run, consumers)
        if mark_error:
            await self.ledger.mark_error(run.generation_id, error)
        logger.warning(
            "generation-aborted id=%s chat=%s step=%s error=%s",
            run.generation_id,
            run.request.chat_id,
            run.step,
            error,
        )
        run.channel.close()

    async def _stream_steps(self, run: GenerationRun) -> None:
        tool_defs = [spec.to_openai() for spec in run.tools.values()] or None
        messages = list(run.messages)

        for step_no in range(1, self.max_steps + 1):
            run.step = step_no
            step = await self._stream_one_step(run, messages, tool_defs)
            if step.tool_calls:
                step = replace(step, tool_results=await self._dispatch_tools(run, step.tool_calls))
            run.state = run.state.absorb(step)
            if not step.tool_calls:
                break
            messages.extend(tool_round_messages(step))

    async def _stream_one_step(self, run: GenerationRun, messages: List[dict], tool_defs: Optional[List[dict]]) -> StepResult:
        text = ""
        reasoning = ""
        calls: List[ToolCall] = []
        files = []
        usage = Usage()
        finish_reason = None

        async for item in self.streamer.stream_step(run.profile, messages, tool_defs, run.request.reasoning_effort):
            kind = item.get("type")
            if kind == "text":
                content = item.get("content") or ""
                if content:
                    text += content
                    run.emit(EventKind.TEXT_DELTA, text=content)
            elif kind == "reasoning":
                content = item.get("content") or ""
                if content:
                    reasoning += content
                    run.emit(EventKind.REASONING_DELTA, text=content)
            elif kind == "tool_call":
                call: ToolCall = item["call"]
                calls.append(call)
                run.emit(EventKind.TOOL_CALL, tool_call_id=call.call_id, tool_name=call.name, args=call.args)
            elif kind == "file":
                files.append(item["file"])
            elif kind == "usage":
                usage = item["usage"]
            elif kind == "finish":
                finish_reason = item.get("finish_reason")
            elif kind == "error":
                raise ModelStreamError(item.get("error") or "模型接口错误")

        return StepResult(
            text=text,
            reasoning=reasoning,
            tool_calls=tuple(calls),
            files=tuple(files),
            usage=usage,
            finish_reason=finish_reason,
        )

    async def _dispatch_tools(self, run: GenerationRun, calls: Sequence[ToolCall]) -> Tuple[ToolResult, ...]:
        async def invoke(call: ToolCall) -> ToolResult:
            spec = run.tools.get(call.name)
            if spec is None:
                output = {"error": f"Unknown tool: {call.name}"}
            else:
                try:
                    output = await spec.execute(call.args)
                except Exception as exc:
                    logger.exception("tool-failed name=%s id=%s", call.name, run.generation_id)
                    output = {"error": f"Tool {call.name} failed: {str(exc)}"}
            run.emit(EventKind.TOOL_RESULT, tool_call_id=call.call_id, tool_name=call.name, result=output)
            return ToolResult(call_id=call.call_id, name=call.name, output=output)

        return tuple(await asyncio.gather(*(invoke(call) for call in calls)))

    async def _finalize(self, run: GenerationRun) -> None:
        run.phase = GenerationPhase.FINALIZING
        state = run.state
        request = run.request
        parts = assemble_content(state.tool_calls, state.tool_results, state.reasoning, state.text, state.files)
        tps = run.telemetry.tokens_per_second(state.usage)
        snapshot = json.dumps(dump_parts(parts), ensure_ascii=False)

        await self.ledger.complete(run.generation_id, snapshot, tps, state.usage.total_tokens or None)

        try:
            message = await self.gateway.finalize_generation(
                run.generation_id,
                request.chat_id,
                parts,
                model=run.profile.model_id,
                learning_sub_mode=request.learning_sub_mode if request.chat_mode == "learning" else None,
                tokens_per_second=tps,
            )
            run.message_id = message.id
            run.phase = GenerationPhase.PERSISTED
        except SQLAlchemyError:
            # 台账行保留 completed 快照，由对账任务补写
            logger.exception("generation-persist-failed id=%s chat=%s", run.generation_id, request.chat_id)

        ttft = run.telemetry.time_to_first_token
        logger.info(
            "generation-finish id=%s chat=%s steps=%s tokens=%s tps=%s ttft=%s persisted=%s",
            run.generation_id,
            request.chat_id,
            state.steps,
            state.usage.tokens_generated,
            tps,
            f"{ttft:.3f}" if ttft is not None else "-",
            run.phase is GenerationPhase.PERSISTED,
        )
        run.emit(
            EventKind.FINISH,
            generation_id=run.generation_id,
            message_id=run.message_id,
            finish_reason=state.finish_reason,
            tokens_per_second=tps,
            usage=asdict(state.usage),
            content=dump_parts(parts),
        )
        run.channel.close()
