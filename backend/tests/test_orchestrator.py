"""Tests for the generation orchestrator."""

import asyncio

import httpx
import openai
import pytest

from app.crud.chat import chat_crud
from app.models.generation import GENERATION_COMPLETED, GENERATION_ERROR, GENERATION_STREAMING
from app.schemas.content import ReasoningPart, TextPart, ToolInvocationPart
from app.services.generation.events import EventKind
from app.services.generation.model_profile import UnknownModelError
from app.services.generation.orchestrator import (
    ChatNotFoundError,
    GenerationConflictError,
    GenerationRequest,
)
from app.services.generation.records import ToolCall
from app.services.tools.base import ToolSpec
from app.services.tools.brave import BraveSearchArgs
from tests.conftest import CHAT_ID, MODEL_ID, USER_ID, FakeStreamer, usage_event
from tests.helpers import age_row, wait_until


class StaticRegistry:
    def __init__(self, *specs: ToolSpec):
        self.specs = {spec.name: spec for spec in specs}

    def lookup_enabled_tools(self, names):
        return dict(self.specs)


def request(message: str = "hi", **overrides) -> GenerationRequest:
    values = {"chat_id": CHAT_ID, "user_id": USER_ID, "message": message, "model_id": MODEL_ID}
    values.update(overrides)
    return GenerationRequest(**values)


def finish(reason: str = "stop"):
    return {"type": "finish", "finish_reason": reason}


def tool_call(call_id: str, name: str, **args):
    return {"type": "tool_call", "call": ToolCall(call_id=call_id, name=name, args=args)}


async def collect(handle):
    return [event async for event in handle.events()]


async def stored_messages(db, gateway):
    async with db.session_maker() as session:
        return await gateway.load_messages(session, CHAT_ID)


async def chat_title(db):
    async with db.session_maker() as session:
        return (await chat_crud.get(session, CHAT_ID, USER_ID)).title


@pytest.mark.asyncio
class TestSingleStep:
    async def test_plain_answer_persisted(self, db, chat, gateway, ledger, make_orchestrator):
        streamer = FakeStreamer([[
            {"type": "reasoning", "content": "Thinking"},
            {"type": "text", "content": "Hello"},
            {"type": "text", "content": ", world"},
            usage_event(output_tokens=12),
            finish(),
        ]])
        orchestrator = make_orchestrator(streamer)

        handle = await orchestrator.start(request("greet me"))
        events = await collect(handle)
        await handle.task

        kinds = [e.kind for e in events]
        assert kinds[0] is EventKind.START
        assert kinds[-1] is EventKind.FINISH
        assert [e.payload["text"] for e in events if e.kind is EventKind.TEXT_DELTA] == ["Hello", ", world"]

        messages = await stored_messages(db, gateway)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[0].content == [TextPart(text="greet me")]
        assert messages[1].content == [ReasoningPart(text="Thinking"), TextPart(text="Hello, world")]
        assert messages[1].model == MODEL_ID
        assert messages[1].tokens_per_second is None or messages[1].tokens_per_second > 0

        done = events[-1].payload
        assert done["message_id"] == messages[1].id
        assert done["generation_id"] == handle.generation_id
        assert done["finish_reason"] == "stop"
        assert done["usage"]["output_tokens"] == 12

        assert await ledger.get(handle.generation_id) is None

    async def test_no_tools_means_one_step(self, db, chat, gateway, make_orchestrator):
        streamer = FakeStreamer([[{"type": "text", "content": "ok"}, finish()]])
        handle = await make_orchestrator(streamer).start(request())
        await collect(handle)
        await handle.task

        assert len(streamer.calls) == 1
        assert streamer.calls[0]["tools"] is None
        content = (await stored_messages(db, gateway))[-1].content
        assert not any(isinstance(p, ToolInvocationPart) for p in content)

    async def test_context_includes_history(self, db, chat, gateway, make_orchestrator):
        await gateway.save_message(CHAT_ID, "user", [TextPart(text="earlier question")])
        await gateway.save_message(CHAT_ID, "assistant", [ReasoningPart(text="hidden"), TextPart(text="earlier answer")])
        streamer = FakeStreamer([[{"type": "text", "content": "ok"}, finish()]])

        handle = await make_orchestrator(streamer).start(request("next question", reasoning_effort="high"))
        await collect(handle)
        await handle.task

        call = streamer.calls[0]
        assert call["reasoning_effort"] == "high"
        assert call["messages"][0]["role"] == "system"
        assert call["messages"][1:] == [
            {"role": "user", "content": "earlier question"},
            {"role": "assistant", "content": "earlier answer"},
            {"role": "user", "content": "next question"},
        ]

    async def test_learning_mode(self, db, chat, gateway, make_orchestrator):
        streamer = FakeStreamer([[{"type": "text", "content": "Let's start."}, finish()]])
        handle = await make_orchestrator(streamer).start(request(
            chat_mode="learning",
            learning_sub_mode="flashcard",
            custom_instructions="Always answer in pirate speak",
        ))
        await collect(handle)
        await handle.task

        assert "pirate" not in streamer.calls[0]["messages"][0]["content"]
        assert (await stored_messages(db, gateway))[-1].learning_sub_mode == "flashcard"


@pytest.mark.asyncio
class TestToolSteps:
    async def test_tool_network_failure_reported_to_model(self, db, chat, gateway, make_orchestrator):
        async def unreachable(args):
            raise httpx.ConnectError("connection refused")

        spec = ToolSpec("brave_web_search", "Search the web", BraveSearchArgs, unreachable, failure_label="Search")
        streamer = FakeStreamer([
            [tool_call("call_1", "brave_web_search", query="latest news"), usage_event(5), finish("tool_calls")],
            [{"type": "text", "content": "Search is unavailable right now."}, usage_event(8), finish()],
        ])

        handle = await make_orchestrator(streamer, StaticRegistry(spec)).start(request("what's new?"))
        events = await collect(handle)
        await handle.task

        content = (await stored_messages(db, gateway))[-1].content
        assert len(content) == 2
        invocation, text = content
        assert isinstance(invocation, ToolInvocationPart)
        assert invocation.state == "result"
        assert invocation.args == {"query": "latest news"}
        assert invocation.result == {"error": "Search failed: connection refused"}
        assert text == TextPart(text="Search is unavailable right now.")

        results = [e for e in events if e.kind is EventKind.TOOL_RESULT]
        assert results[0].payload["tool_call_id"] == "call_1"
        assert streamer.calls[0]["tools"][0]["function"]["name"] == "brave_web_search"

        second_context = streamer.calls[1]["messages"]
        assert second_context[-2]["tool_calls"][0]["id"] == "call_1"
        assert second_context[-1]["role"] == "tool"
        assert second_context[-1]["tool_call_id"] == "call_1"
        assert events[-1].payload["usage"]["output_tokens"] == 13

    async def test_parallel_calls_in_one_step(self, db, chat, gateway, make_orchestrator):
        async def echo(args):
            await asyncio.sleep(0.01)
            return {"query": args.query}

        spec = ToolSpec("brave_web_search", "Search the web", BraveSearchArgs, echo)
        streamer = FakeStreamer([
            [tool_call("a", "brave_web_search", query="one"), tool_call("b", "brave_web_search", query="two"), finish("tool_calls")],
            [{"type": "text", "content": "done"}, finish()],
        ])

        handle = await make_orchestrator(streamer, StaticRegistry(spec)).start(request())
        await collect(handle)
        await handle.task

        content = (await stored_messages(db, gateway))[-1].content
        assert [(p.tool_call_id, p.result) for p in content[:2]] == [("a", {"query": "one"}), ("b", {"query": "two"})]

    async def test_step_limit(self, db, chat, gateway, make_orchestrator):
        streamer = FakeStreamer([[tool_call(f"c{i}", "mystery"), finish("tool_calls")] for i in range(5)])

        handle = await make_orchestrator(streamer, max_steps=2).start(request())
        await collect(handle)
        await handle.task

        assert len(streamer.calls) == 2
        content = (await stored_messages(db, gateway))[-1].content
        assert [p.result for p in content] == [{"error": "Unknown tool: mystery"}] * 2


@pytest.mark.asyncio
class TestFailures:
    async def test_model_error_marks_ledger(self, db, chat, gateway, ledger, make_orchestrator):
        streamer = FakeStreamer([[
            {"type": "text", "content": "partial"},
            {"type": "error", "error": "模型接口错误: upstream 500"},
        ]])

        handle = await make_orchestrator(streamer).start(request())
        events = await collect(handle)
        await handle.task

        assert events[-1].kind is EventKind.ERROR
        assert "upstream 500" in events[-1].payload["error"]
        row = await ledger.get(handle.generation_id)
        assert row.status == GENERATION_ERROR
        assert row.partial_text == "partial"
        assert [m.role for m in await stored_messages(db, gateway)] == ["user"]

    async def test_timeout(self, db, chat, gateway, ledger, make_orchestrator):
        streamer = FakeStreamer([[
            {"type": "text", "content": "Hel"},
            {"type": "sleep", "seconds": 5},
            {"type": "text", "content": "lo"},
            finish(),
        ]])

        handle = await make_orchestrator(streamer, timeout_sec=0.2).start(request())
        events = await collect(handle)
        await handle.task

        assert events[-1].kind is EventKind.ERROR
        row = await ledger.get(handle.generation_id)
        assert row.status == GENERATION_ERROR
        assert row.partial_text == "Hel"

    async def test_finalize_failure_still_terminates(self, db, chat, gateway, ledger, make_orchestrator, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(gateway, "finalize_generation", broken)
        streamer = FakeStreamer([[{"type": "text", "content": "done"}, finish()]])

        handle = await make_orchestrator(streamer).start(request())
        events = await asyncio.wait_for(collect(handle), timeout=5)
        await handle.task

        assert events[-1].kind is EventKind.ERROR
        assert "disk on fire" in events[-1].payload["error"]
        row = await ledger.get(handle.generation_id)
        assert row.status == GENERATION_COMPLETED
        assert await chat_title(db) is None

    async def test_unknown_chat(self, chat, make_orchestrator):
        orchestrator = make_orchestrator(FakeStreamer([]))
        with pytest.raises(ChatNotFoundError):
            await orchestrator.start(request(chat_id="missing"))
        with pytest.raises(ChatNotFoundError):
            await orchestrator.start(request(user_id="someone-else"))

    async def test_unknown_model(self, chat, make_orchestrator):
        with pytest.raises(UnknownModelError):
            await make_orchestrator(FakeStreamer([])).start(request(model_id="gpt-unknown"))


@pytest.mark.asyncio
class TestConcurrency:
    async def test_fresh_generation_conflicts(self, db, chat, gateway, ledger, make_orchestrator):
        await ledger.create("running", CHAT_ID, MODEL_ID)

        with pytest.raises(GenerationConflictError) as excinfo:
            await make_orchestrator(FakeStreamer([])).start(request())

        assert excinfo.value.generation_id == "running"
        assert await stored_messages(db, gateway) == []

    async def test_stale_generation_reconciled_first(self, db, chat, gateway, ledger, make_orchestrator):
        await ledger.create("abandoned", CHAT_ID, MODEL_ID)
        await ledger.checkpoint("abandoned", "Hello, wo", "")
        await age_row(db, "abandoned", 60)
        streamer = FakeStreamer([[{"type": "text", "content": "fresh"}, finish()]])

        handle = await make_orchestrator(streamer).start(request())
        await collect(handle)
        await handle.task

        texts = [m.content[-1].text for m in await stored_messages(db, gateway)]
        assert texts == ["Hello, wo", "hi", "fresh"]
        assert await ledger.get("abandoned") is None

    async def test_detached_caller_still_persists(self, db, chat, gateway, ledger, make_orchestrator):
        streamer = FakeStreamer([[
            {"type": "text", "content": "still "},
            {"type": "sleep", "seconds": 0.1},
            {"type": "text", "content": "here"},
            finish(),
        ]])

        handle = await make_orchestrator(streamer).start(request())
        handle.detach()
        await handle.task

        assert (await stored_messages(db, gateway))[-1].content == [TextPart(text="still here")]
        assert await ledger.get(handle.generation_id) is None

    async def test_shutdown_leaves_row_for_reconciler(self, db, chat, gateway, ledger, make_orchestrator):
        streamer = FakeStreamer([[
            {"type": "text", "content": "Hel"},
            {"type": "sleep", "seconds": 5},
            finish(),
        ]])
        orchestrator = make_orchestrator(streamer)
        handle = await orchestrator.start(request())

        async def checkpointed():
            row = await ledger.get(handle.generation_id)
            return row is not None and row.partial_text == "Hel"

        await wait_until(checkpointed)
        await orchestrator.shutdown()

        row = await ledger.get(handle.generation_id)
        assert row.status == GENERATION_STREAMING
        assert row.partial_text == "Hel"
        assert [m.role for m in await stored_messages(db, gateway)] == ["user"]


@pytest.mark.asyncio
class TestTitleAndEffort:
    async def test_title_generated_after_first_reply(self, db, chat, make_orchestrator):
        streamer = FakeStreamer([[{"type": "text", "content": "Hello, world"}, finish()]], completions=["Greeting The World"])

        handle = await make_orchestrator(streamer, title_model="gemini-2.5-flash").start(request("greet me"))
        await collect(handle)
        await handle.task

        assert await chat_title(db) == "Greeting The World"
        call = streamer.completion_calls[0]
        assert call["model"] == "gemini-2.5-flash"
        assert "greet me" in call["messages"][0]["content"]
        assert "Hello, world" in call["messages"][0]["content"]

    async def test_title_falls_back_to_user_message(self, db, chat, make_orchestrator):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://example.invalid/v1"))
        streamer = FakeStreamer([[{"type": "text", "content": "ok"}, finish()]], completions=[error])

        handle = await make_orchestrator(streamer).start(request("summarise this long article"))
        await collect(handle)
        await handle.task

        assert await chat_title(db) == "summarise..."

    async def test_no_title_after_later_replies(self, db, chat, gateway, make_orchestrator):
        await gateway.save_message(CHAT_ID, "user", [TextPart(text="earlier")])
        await gateway.save_message(CHAT_ID, "assistant", [TextPart(text="answer")])
        streamer = FakeStreamer([[{"type": "text", "content": "ok"}, finish()]], completions=["Unused"])

        handle = await make_orchestrator(streamer).start(request())
        await collect(handle)
        await handle.task

        assert streamer.completion_calls == []
        assert await chat_title(db) is None

    async def test_existing_title_kept(self, db, chat, make_orchestrator):
        async with db.session_maker() as session:
            row = await chat_crud.get(session, CHAT_ID, USER_ID)
            row.title = "My own title"
            await session.commit()
        streamer = FakeStreamer([[{"type": "text", "content": "ok"}, finish()]], completions=["Generated"])

        handle = await make_orchestrator(streamer).start(request())
        await collect(handle)
        await handle.task

        assert await chat_title(db) == "My own title"

    async def test_auto_effort_classified_before_streaming(self, db, chat, ledger, make_orchestrator):
        streamer = FakeStreamer([[
            {"type": "sleep", "seconds": 0.3},
            {"type": "text", "content": "ok"},
            finish(),
        ]], completions=["high"])
        orchestrator = make_orchestrator(streamer, auto_reasoning_model="gemini-2.5-flash")

        handle = await orchestrator.start(request("prove it", reasoning_effort="auto"))
        assert (await ledger.get(handle.generation_id)).reasoning_effort == "high"
        await collect(handle)
        await handle.task

        assert streamer.completion_calls[0]["model"] == "gemini-2.5-flash"
        assert streamer.completion_calls[0]["messages"][-1] == {"role": "user", "content": "prove it"}
        assert streamer.calls[0]["reasoning_effort"] == "high"

    async def test_explicit_effort_skips_classifier(self, db, chat, make_orchestrator):
        streamer = FakeStreamer([[{"type": "text", "content": "ok"}, finish()]], completions=["Title"])

        handle = await make_orchestrator(streamer).start(request(reasoning_effort="low"))
        await collect(handle)
        await handle.task

        assert streamer.calls[0]["reasoning_effort"] == "low"
        assert len(streamer.completion_calls) == 1
