"""
Tests for runtime message conversion and the streaming runtime client.
"""
import asyncio
from contextlib import aclosing
from pathlib import Path

import pytest
from claude_agent_sdk import SystemMessage, UserMessage

from runtime_manager.core.cancellation import CancellationToken
from runtime_manager.core.exceptions import QueryCancelledError
from runtime_manager.core.messages import (
    AssistantText,
    OtherMessage,
    RuntimeResult,
    SystemInit,
    from_sdk_message,
)
from runtime_manager.core.runtime_client import RuntimeClient, RuntimeInvocation

from .conftest import ScriptedQuery, assistant, result, system_init


def invocation(**overrides) -> RuntimeInvocation:
    values = {
        "prompt": "ping",
        "binary_path": Path("/opt/claude/bin/claude"),
        "cwd": "/tmp",
        "model": "haiku",
        "env": {"A": "1"},
    }
    values.update(overrides)
    return RuntimeInvocation(**values)


async def collect(client: RuntimeClient, inv: RuntimeInvocation, token=None) -> list:
    token = token or CancellationToken()
    async with aclosing(client.stream(inv, token)) as stream:
        return [message async for message in stream]


class TestFromSdkMessage:

    @pytest.mark.unit
    def test_system_init(self) -> None:
        message = from_sdk_message(system_init("sess-9", model="haiku"))
        assert message == SystemInit(session_id="sess-9", model="haiku")

    @pytest.mark.unit
    def test_other_system_subtype(self) -> None:
        message = from_sdk_message(SystemMessage(subtype="compact_boundary", data={}))
        assert isinstance(message, OtherMessage)
        assert message.kind == "system:compact_boundary"

    @pytest.mark.unit
    def test_assistant_text_in_order(self) -> None:
        message = from_sdk_message(assistant("a", "b", "c"))
        assert message == AssistantText(fragments=("a", "b", "c"))

    @pytest.mark.unit
    def test_result(self) -> None:
        message = from_sdk_message(result("done", session_id="sess-2"))
        assert message == RuntimeResult(text="done", session_id="sess-2", is_error=False)

    @pytest.mark.unit
    def test_result_without_text(self) -> None:
        assert from_sdk_message(result(None)).text is None

    @pytest.mark.unit
    def test_unknown_message_is_other(self) -> None:
        message = from_sdk_message(UserMessage(content="hi"))
        assert isinstance(message, OtherMessage)
        assert message.kind == "UserMessage"


class TestBuildOptions:

    @pytest.mark.unit
    def test_maps_invocation(self) -> None:
        options = RuntimeClient.build_options(invocation(resume="sess-1"))

        assert options.cli_path == "/opt/claude/bin/claude"
        assert options.resume == "sess-1"
        assert options.continue_conversation is True
        assert options.permission_mode == "bypassPermissions"
        assert options.system_prompt == {"type": "preset", "preset": "claude_code"}
        assert options.model == "haiku"
        assert options.env == {"A": "1"}


class TestStream:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_yields_converted_messages(self) -> None:
        query = ScriptedQuery([system_init(), assistant("x"), result("x")])

        messages = await collect(RuntimeClient(query_fn=query), invocation())

        assert [type(m) for m in messages] == [SystemInit, AssistantText, RuntimeResult]
        assert query.calls[0]["prompt"] == "ping"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_runtime_error_propagates(self) -> None:
        query = ScriptedQuery(RuntimeError("spawn failed"))

        with pytest.raises(RuntimeError, match="spawn failed"):
            await collect(RuntimeClient(query_fn=query), invocation())

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self) -> None:
        query = ScriptedQuery([result("x")])
        token = CancellationToken()
        token.cancel()

        with pytest.raises(QueryCancelledError):
            await collect(RuntimeClient(query_fn=query), invocation(), token)
        assert query.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_while_waiting(self) -> None:
        query = ScriptedQuery([result("x")])
        query.gate = asyncio.Event()
        token = CancellationToken()

        pending = asyncio.create_task(collect(RuntimeClient(query_fn=query), invocation(), token))
        await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(QueryCancelledError):
            await asyncio.wait_for(pending, timeout=5)


class TestCancellationToken:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self) -> None:
        token = CancellationToken()
        assert not token.cancelled

        token.cancel()
        token.cancel()

        assert token.cancelled
        await asyncio.wait_for(token.wait(), timeout=1)
