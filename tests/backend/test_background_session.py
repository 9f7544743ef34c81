"""
Tests for the background session state machine.
"""
import asyncio
from pathlib import Path

import pytest

from runtime_manager.config import RuntimeConfig
from runtime_manager.core.cancellation import CancellationToken
from runtime_manager.core.runtime_client import CONFIG_DIR_ENV, OAUTH_TOKEN_ENV
from runtime_manager.core.schemas import SessionInitOptions, SessionStatus
from runtime_manager.services.background_session import BackgroundSession

from .conftest import ScriptedQuery, assistant, result, system_init


async def ready_session(session: BackgroundSession, query: ScriptedQuery) -> None:
    query.scripts.append([system_init("sess-1")])
    state = await session.init()
    assert state.status is SessionStatus.READY


class TestInit:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_init_reaches_ready(
        self,
        background_session: BackgroundSession,
        scripted_query: ScriptedQuery,
        bundled_binary: Path,
        runtime_config: RuntimeConfig,
    ) -> None:
        scripted_query.scripts.append([system_init("sess-abc")])

        state = await background_session.init()

        assert state.status is SessionStatus.READY
        assert state.session_id == "sess-abc"
        assert state.request_count == 1
        assert state.last_used_time is not None
        assert state.init_time is not None
        assert state.model == "haiku"

        call = scripted_query.calls[0]
        options = call["options"]
        assert call["prompt"] == "ping"
        assert options.cli_path == str(bundled_binary)
        assert options.permission_mode == "bypassPermissions"
        assert options.continue_conversation is True
        assert options.system_prompt == {"type": "preset", "preset": "claude_code"}
        assert options.env[OAUTH_TOKEN_ENV] == "oauth-token"
        assert options.env[CONFIG_DIR_ENV] == str(
            runtime_config.storage.sessions_dir / "background-utility"
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_result_message_also_counts(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        scripted_query.scripts.append([assistant("pong"), result("pong", session_id="sess-r")])

        state = await background_session.init()

        assert state.status is SessionStatus.READY
        assert state.session_id == "sess-r"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_model_override(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        scripted_query.scripts.append([system_init()])

        state = await background_session.init(SessionInitOptions(model="sonnet", cwd="/work"))

        assert state.model == "sonnet"
        assert scripted_query.calls[0]["options"].model == "sonnet"
        assert str(scripted_query.calls[0]["options"].cwd) == "/work"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stream_without_signal_is_error(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        scripted_query.scripts.append([assistant("hello")])

        state = await background_session.init()

        assert state.status is SessionStatus.ERROR
        assert state.error_message == "Did not receive init message"
        assert state.request_count == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_runtime_exception_is_captured(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        scripted_query.scripts.append(RuntimeError("binary exited with code 1"))

        state = await background_session.init()

        assert state.status is SessionStatus.ERROR
        assert state.error_message == "binary exited with code 1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_init_when_ready_is_noop(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)

        state = await background_session.init()

        assert state.status is SessionStatus.READY
        assert len(scripted_query.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_init_while_initializing_is_noop(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        scripted_query.gate = asyncio.Event()
        scripted_query.scripts.append([system_init()])

        first = asyncio.create_task(background_session.init())
        await asyncio.sleep(0)
        assert background_session.get_state().status is SessionStatus.INITIALIZING

        second = await background_session.init()
        assert second.status is SessionStatus.INITIALIZING

        scripted_query.gate.set()
        state = await first

        assert state.status is SessionStatus.READY
        assert len(scripted_query.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_init_from_error_retries(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        scripted_query.scripts.append(RuntimeError("first attempt"))
        scripted_query.scripts.append([system_init()])

        assert (await background_session.init()).status is SessionStatus.ERROR
        state = await background_session.init()

        assert state.status is SessionStatus.READY
        assert state.error_message is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_state_is_a_copy(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)

        state = background_session.get_state()
        state.request_count = 99
        state.status = SessionStatus.CLOSED

        assert background_session.get_state().request_count == 1
        assert background_session.is_ready()


class TestQuery:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_ready(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        outcome = await background_session.query("hello")

        assert outcome.success is False
        assert outcome.error == "Background session not ready (status: idle)"
        assert scripted_query.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_result_text_replaces_fragments(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        scripted_query.scripts.append([
            assistant("Hel", "lo"),
            assistant(" there"),
            result("Final answer", session_id="sess-2"),
        ])

        outcome = await background_session.query("hi")

        assert outcome.success is True
        assert outcome.text == "Final answer"
        state = background_session.get_state()
        assert state.session_id == "sess-2"
        assert state.request_count == 2

        options = scripted_query.calls[1]["options"]
        assert options.resume == "sess-1"
        assert options.model == "haiku"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fragments_used_without_result_text(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        scripted_query.scripts.append([assistant("Hel", "lo"), assistant(" there"), result(None)])

        outcome = await background_session.query("hi", model="sonnet")

        assert outcome.text == "Hello there"
        assert scripted_query.calls[1]["options"].model == "sonnet"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_is_returned_not_raised(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        scripted_query.scripts.append(ConnectionError("pipe closed"))

        outcome = await background_session.query("hi")

        assert outcome.success is False
        assert outcome.error == "pipe closed"
        assert background_session.get_state().request_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_error_result_is_failure(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        scripted_query.scripts.append([result("Credit balance too low", is_error=True)])

        outcome = await background_session.query("hi")

        assert outcome.success is False
        assert outcome.error == "Credit balance too low"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_keeps_session_handle(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        scripted_query.gate = asyncio.Event()
        token = CancellationToken()

        pending = asyncio.create_task(background_session.query("hi", cancel_token=token))
        await asyncio.sleep(0)
        token.cancel()
        outcome = await pending

        assert outcome.success is False
        state = background_session.get_state()
        assert state.status is SessionStatus.READY
        assert state.session_id == "sess-1"

        scripted_query.gate = None
        scripted_query.scripts.append([result("again")])
        retry = await background_session.query("hi")
        assert retry.text == "again"
        assert scripted_query.calls[-1]["options"].resume == "sess-1"


class TestCloseAndReset:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_is_idempotent(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)

        await background_session.close()
        await background_session.close()

        state = background_session.get_state()
        assert state.status is SessionStatus.CLOSED
        assert state.session_id is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_cancels_in_flight_query(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        scripted_query.gate = asyncio.Event()
        scripted_query.scripts.append([result("late", session_id="sess-late")])

        pending = asyncio.create_task(background_session.query("hi"))
        await asyncio.sleep(0)
        await background_session.close()
        outcome = await asyncio.wait_for(pending, timeout=5)

        assert outcome.success is False
        assert background_session.get_state().session_id is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_during_init(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        scripted_query.gate = asyncio.Event()
        scripted_query.scripts.append([system_init()])

        pending = asyncio.create_task(background_session.init())
        await asyncio.sleep(0)
        await background_session.close()
        state = await asyncio.wait_for(pending, timeout=5)

        assert state.status is SessionStatus.CLOSED
        assert state.error_message is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reset_returns_to_idle(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        scripted_query.scripts.append([result("x")])
        await background_session.query("hi")

        await background_session.reset()

        state = background_session.get_state()
        assert state.status is SessionStatus.IDLE
        assert state.session_id is None
        assert state.request_count == 0
        assert state.last_used_time is None
        assert state.init_time is None
        assert state.error_message is None
        assert state.model == "haiku"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reinit_after_reset(
        self, background_session: BackgroundSession, scripted_query: ScriptedQuery
    ) -> None:
        await ready_session(background_session, scripted_query)
        await background_session.reset()
        scripted_query.scripts.append([system_init("sess-new")])

        state = await background_session.init()

        assert state.status is SessionStatus.READY
        assert state.session_id == "sess-new"
