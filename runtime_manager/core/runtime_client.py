"""
Streaming invocation of the agent runtime binary.

Wraps claude_agent_sdk.query(): builds ClaudeAgentOptions for a given
binary, converts every yielded message into a RuntimeMessage, and stops the
underlying process when the invocation's cancellation token fires.

The SDK stream is consumed inside one dedicated task for its whole
lifetime (the SDK keeps an anyio task group open across yields, which must
be entered and exited by the same task).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Union

from claude_agent_sdk import ClaudeAgentOptions, query as sdk_query

from .cancellation import CancellationToken
from .exceptions import QueryCancelledError
from .messages import RuntimeMessage, from_sdk_message

logger = logging.getLogger(__name__)

# Fixed names the runtime reads from its environment
OAUTH_TOKEN_ENV = "CLAUDE_CODE_OAUTH_TOKEN"
CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"

QueryFunction = Callable[..., AsyncIterator[Any]]

_END_OF_STREAM = object()


@dataclass
class RuntimeInvocation:
    """Everything needed to start one streaming call into the runtime."""
    prompt: str
    binary_path: Path
    cwd: str
    model: str
    env: dict[str, str] = field(default_factory=dict)
    resume: Optional[str] = None
    continue_conversation: bool = True
    permission_mode: str = "bypassPermissions"
    system_prompt_preset: str = "claude_code"


class RuntimeClient:
    """
    Thin adapter over the SDK's query() function.

    The query function is injectable so tests can script the message
    stream without spawning a process.
    """

    def __init__(self, query_fn: Optional[QueryFunction] = None) -> None:
        self._query_fn = query_fn or sdk_query

    @staticmethod
    def build_options(invocation: RuntimeInvocation) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            system_prompt={"type": "preset", "preset": invocation.system_prompt_preset},
            permission_mode=invocation.permission_mode,
            continue_conversation=invocation.continue_conversation,
            resume=invocation.resume,
            model=invocation.model,
            cwd=invocation.cwd,
            cli_path=str(invocation.binary_path),
            env=invocation.env,
        )

    async def _pump(
        self,
        invocation: RuntimeInvocation,
        queue: "asyncio.Queue[Union[RuntimeMessage, BaseException, object]]",
    ) -> None:
        """Consume the SDK stream into the queue, ending with a sentinel or an error."""
        options = self.build_options(invocation)
        try:
            async for message in self._query_fn(prompt=invocation.prompt, options=options):
                queue.put_nowait(from_sdk_message(message))
        except Exception as e:
            queue.put_nowait(e)
            return
        queue.put_nowait(_END_OF_STREAM)

    async def stream(
        self,
        invocation: RuntimeInvocation,
        cancel_token: CancellationToken,
    ) -> AsyncIterator[RuntimeMessage]:
        """
        Run one invocation and yield its messages in order.

        Callers that stop early should wrap the iterator in
        contextlib.aclosing() so the runtime process is shut down promptly.

        Raises:
            QueryCancelledError: If cancel_token fires before the stream ends.
            Exception: Whatever the SDK raised while streaming.
        """
        if cancel_token.cancelled:
            raise QueryCancelledError("Runtime invocation cancelled before start")

        logger.debug(
            f"Starting runtime invocation: binary={invocation.binary_path}, "
            f"model={invocation.model}, resume={invocation.resume}, cwd={invocation.cwd}"
        )
        queue: asyncio.Queue = asyncio.Queue()
        pump = asyncio.create_task(self._pump(invocation, queue))
        cancelled = asyncio.ensure_future(cancel_token.wait())
        getter: Optional[asyncio.Future] = None
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, cancelled}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                    raise QueryCancelledError("Runtime invocation cancelled")
                item = getter.result()
                if item is _END_OF_STREAM:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            cancelled.cancel()
            if getter is not None and not getter.done():
                getter.cancel()
            if not pump.done():
                pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
