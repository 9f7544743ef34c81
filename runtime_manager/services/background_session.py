"""
Background runtime session for utility tasks.

One long-lived, resumable runtime session that serves small internal
requests (title generation and similar) without a user-visible
conversation. It is started once, reused for many queries by resuming the
same session handle, and closed on shutdown.

No operation here raises to its caller: init failures are recorded in the
session state and query failures come back as QueryResult(success=False).
"""
import logging
from contextlib import aclosing
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..config import BackgroundSessionConfig, StorageConfig
from ..core.cancellation import CancellationToken
from ..core.exceptions import QueryFailedError, SessionInitError, SessionNotReadyError
from ..core.messages import AssistantText, RuntimeResult, SystemInit
from ..core.runtime_client import (
    CONFIG_DIR_ENV,
    OAUTH_TOKEN_ENV,
    RuntimeClient,
    RuntimeInvocation,
)
from ..core.schemas import QueryResult, SessionInitOptions, SessionState, SessionStatus
from .credential_service import CredentialProvider

logger = logging.getLogger(__name__)

BinaryPathResolver = Callable[[], Awaitable[Path]]

CONFIG_DIR_NAME = "background-utility"


def _error_text(error: BaseException) -> str:
    return str(error) or type(error).__name__


class BackgroundSession:
    """
    Owns the background session's state and every transition of it.

    Callers only ever get copies of the state via get_state().
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        credentials: CredentialProvider,
        resolve_binary_path: BinaryPathResolver,
        config: BackgroundSessionConfig,
        storage: StorageConfig,
    ) -> None:
        self._runtime = runtime
        self._credentials = credentials
        self._resolve_binary_path = resolve_binary_path
        self._config = config
        self._storage = storage

        self._state = SessionState(model=config.model)
        self._config_dir: Optional[Path] = None
        self._cwd: Optional[str] = None
        self._in_flight: set[CancellationToken] = set()

    def get_state(self) -> SessionState:
        return self._state.snapshot()

    def is_ready(self) -> bool:
        return self._state.status is SessionStatus.READY

    async def _build_env(self) -> dict[str, str]:
        env = dict(self._config.env)
        token = await self._credentials.get_oauth_token()
        if token:
            env[OAUTH_TOKEN_ENV] = token
        if self._config_dir:
            env[CONFIG_DIR_ENV] = str(self._config_dir)
        return env

    async def init(self, options: Optional[SessionInitOptions] = None) -> SessionState:
        """
        Start the session with a probe prompt.

        Does nothing if the session is already ready or initializing.

        Returns:
            Copy of the state after the attempt (ready or error).
        """
        if self._state.status in (SessionStatus.READY, SessionStatus.INITIALIZING):
            logger.info("Background session already initialized or initializing")
            return self.get_state()

        options = options or SessionInitOptions()
        self._state.status = SessionStatus.INITIALIZING
        self._state.init_time = datetime.now(timezone.utc)
        self._state.error_message = None

        logger.info("Initializing background session...")

        token = CancellationToken()
        self._in_flight.add(token)
        try:
            self._config_dir = self._storage.sessions_dir / CONFIG_DIR_NAME
            self._config_dir.mkdir(parents=True, exist_ok=True)

            env = await self._build_env()
            binary_path = await self._resolve_binary_path()

            model = options.model or self._config.model
            cwd = options.cwd or self._config.cwd or self._storage.data_dir
            self._state.model = model
            self._cwd = str(cwd)

            invocation = RuntimeInvocation(
                prompt=self._config.probe_prompt,
                binary_path=binary_path,
                cwd=self._cwd,
                model=model,
                env=env,
            )

            got_init = False
            async with aclosing(self._runtime.stream(invocation, token)) as stream:
                async for message in stream:
                    if message.session_id and not self._state.session_id:
                        self._state.session_id = message.session_id
                    if isinstance(message, (SystemInit, RuntimeResult)):
                        got_init = True
                        break

            if self._state.status is not SessionStatus.INITIALIZING:
                # closed while the probe was running
                return self.get_state()
            if not got_init:
                raise SessionInitError("Did not receive init message")

            self._state.status = SessionStatus.READY
            self._state.request_count = 1
            self._state.last_used_time = datetime.now(timezone.utc)
            session_prefix = (self._state.session_id or "")[:8]
            logger.info(f"Background session initialized (session: {session_prefix}...)")

        except Exception as e:
            if self._state.status is SessionStatus.INITIALIZING:
                self._state.status = SessionStatus.ERROR
                self._state.error_message = _error_text(e)
            logger.error(f"Background session initialization failed: {_error_text(e)}")
        finally:
            self._in_flight.discard(token)

        return self.get_state()

    async def query(
        self,
        prompt: str,
        model: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> QueryResult:
        """
        Send a prompt on the existing session.

        Assistant text is accumulated in order; a final text on the result
        message replaces it. Never raises.

        Args:
            prompt: Prompt text.
            model: Model override for this query only.
            cancel_token: Lets the caller abort this query. Cancelling
                never drops the session handle.
        """
        token = cancel_token or CancellationToken()
        self._in_flight.add(token)
        try:
            if self._state.status is not SessionStatus.READY:
                raise SessionNotReadyError(
                    f"Background session not ready (status: {self._state.status.value})"
                )

            env = await self._build_env()
            binary_path = await self._resolve_binary_path()

            invocation = RuntimeInvocation(
                prompt=prompt,
                binary_path=binary_path,
                cwd=self._cwd or str(self._storage.data_dir),
                model=model or self._state.model,
                env=env,
                resume=self._state.session_id,
            )

            fragments: list[str] = []
            final_text: Optional[str] = None
            async with aclosing(self._runtime.stream(invocation, token)) as stream:
                async for message in stream:
                    if message.session_id and self._state.status is SessionStatus.READY:
                        self._state.session_id = message.session_id
                    if isinstance(message, AssistantText):
                        fragments.extend(message.fragments)
                    elif isinstance(message, RuntimeResult):
                        if message.is_error:
                            raise QueryFailedError(message.text or "Runtime reported an error")
                        final_text = message.text
                        break

            self._state.request_count += 1
            self._state.last_used_time = datetime.now(timezone.utc)
            return QueryResult(text=final_text or "".join(fragments), success=True)

        except SessionNotReadyError as e:
            return QueryResult(success=False, error=str(e))
        except Exception as e:
            logger.error(f"Background query failed: {_error_text(e)}")
            return QueryResult(success=False, error=_error_text(e))
        finally:
            self._in_flight.discard(token)

    async def close(self) -> None:
        """Cancel in-flight invocations and drop the session handle. Idempotent."""
        if self._state.status is SessionStatus.CLOSED:
            return

        logger.info("Closing background session...")
        for token in list(self._in_flight):
            token.cancel()
        self._in_flight.clear()

        self._state.status = SessionStatus.CLOSED
        self._state.session_id = None
        logger.info("Background session closed")

    async def reset(self) -> None:
        """Close, then return to a fresh idle state ready for init()."""
        await self.close()
        self._state = SessionState(model=self._config.model)
        self._config_dir = None
        self._cwd = None
        logger.info("Background session reset complete")
