"""Cancellation tokens for downloads and runtime invocations."""
import asyncio


class CancellationToken:
    """
    One-shot cancellation signal owned by a single operation.

    Cancelling is idempotent and cannot be undone.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
