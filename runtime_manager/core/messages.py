"""
Runtime message types.

The Claude Agent SDK yields several message classes. The background session
only cares about three of them, so every SDK message is converted into one
of the closed set below. Anything else becomes OtherMessage and is ignored
by consumers.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from claude_agent_sdk import AssistantMessage, ResultMessage, SystemMessage
from claude_agent_sdk.types import TextBlock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemInit:
    """The runtime finished starting up (system message, subtype "init")."""
    session_id: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class AssistantText:
    """Text fragments from one assistant message, in order."""
    fragments: tuple[str, ...] = ()
    session_id: Optional[str] = None


@dataclass(frozen=True)
class RuntimeResult:
    """Terminal message of an invocation."""
    text: Optional[str] = None
    session_id: Optional[str] = None
    is_error: bool = False


@dataclass(frozen=True)
class OtherMessage:
    """A message kind the background session does not consume."""
    kind: str
    session_id: Optional[str] = None


RuntimeMessage = Union[SystemInit, AssistantText, RuntimeResult, OtherMessage]


def _session_id_of(message: Any) -> Optional[str]:
    session_id = getattr(message, "session_id", None)
    if session_id:
        return str(session_id)
    data = getattr(message, "data", None)
    if isinstance(data, dict) and data.get("session_id"):
        return str(data["session_id"])
    return None


def from_sdk_message(message: Any) -> RuntimeMessage:
    """
    Convert an SDK message into a RuntimeMessage.

    Args:
        message: Any object yielded by claude_agent_sdk.query().

    Returns:
        SystemInit, AssistantText or RuntimeResult for the kinds the
        background session consumes, OtherMessage for everything else.
    """
    session_id = _session_id_of(message)

    if isinstance(message, SystemMessage):
        if message.subtype == "init":
            return SystemInit(session_id=session_id, model=message.data.get("model"))
        return OtherMessage(kind=f"system:{message.subtype}", session_id=session_id)

    if isinstance(message, AssistantMessage):
        fragments = tuple(
            block.text for block in message.content if isinstance(block, TextBlock)
        )
        return AssistantText(fragments=fragments, session_id=session_id)

    if isinstance(message, ResultMessage):
        return RuntimeResult(
            text=message.result or None,
            session_id=session_id,
            is_error=bool(message.is_error),
        )

    kind = type(message).__name__
    logger.debug(f"Ignoring runtime message of type {kind}")
    return OtherMessage(kind=kind, session_id=session_id)
