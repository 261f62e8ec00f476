import asyncio
import dataclasses
import sys
from pathlib import Path
from typing import List

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fallback_chat.session import ChatMessage, ChatSession, SessionBusyError
from fallback_chat.transport import Transport, TransportError


class EchoTransport(Transport):
    name = "echo"

    def __init__(self) -> None:
        self.sent: List[str] = []

    async def send(self, text: str) -> str:
        self.sent.append(text)
        return f"echo: {text}"


class BrokenTransport(Transport):
    name = "broken"

    async def send(self, text: str) -> str:
        raise TransportError("relay went away")


class GatedTransport(Transport):
    name = "gated"

    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def send(self, text: str) -> str:
        await self.release.wait()
        return "done"


def test_submit_appends_user_then_ai_message() -> None:
    session = ChatSession()
    transport = EchoTransport()
    reply = asyncio.run(session.submit("hello world", transport))
    assert reply == ChatMessage(text="echo: hello world", sender="ai")
    assert session.messages == (
        ChatMessage(text="hello world", sender="user"),
        ChatMessage(text="echo: hello world", sender="ai"),
    )
    assert session.pending is False
    assert transport.sent == ["hello world"]


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_input_is_ignored(text: str) -> None:
    session = ChatSession()
    transport = EchoTransport()
    assert asyncio.run(session.submit(text, transport)) is None
    assert session.messages == ()
    assert transport.sent == []


def test_transport_failure_becomes_failure_bubble() -> None:
    session = ChatSession(failure_reply="could not reach the bot")
    reply = asyncio.run(session.submit("anyone there?", BrokenTransport()))
    assert reply == ChatMessage(text="could not reach the bot", sender="ai")
    assert len(session.messages) == 2
    assert session.pending is False


def test_second_submit_while_pending_is_rejected() -> None:
    session = ChatSession()
    transport = GatedTransport()

    async def scenario() -> None:
        first = asyncio.create_task(session.submit("first", transport))
        await asyncio.sleep(0)
        assert session.pending is True
        with pytest.raises(SessionBusyError):
            await session.submit("second", transport)
        transport.release.set()
        await first

    asyncio.run(scenario())
    assert [message.text for message in session.messages] == ["first", "done"]
    assert session.pending is False


def test_messages_are_immutable() -> None:
    session = ChatSession()
    message = session.append("hi", "user")
    with pytest.raises(dataclasses.FrozenInstanceError):
        message.text = "changed"  # type: ignore[misc]
    assert message.to_dict() == {"text": "hi", "sender": "user"}


def test_unknown_sender_rejected() -> None:
    with pytest.raises(ValueError):
        ChatSession().append("hi", "system")
