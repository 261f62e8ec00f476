from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from .settings import DEFAULT_SETTINGS
from .transport import Transport

SENDER_USER = "user"
SENDER_AI = "ai"

logger = logging.getLogger("fallback_chat.session")


@dataclass(frozen=True)
class ChatMessage:
    text: str
    sender: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class SessionBusyError(RuntimeError):
    """Raised when a message is submitted while a reply is still pending."""


class ChatSession:
    """
    In-memory, append-only chat log for the running process.

    Nothing is written to disk; restarting the server starts an empty chat.
    """

    def __init__(self, failure_reply: str = DEFAULT_SETTINGS["replies"]["failure"]) -> None:
        self._messages: List[ChatMessage] = []
        self.pending = False
        self.failure_reply = failure_reply

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def append(self, text: str, sender: str) -> ChatMessage:
        if sender not in (SENDER_USER, SENDER_AI):
            raise ValueError(f"Unknown sender '{sender}'.")
        message = ChatMessage(text=text, sender=sender)
        self._messages.append(message)
        return message

    async def submit(self, text: str, transport: Transport) -> Optional[ChatMessage]:
        """
        Record a user message, obtain a reply and record it.

        Blank input is ignored and returns None. While a reply is pending a
        second submission raises `SessionBusyError`.
        """
        if not text or not text.strip():
            return None
        if self.pending:
            raise SessionBusyError("A reply is already pending.")
        self.append(text, SENDER_USER)
        self.pending = True
        try:
            reply = await transport.send(text)
        except Exception:
            logger.exception("Transport %s failed to produce a reply.", transport.name)
            reply = self.failure_reply
        finally:
            self.pending = False
        logger.debug("AI response: %s", reply)
        return self.append(reply, SENDER_AI)
