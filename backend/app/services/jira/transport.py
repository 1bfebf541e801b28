"""Chat transport contract used by the relay core.

The core only needs to send a message (optionally with inline buttons) and
edit a message it sent before. services/telegram_bot.py implements this
over the Telegram Bot API.
"""
from dataclasses import dataclass
from typing import Protocol


class ChatTransportError(Exception):
    """Message could not be delivered or edited."""
    pass


@dataclass(frozen=True)
class MessageRef:
    chat_id: str
    message_id: int


@dataclass(frozen=True)
class Button:
    """Inline button: either an action payload or a URL."""
    text: str
    callback_data: str | None = None
    url: str | None = None


class ChatTransport(Protocol):

    async def send_message(
        self,
        chat_id: str,
        text: str,
        buttons: list[list[Button]] | None = None,
    ) -> MessageRef:
        """Send and return a reference; raise ChatTransportError on failure."""
        ...

    async def edit_message(
        self,
        ref: MessageRef,
        text: str,
        buttons: list[list[Button]] | None = None,
    ) -> None:
        """Replace text and buttons; raise ChatTransportError on failure."""
        ...
