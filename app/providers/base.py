from uuid import uuid4
import logging
from abc import ABC, abstractmethod

log = logging.getLogger("providers")


class ChannelError(Exception):
    """Outbound send failed (HTTP error, timeout, missing credentials)."""
    pass


class OutboundChannel(ABC):
    """send(to, text) -> delivery id; mark_read(channel_message_id) -> bool."""

    @abstractmethod
    def send(self, to: str, text: str) -> str:
        """Deliver a text message; returns the channel's message id or raises ChannelError."""

    @abstractmethod
    def mark_read(self, channel_message_id: str) -> bool:
        ...


class DryRunChannel(OutboundChannel):
    """Never hits any external API: sends are logged and get a fake id so the
    full flow (ledger, status updates) can be exercised locally."""

    def __init__(self) -> None:
        self.dry_run = True

    def send(self, to: str, text: str) -> str:
        fake_id = f"dev-{uuid4().hex[:16]}-{to[-4:]}"
        log.info("[DRY_RUN SEND] to=%s body=%r -> id=%s", to, text, fake_id)
        return fake_id

    def mark_read(self, channel_message_id: str) -> bool:
        log.info("[DRY_RUN READ] id=%s", channel_message_id)
        return True
