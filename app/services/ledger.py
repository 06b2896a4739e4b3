import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from app.schemas import Direction, MessageStatus
from app.storage.db import Database
from app.storage.models import Message
from app.util.locks import KeyedLock

log = logging.getLogger("ledger")

# forward order; "failed" sits outside it
STATUS_RANK = {"pending": 0, "sent": 1, "delivered": 2, "read": 3}

Listener = Callable[[str, Message], None]


def advances(current: str, new: str) -> bool:
    """True when current -> new moves the message forward."""
    if current == "failed":
        return False
    if new == "failed":
        return current in ("pending", "sent", "delivered")
    if new not in STATUS_RANK or current not in STATUS_RANK:
        return False
    return STATUS_RANK[new] > STATUS_RANK[current]


class MessageLedger:
    """
    Append-only record of inbound and outbound messages.
      - at most one row per (channel_message_id, direction)
      - status only ever moves forward
      - content is never rewritten
    """

    def __init__(self, db: Database):
        self.db = db
        self._locks = KeyedLock()
        self._listeners: List[Listener] = []

    # ---------- change notification ----------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register listener(event, message); returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    def _notify(self, event: str, message: Message) -> None:
        for fn in list(self._listeners):
            try:
                fn(event, message)
            except Exception:
                log.exception("ledger listener failed event=%s id=%s", event, message.id)

    # ---------- writes ----------
    def append(
        self,
        customer_id: str,
        channel_message_id: str,
        direction: Direction,
        content: str,
        type: str = "text",
        status: MessageStatus = "pending",
        is_auto_reply: bool = False,
        timestamp: Optional[datetime] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Message, bool]:
        """Insert unless (channel_message_id, direction) is already stored.

        Returns (message, created); on a repeat the stored row comes back
        with created=False.
        """
        key = f"{direction}:{channel_message_id}"
        with self._locks.hold(key):
            existing = self.find(channel_message_id, direction)
            if existing is not None:
                return existing, False
            try:
                with self.db.session() as s:
                    m = Message(
                        customer_id=customer_id,
                        channel_message_id=channel_message_id,
                        direction=direction,
                        type=type,
                        content=content,
                        status=status,
                        is_auto_reply=is_auto_reply,
                        timestamp=timestamp or datetime.now(timezone.utc),
                        meta=dict(meta or {}),
                    )
                    s.add(m)
            except IntegrityError:
                existing = self.find(channel_message_id, direction)
                if existing is None:
                    raise
                return existing, False
        self._notify("appended", m)
        return m, True

    def update_status_by_channel_id(
        self,
        channel_message_id: str,
        new_status: MessageStatus,
        failure_reason: Optional[str] = None,
    ) -> Optional[Message]:
        """Advance the newest message with this channel id. None when nothing changed."""
        with self._locks.hold(f"status:{channel_message_id}"), self.db.session() as s:
            m = s.scalars(
                select(Message)
                .where(Message.channel_message_id == channel_message_id)
                .order_by(Message.created_at.desc())
                .limit(1)
            ).first()
            if m is None:
                log.debug("status for unknown message id=%s status=%s", channel_message_id, new_status)
                return None
            current = m.status
            if not advances(current, new_status):
                log.debug("status not applied id=%s %s -> %s", channel_message_id, current, new_status)
                return None
            values: Dict[str, Any] = {"status": new_status}
            if new_status == "failed" and failure_reason:
                values["meta"] = {**(m.meta or {}), "failure_reason": failure_reason}
            # compare-and-set: a writer in another process may have moved it since the read
            res = s.execute(
                update(Message)
                .where(Message.id == m.id, Message.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                log.debug("status lost race id=%s %s -> %s", channel_message_id, current, new_status)
                return None
            s.refresh(m)
        self._notify("status_changed", m)
        return m

    # ---------- queries ----------
    def find(self, channel_message_id: str, direction: str) -> Optional[Message]:
        with self.db.session() as s:
            return s.scalar(
                select(Message).where(
                    Message.channel_message_id == channel_message_id,
                    Message.direction == direction,
                )
            )

    def exists(self, channel_message_id: str, direction: str) -> bool:
        return self.find(channel_message_id, direction) is not None

    def list_by_customer(self, customer_id: str, limit: int = 50) -> List[Message]:
        with self.db.session() as s:
            return list(s.scalars(
                select(Message)
                .where(Message.customer_id == customer_id)
                .order_by(Message.timestamp.desc(), Message.created_at.desc())
                .limit(limit)
            ))

    def list_recent(self, limit: int = 100) -> List[Message]:
        with self.db.session() as s:
            return list(s.scalars(
                select(Message).order_by(Message.timestamp.desc(), Message.created_at.desc()).limit(limit)
            ))

    def count(self) -> int:
        with self.db.session() as s:
            return s.scalar(select(func.count()).select_from(Message)) or 0
