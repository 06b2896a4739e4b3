"""
Webhook intake pipeline.

One delivery = verify -> parse -> fan out over message/status events. Every
failure path ends in a DeliveryResult; nothing here raises to the HTTP layer
except the manual-send API, which has its own exceptions.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from app.providers.base import ChannelError, OutboundChannel
from app.providers.whatsapp import channel_for
from app.schemas import BotSettings, MalformedPayload, MessageEvent, StatusEvent, parse_webhook
from app.security import Verifier
from app.services.bot_settings import SettingsRepository
from app.services.customers import CustomerDirectory
from app.services.guard import ContentScreener, RateGuard, RepeatTracker, sanitize_content
from app.services.ledger import MessageLedger
from app.services.policy import decide
from app.storage.db import Database
from app.storage.models import Message
from app.util.locks import KeyedLock

log = logging.getLogger("pipeline")

# per-event outcomes
REPLIED = "replied"
RECORDED = "recorded"
DUPLICATE = "duplicate"
RATE_LIMITED = "rate_limited"
SEND_FAILED = "send_failed"
FAILED = "failed"
STATUS_UPDATED = "status_updated"
STATUS_IGNORED = "status_ignored"

ChannelFactory = Callable[[BotSettings], OutboundChannel]
Clock = Callable[[], datetime]


class PipelineError(Exception):
    pass


class CustomerNotFound(PipelineError):
    pass


class ChannelNotConfigured(PipelineError):
    pass


class DeliveryFailed(PipelineError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EventOutcome:
    kind: str  # message | status
    channel_message_id: str
    outcome: str
    detail: str = ""


@dataclass
class DeliveryResult:
    accepted: bool
    error: Optional[str] = None  # unauthorized | malformed
    outcomes: List[EventOutcome] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)

    def count(self, outcome: str) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    def summary(self) -> dict:
        if not self.accepted:
            return {"ok": False, "error": self.error}
        return {
            "ok": True,
            "events": len(self.outcomes),
            "outcomes": [
                {"kind": o.kind, "id": o.channel_message_id, "outcome": o.outcome}
                for o in self.outcomes
            ],
            "skipped": len(self.problems),
        }


class WebhookPipeline:
    def __init__(
        self,
        db: Database,
        verifier: Verifier,
        channel_factory: ChannelFactory = channel_for,
        clock: Clock = utcnow,
        rate_guard: Optional[RateGuard] = None,
        repeats: Optional[RepeatTracker] = None,
    ):
        self.db = db
        self.verifier = verifier
        self.channel_factory = channel_factory
        self.clock = clock
        self.customers = CustomerDirectory(db)
        self.ledger = MessageLedger(db)
        self.settings = SettingsRepository(db)
        self.rate_guard = rate_guard or RateGuard()
        self.screener = ContentScreener(repeats or RepeatTracker())
        self._senders = KeyedLock()

    # ---------- delivery ----------
    def handle_delivery(self, body: bytes, signature: Optional[str]) -> DeliveryResult:
        if not self.verifier(body, signature):
            log.warning({"event": "webhook_rejected", "reason": "bad_signature"})
            return DeliveryResult(accepted=False, error="unauthorized")

        try:
            events, problems = parse_webhook(json.loads(body))
        except (ValueError, MalformedPayload) as e:
            # json.JSONDecodeError is a ValueError
            log.warning({"event": "webhook_rejected", "reason": "malformed", "err": str(e)})
            return DeliveryResult(accepted=False, error="malformed")

        for p in problems:
            log.warning({"event": "webhook_item_skipped", "problem": p})

        result = DeliveryResult(accepted=True, problems=problems)
        if not events:
            return result

        # hot reload: settings and credentials as of this delivery
        bot = self.settings.get()
        channel = self.channel_factory(bot)

        for ev in events:
            try:
                if isinstance(ev, MessageEvent):
                    result.outcomes.append(self.handle_message(ev, bot, channel))
                else:
                    result.outcomes.append(self.handle_status(ev))
            except Exception as e:
                log.exception("event processing failed kind=%s id=%s", ev.kind, ev.channel_message_id)
                result.outcomes.append(EventOutcome(ev.kind, ev.channel_message_id, FAILED, str(e)))
        return result

    # ---------- message events ----------
    def handle_message(self, ev: MessageEvent, bot: BotSettings, channel: OutboundChannel) -> EventOutcome:
        def done(outcome: str, detail: str = "") -> EventOutcome:
            return EventOutcome("message", ev.channel_message_id, outcome, detail)

        with self._senders.hold(ev.sender):
            # redelivery check first so retries don't eat the sender's rate budget
            if self.ledger.exists(ev.channel_message_id, "incoming"):
                log.info({"event": "duplicate_delivery", "id": ev.channel_message_id})
                return done(DUPLICATE)

            if not self.rate_guard.allow(ev.sender, now=self.clock().timestamp()):
                log.info({"event": "rate_limited", "from": ev.sender, "id": ev.channel_message_id})
                return done(RATE_LIMITED)

            content = sanitize_content(ev.content)
            # captionless media all share one placeholder body
            has_text = ev.type == "text" or bool(ev.media.get("caption"))
            screening = self.screener.screen(ev.sender, content, track_repeats=has_text)

            customer = self.customers.resolve_or_create(ev.sender, ev.profile_name, seen_at=ev.timestamp)
            meta = {"whatsapp_timestamp": ev.raw_timestamp}
            if ev.context:
                meta["context"] = dict(ev.context)
            if ev.media:
                meta["media"] = dict(ev.media)
            incoming, created = self.ledger.append(
                customer.id,
                ev.channel_message_id,
                "incoming",
                content,
                type=ev.type,
                status="delivered",
                timestamp=ev.timestamp,
                meta=meta,
            )
            if not created:
                return done(DUPLICATE)
            self.customers.record_activity(customer.id, ev.timestamp)
            log.info({"event": "inbound_recorded", "customer_id": customer.id, "id": ev.channel_message_id,
                      "type": ev.type, "spam": screening.spam, "repeated": screening.repeated})

            if bot.has_credentials:
                self._mark_read(channel, ev.channel_message_id)

            template = decide(customer, content, bot, screening=screening, now=self.clock())
            if template is None:
                return done(RECORDED)

            try:
                delivery_id = channel.send(customer.phone_number, template.text)
            except ChannelError as e:
                log.error({"event": "auto_reply_failed", "customer_id": customer.id, "err": str(e)})
                return done(SEND_FAILED, str(e))

            self.ledger.append(
                customer.id,
                delivery_id,
                "outgoing",
                template.text,
                status="sent",
                is_auto_reply=True,
                timestamp=self.clock(),
                meta={"template": template.kind, "in_reply_to": ev.channel_message_id},
            )
            if customer.is_new:
                self.customers.mark_returning(customer.phone_number)
            log.info({"event": "auto_reply_sent", "customer_id": customer.id,
                      "template": template.kind, "id": delivery_id})
            return done(REPLIED, template.kind)

    def _mark_read(self, channel: OutboundChannel, channel_message_id: str) -> None:
        try:
            if not channel.mark_read(channel_message_id):
                log.warning({"event": "mark_read_failed", "id": channel_message_id})
        except Exception as e:
            log.warning({"event": "mark_read_failed", "id": channel_message_id, "err": str(e)})

    # ---------- status events ----------
    def handle_status(self, ev: StatusEvent) -> EventOutcome:
        updated = self.ledger.update_status_by_channel_id(ev.channel_message_id, ev.status, ev.failure_reason)
        if updated is None:
            return EventOutcome("status", ev.channel_message_id, STATUS_IGNORED, ev.status)
        log.info({"event": "status_updated", "id": ev.channel_message_id, "status": ev.status})
        return EventOutcome("status", ev.channel_message_id, STATUS_UPDATED, ev.status)

    # ---------- manual send ----------
    def send_manual_message(self, customer_id: str, content: str) -> Message:
        """Operator message to a known customer; recorded as outgoing, not auto-reply."""
        customer = self.customers.get(customer_id)
        if customer is None:
            raise CustomerNotFound(customer_id)
        bot = self.settings.get()
        if not bot.has_credentials:
            raise ChannelNotConfigured("WhatsApp credentials not configured")
        text = sanitize_content(content)
        if not text:
            raise ValueError("message content is empty")

        channel = self.channel_factory(bot)
        try:
            delivery_id = channel.send(customer.phone_number, text)
        except ChannelError as e:
            log.error({"event": "manual_send_failed", "customer_id": customer_id, "err": str(e)})
            raise DeliveryFailed(str(e)) from e

        msg, _ = self.ledger.append(
            customer.id,
            delivery_id,
            "outgoing",
            text,
            status="sent",
            is_auto_reply=False,
            timestamp=self.clock(),
            meta={"manual": True},
        )
        log.info({"event": "manual_message_sent", "customer_id": customer_id, "id": delivery_id})
        return msg
