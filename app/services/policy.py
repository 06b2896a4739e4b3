import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.schemas import BotSettings
from app.services.guard import ContentScreener, Screening
from app.services.hours import is_open

log = logging.getLogger("policy")

_stateless = ContentScreener()

_TEMPLATE_FIELDS = {
    "after_hours": "after_hours_message",
    "new_customer": "new_customer_message",
    "returning_customer": "returning_customer_message",
    "fallback": "fallback_message",
}


@dataclass(frozen=True)
class ReplyTemplate:
    kind: str  # after_hours | new_customer | returning_customer | fallback
    text: str


def _template(settings: BotSettings, kind: str) -> str:
    return (getattr(settings.auto_reply, _TEMPLATE_FIELDS[kind]) or "").strip()


def select_kind(is_new: bool, settings: BotSettings, now: datetime) -> str:
    bh = settings.business_hours
    if bh.enabled and not is_open(now, bh.timezone, bh.schedule):
        return "after_hours"
    return "new_customer" if is_new else "returning_customer"


def decide(
    customer,
    content: str,
    settings: BotSettings,
    screening: Optional[Screening] = None,
    now: Optional[datetime] = None,
) -> Optional[ReplyTemplate]:
    """Pick the auto-reply for one inbound message, or None for no reply."""
    if not settings.is_active:
        return None
    if screening is None:
        screening = _stateless.screen("", content)
    if screening.suppresses_reply:
        return None
    if not settings.has_credentials:
        return None
    if getattr(customer, "status", "active") == "blocked":
        return None

    kind = select_kind(bool(customer.is_new), settings, now or datetime.now(timezone.utc))
    text = _template(settings, kind)
    if not text:
        log.warning("empty %s template, using fallback", kind)
        kind, text = "fallback", _template(settings, "fallback")
        if not text:
            return None
    return ReplyTemplate(kind=kind, text=text)
