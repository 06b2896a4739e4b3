from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.schemas import AutoReplyTemplates, BotSettings, BusinessHours
from app.services.guard import Screening
from app.services.policy import decide

OPEN = datetime(2024, 1, 16, 15, 0, tzinfo=timezone.utc)    # Tue 10:00 NY
CLOSED = datetime(2024, 1, 16, 3, 0, tzinfo=timezone.utc)   # Mon 22:00 NY

NEW = SimpleNamespace(is_new=True, status="active")
RETURNING = SimpleNamespace(is_new=False, status="active")


def bot(**kw):
    base = dict(access_token="token", phone_number_id="pn", business_hours=BusinessHours(enabled=True))
    base.update(kw)
    return BotSettings(**base)


@pytest.mark.parametrize("customer", [NEW, RETURNING])
def test_after_hours_wins_over_identity(customer):
    reply = decide(customer, "Hi", bot(), now=CLOSED)
    assert reply.kind == "after_hours"
    assert reply.text == AutoReplyTemplates().after_hours_message


def test_open_and_new_gets_new_customer_template():
    assert decide(NEW, "Hi", bot(), now=OPEN).kind == "new_customer"


def test_open_and_returning_gets_returning_template():
    assert decide(RETURNING, "Hi", bot(), now=OPEN).kind == "returning_customer"


def test_business_hours_disabled_ignores_clock():
    s = bot(business_hours=BusinessHours(enabled=False))
    assert decide(NEW, "Hi", s, now=CLOSED).kind == "new_customer"


def test_inactive_bot_never_replies():
    assert decide(NEW, "Hi", bot(is_active=False), now=OPEN) is None


def test_missing_credentials_never_replies():
    assert decide(NEW, "Hi", bot(access_token=""), now=OPEN) is None
    assert decide(NEW, "Hi", bot(phone_number_id=""), now=OPEN) is None


@pytest.mark.parametrize("content", ["ok", "👍", "You are a winner", "zzzzzzzzzzzzzzzz"])
def test_screened_content_never_replies(content):
    assert decide(NEW, content, bot(), now=OPEN) is None


def test_explicit_screening_is_used():
    assert decide(NEW, "Hi", bot(), screening=Screening(repeated=True), now=OPEN) is None


def test_blocked_customer_never_replies():
    blocked = SimpleNamespace(is_new=False, status="blocked")
    assert decide(blocked, "Hi", bot(), now=OPEN) is None


def test_empty_template_uses_fallback():
    s = bot(auto_reply=AutoReplyTemplates(new_customer_message="   "))
    reply = decide(NEW, "Hi", s, now=OPEN)
    assert reply.kind == "fallback"
    assert reply.text == AutoReplyTemplates().fallback_message


def test_empty_template_and_fallback_means_no_reply():
    s = bot(auto_reply=AutoReplyTemplates(returning_customer_message="", fallback_message=""))
    assert decide(RETURNING, "Hi", s, now=OPEN) is None
