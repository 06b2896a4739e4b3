"""Pytest configuration and fixtures."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.providers.base import ChannelError, OutboundChannel
from app.security import HmacVerifier, sign
from app.services.pipeline import WebhookPipeline
from app.storage.db import Database

SECRET = "test-app-secret"

# Tuesday 10:00 in New York
TUESDAY_MORNING = datetime(2024, 1, 16, 15, 0, tzinfo=timezone.utc)


class FakeChannel(OutboundChannel):
    """Records every call; ids come from next_ids first, then a counter."""

    def __init__(self):
        self.sent = []
        self.read = []
        self.next_ids = []
        self.fail_send = False
        self.fail_read = False
        self._n = 0

    def send(self, to, text):
        if self.fail_send:
            raise ChannelError("simulated timeout")
        self._n += 1
        msg_id = self.next_ids.pop(0) if self.next_ids else f"wamid.out-{self._n}"
        self.sent.append((to, text, msg_id))
        return msg_id

    def mark_read(self, channel_message_id):
        if self.fail_read:
            raise ChannelError("simulated mark-read failure")
        self.read.append(channel_message_id)
        return True


class Clock:
    def __init__(self, now=TUESDAY_MORNING):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def secret():
    return SECRET


@pytest.fixture
def db(tmp_path):
    # file-backed so threads share one database
    database = Database(f"sqlite:///{tmp_path / 'test.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def pipeline(db, channel, clock):
    p = WebhookPipeline(db, HmacVerifier(SECRET), channel_factory=lambda bot: channel, clock=clock)
    p.settings.update({"access_token": "EAAG-test-token", "phone_number_id": "1234567890"})
    return p


@pytest.fixture
def deliver(pipeline):
    """Sign and hand a payload to the pipeline, as the webhook route would."""
    def _deliver(payload):
        body = json.dumps(payload).encode("utf-8")
        return pipeline.handle_delivery(body, sign(body, SECRET))
    return _deliver


@pytest.fixture
def client(pipeline):
    with TestClient(create_app(pipeline=pipeline)) as c:
        yield c
