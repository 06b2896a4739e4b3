import json

import pytest
import requests

from app import settings
from app.providers import whatsapp
from app.providers.base import ChannelError, DryRunChannel
from app.providers.whatsapp import WhatsAppCloudProvider, channel_for
from app.schemas import BotSettings


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data
        self.text = json.dumps(data)

    def json(self):
        return self._data


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, headers=None, data=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json.loads(data), "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def provider(session):
    return WhatsAppCloudProvider("tok", "12345", api_base="https://graph.test/v18.0", session=session)


def test_send_posts_text_message():
    s = FakeSession(FakeResponse(200, {"messages": [{"id": "wamid.OUT"}]}))

    assert provider(s).send("15551234567", "Hello") == "wamid.OUT"

    [call] = s.calls
    assert call["url"] == "https://graph.test/v18.0/12345/messages"
    assert call["headers"]["Authorization"] == "Bearer tok"
    assert call["json"]["text"] == {"preview_url": False, "body": "Hello"}
    assert call["json"]["to"] == "15551234567"
    assert call["timeout"] == settings.HTTP_TIMEOUT


def test_send_template_payload():
    s = FakeSession(FakeResponse(200, {"messages": [{"id": "wamid.T"}]}))

    assert provider(s).send_template("15551234567", "order_update", "en_GB") == "wamid.T"
    assert s.calls[0]["json"]["template"] == {"name": "order_update", "language": {"code": "en_GB"}, "components": []}


@pytest.mark.parametrize("session", [
    FakeSession(FakeResponse(400, {"error": {"message": "Invalid parameter"}})),
    FakeSession(FakeResponse(200, {"messages": []})),
    FakeSession(error=requests.Timeout("read timed out")),
    FakeSession(error=requests.ConnectionError("refused")),
])
def test_send_failures_raise_channel_error(session):
    with pytest.raises(ChannelError):
        provider(session).send("15551234567", "Hello")


def test_send_without_credentials_raises():
    s = FakeSession(FakeResponse(200, {}))
    with pytest.raises(ChannelError):
        WhatsAppCloudProvider("", "", session=s).send("15551234567", "Hello")
    assert s.calls == []


def test_mark_read_is_best_effort():
    ok = FakeSession(FakeResponse(200, {"success": True}))
    assert provider(ok).mark_read("wamid.IN") is True
    assert ok.calls[0]["json"] == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.IN"}

    assert provider(FakeSession(FakeResponse(500, {}))).mark_read("wamid.IN") is False


def test_channel_factory_honours_dry_run(monkeypatch):
    bot = BotSettings(access_token="tok", phone_number_id="12345")

    monkeypatch.setattr(settings, "DRY_RUN", True)
    assert isinstance(channel_for(bot), DryRunChannel)

    monkeypatch.setattr(settings, "DRY_RUN", False)
    live = channel_for(bot)
    assert isinstance(live, whatsapp.WhatsAppCloudProvider)
    assert live.is_enabled()
    assert live.http is whatsapp._http
    assert channel_for(bot).http is live.http


def test_dry_run_channel_returns_unique_ids():
    ch = DryRunChannel()
    assert ch.send("15551234567", "a") != ch.send("15551234567", "a")
    assert ch.mark_read("wamid.IN") is True


def test_providers_share_one_http_session():
    a = WhatsAppCloudProvider("tok", "12345")
    b = WhatsAppCloudProvider("other", "67890")
    own = FakeSession()

    assert a.http is b.http is whatsapp._http
    assert WhatsAppCloudProvider("tok", "12345", session=own).http is own
