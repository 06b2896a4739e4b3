import json
import logging
from typing import Optional, Dict, Any, List

import requests

from app import settings
from app.providers.base import ChannelError, DryRunChannel, OutboundChannel
from app.schemas import BotSettings

log = logging.getLogger("whatsapp")

# one connection pool for every provider instance
_http = requests.Session()


class WhatsAppCloudProvider(OutboundChannel):
    """
    WhatsApp Cloud API channel:
      - send(): plain text message, returns the wamid
      - send_template(): pre-approved template message
      - mark_read(): blue ticks for an inbound message
    Credentials come from BotSettings, so a new instance is built per delivery;
    all instances share the module session unless one is passed in.
    """

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_base: Optional[str] = None,
        timeout=None,
        session: Optional[requests.Session] = None,
    ):
        self.access_token = access_token or ""
        self.phone_number_id = phone_number_id or ""
        self.api_base = (api_base or settings.WHATSAPP_API_BASE).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self.http = session or _http

    def is_enabled(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    # ---------- transport ----------
    def _url(self) -> str:
        return f"{self.api_base}/{self.phone_number_id}/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.is_enabled():
            raise ChannelError("WhatsApp credentials not configured")
        try:
            r = self.http.post(self._url(), headers=self._headers(), data=json.dumps(payload), timeout=self.timeout)
        except requests.Timeout as e:
            raise ChannelError(f"WhatsApp API timeout: {e}") from e
        except requests.RequestException as e:
            raise ChannelError(f"WhatsApp API request failed: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {"_raw": r.text}

        if r.status_code not in (200, 201):
            log.error("WhatsApp API error status=%s data=%s", r.status_code, data)
            raise ChannelError(f"WhatsApp API returned {r.status_code}")
        return data

    @staticmethod
    def _message_id(data: Dict[str, Any]) -> str:
        msgs: List[Dict[str, Any]] = data.get("messages") or []
        if not msgs or not msgs[0].get("id"):
            raise ChannelError(f"WhatsApp API response without message id: {data}")
        return str(msgs[0]["id"])

    # ---------- outbound ----------
    def send(self, to: str, text: str) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        return self._message_id(self._post(payload))

    def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
                "components": components or [],
            },
        }
        return self._message_id(self._post(payload))

    def mark_read(self, channel_message_id: str) -> bool:
        payload = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": channel_message_id,
        }
        try:
            self._post(payload)
        except ChannelError as e:
            log.warning("mark_read failed id=%s err=%s", channel_message_id, e)
            return False
        return True


def channel_for(bot: BotSettings) -> OutboundChannel:
    """Default channel factory: dry-run unless DRY_RUN=0."""
    if settings.DRY_RUN:
        return DryRunChannel()
    return WhatsAppCloudProvider(bot.access_token, bot.phone_number_id)
